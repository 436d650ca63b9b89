import re
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from tortoise import timezone

from saledetail.core.exceptions import DomainValidationError, SaleDetailNotFoundError
from saledetail.events.outbox_utility import (
    SALEDETAIL_CREATED,
    SALEDETAIL_DELETED,
    SALEDETAIL_UPDATED,
    build_outbox_event,
)
from saledetail.repositories.unit_of_work import UnitOfWork
from saledetail.schemas.sale_detail import SaleDetailCreateRequest, SaleDetailRecord, SaleDetailUpdateRequest

DESCRIPTION_MAX = 200
_MULTI_SPACE = re.compile(r"\s+")


def normalize_text(value: Optional[str]) -> str:
    """Trims and collapses runs of whitespace."""
    if not value or not value.strip():
        return ""
    return _MULTI_SPACE.sub(" ", value.strip())


def validate_sale_detail(record: SaleDetailRecord) -> None:
    """Raises DomainValidationError listing every broken rule."""
    errors: Dict[str, str] = {}
    if record.medicine_id <= 0:
        errors["medicine_id"] = "A valid medicine must be selected."
    if record.quantity <= 0:
        errors["quantity"] = "Quantity must be greater than zero."
    if record.unit_price <= 0:
        errors["unit_price"] = "Unit price must be greater than zero."
    if len(record.description) > DESCRIPTION_MAX:
        errors["description"] = f"Description cannot exceed {DESCRIPTION_MAX} characters."
    if errors:
        raise DomainValidationError("Sale detail is invalid.", errors)


def _line_total(quantity: int, unit_price: Decimal) -> Decimal:
    return (unit_price * quantity).quantize(Decimal("0.01"))


class SaleDetailService:
    """
    Use cases for sale details. Every write commits the row and exactly one
    outbox event in the same unit of work.
    """

    def __init__(self, uow_factory: Callable[[], UnitOfWork] = UnitOfWork):
        self.uow_factory = uow_factory

    async def register(self, data: SaleDetailCreateRequest, actor_id: Optional[int] = None) -> SaleDetailRecord:
        record = SaleDetailRecord(
            sale_id=data.sale_id.strip(),
            medicine_id=data.medicine_id,
            quantity=data.quantity,
            unit_price=data.unit_price,
            total_amount=_line_total(data.quantity, data.unit_price),
            description=normalize_text(data.description),
            created_by=actor_id,
        )
        validate_sale_detail(record)

        async with self.uow_factory() as uow:
            created = await uow.sale_details.create(record)
            await uow.outbox.stage(build_outbox_event(
                SALEDETAIL_CREATED,
                aggregate_id=created.sale_id,
                body={
                    "sale_detail_id": created.id,
                    "sale_id": created.sale_id,
                    "medicine_id": created.medicine_id,
                    "quantity": created.quantity,
                    "unit_price": created.unit_price,
                    "total_amount": created.total_amount,
                    "created_at": created.created_at,
                },
            ))
        return created

    async def get(self, sale_detail_id: int) -> SaleDetailRecord:
        record = await self.uow_factory().sale_details.get(sale_detail_id)
        if record is None:
            raise SaleDetailNotFoundError(sale_detail_id)
        return record

    async def list_all(self) -> List[SaleDetailRecord]:
        return await self.uow_factory().sale_details.list_all()

    async def list_by_sale(self, sale_id: str) -> List[SaleDetailRecord]:
        return await self.uow_factory().sale_details.list_by_sale(sale_id)

    async def update(self, sale_detail_id: int, data: SaleDetailUpdateRequest, actor_id: Optional[int] = None) -> SaleDetailRecord:
        async with self.uow_factory() as uow:
            existing = await uow.sale_details.get(sale_detail_id)
            if existing is None:
                raise SaleDetailNotFoundError(sale_detail_id)

            description = existing.description if data.description is None else normalize_text(data.description)
            updated = existing.model_copy(update={
                "quantity": data.quantity,
                "unit_price": data.unit_price,
                "total_amount": _line_total(data.quantity, data.unit_price),
                "description": description,
                "updated_at": timezone.now(),
                "updated_by": actor_id,
            })
            validate_sale_detail(updated)

            await uow.sale_details.replace(updated)
            await uow.outbox.stage(build_outbox_event(
                SALEDETAIL_UPDATED,
                aggregate_id=updated.sale_id,
                body={
                    "sale_detail_id": updated.id,
                    "sale_id": updated.sale_id,
                    "medicine_id": updated.medicine_id,
                    "quantity": updated.quantity,
                    "unit_price": updated.unit_price,
                    "total_amount": updated.total_amount,
                    "updated_at": updated.updated_at,
                },
            ))
        return updated

    async def delete(self, sale_detail_id: int, actor_id: Optional[int] = None) -> None:
        """Soft delete; the row stays in the table flagged as deleted."""
        async with self.uow_factory() as uow:
            existing = await uow.sale_details.get(sale_detail_id)
            if existing is None:
                raise SaleDetailNotFoundError(sale_detail_id)

            await uow.sale_details.soft_delete(sale_detail_id, actor_id)
            await uow.outbox.stage(build_outbox_event(
                SALEDETAIL_DELETED,
                aggregate_id=existing.sale_id,
                body={
                    "sale_detail_id": existing.id,
                    "sale_id": existing.sale_id,
                    "deleted_by": actor_id,
                },
            ))
