import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import ValidationError

from saledetail.core.exceptions import MessageValidationError
from saledetail.events.outbox_utility import (
    SALE_DETAILS_PERSISTED,
    SALEDETAIL_CREATED,
    SALEDETAIL_DELETED,
    build_outbox_event,
)
from saledetail.repositories.unit_of_work import UnitOfWork
from saledetail.schemas.saga import SaleCreatedEvent, SaleEvent, SaleFailedEvent
from saledetail.schemas.sale_detail import SaleDetailRecord

log = logging.getLogger("saga_handlers")

SagaHandler = Callable[[UnitOfWork, Dict[str, Any]], Awaitable[None]]

# Routing key -> handler. Handlers run inside the consumer's open transaction.
HANDLERS: Dict[str, SagaHandler] = {}


def register(*routing_keys: str):
    """Registers the decorated coroutine as the handler for the given routing keys."""
    def decorator(handler: SagaHandler) -> SagaHandler:
        for routing_key in routing_keys:
            HANDLERS[routing_key] = handler
        return handler
    return decorator


def get_handler(routing_key: str) -> Optional[SagaHandler]:
    return HANDLERS.get(routing_key)


def _parse(schema, payload: Dict[str, Any]):
    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        raise MessageValidationError(f"Invalid {schema.__name__}: {e}") from e


@register("sale.header.created", "sale.created")
async def handle_sale_created(uow: UnitOfWork, payload: Dict[str, Any]) -> None:
    """
    Creates one sale detail per item of the new sale and stages one
    'saledetail.created' event per created row.
    A sale announced without items gets its recalculated total published instead.
    """
    event = _parse(SaleCreatedEvent, payload)

    if not event.items:
        total = await uow.sale_details.total_for_sale(event.sale_id)
        await uow.outbox.stage(build_outbox_event(
            SALE_DETAILS_PERSISTED,
            aggregate_id=event.sale_id,
            body={"sale_id": event.sale_id, "total_calculated": total},
        ))
        log.info(f"Sale {event.sale_id} has no items; staged total {total}")
        return

    for item in event.items:
        created = await uow.sale_details.create(SaleDetailRecord(
            sale_id=event.sale_id,
            medicine_id=item.medicine_id,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total_amount=item.unit_price * item.quantity,
            description=item.description,
        ))
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
    log.info(f"Sale {event.sale_id}: {len(event.items)} detail(s) created")


@register("sale.completed")
async def handle_sale_completed(uow: UnitOfWork, payload: Dict[str, Any]) -> None:
    event = _parse(SaleEvent, payload)
    log.info(f"Sale {event.sale_id} completed")


@register("sale.failed")
async def handle_sale_failed(uow: UnitOfWork, payload: Dict[str, Any]) -> None:
    """Compensation: soft-deletes every detail of the failed sale."""
    event = _parse(SaleFailedEvent, payload)
    log.warning(f"Sale {event.sale_id} failed, reason: {event.reason}")

    details = await uow.sale_details.list_by_sale(event.sale_id)
    for detail in details:
        await uow.sale_details.soft_delete(detail.id)
        await uow.outbox.stage(build_outbox_event(
            SALEDETAIL_DELETED,
            aggregate_id=detail.sale_id,
            body={
                "sale_detail_id": detail.id,
                "sale_id": detail.sale_id,
                "reason": event.reason,
            },
        ))
    log.info(f"Sale {event.sale_id}: {len(details)} detail(s) reverted")
