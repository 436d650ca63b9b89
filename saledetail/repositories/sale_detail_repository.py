from decimal import Decimal
from typing import List, Optional

from tortoise import timezone
from tortoise.functions import Sum

from saledetail.models.sale_detail import SaleDetail
from saledetail.repositories.base import BoundRepository
from saledetail.schemas.sale_detail import SaleDetailRecord

# Columns a replace() may overwrite; identity and creation audit stay fixed
_REPLACEABLE_FIELDS = {
    "sale_id", "medicine_id", "quantity", "unit_price", "total_amount",
    "description", "updated_at", "updated_by",
}


class SaleDetailRepository(BoundRepository):

    def _live(self, **filters):
        return self._using(SaleDetail.filter(is_deleted=False, **filters))

    async def create(self, record: SaleDetailRecord) -> SaleDetailRecord:
        conn = self._require_transaction("create")
        row = await SaleDetail.create(
            **record.model_dump(exclude={"id", "created_at", "is_deleted"}, exclude_none=True),
            is_deleted=False,
            using_db=conn,
        )
        return SaleDetailRecord.model_validate(row)

    async def get(self, sale_detail_id: int) -> Optional[SaleDetailRecord]:
        row = await self._live(id=sale_detail_id).first()
        return SaleDetailRecord.model_validate(row) if row else None

    async def list_all(self) -> List[SaleDetailRecord]:
        rows = await self._live().order_by("-created_at", "-id")
        return [SaleDetailRecord.model_validate(row) for row in rows]

    async def list_by_sale(self, sale_id: str) -> List[SaleDetailRecord]:
        rows = await self._live(sale_id=sale_id).order_by("-created_at", "-id")
        return [SaleDetailRecord.model_validate(row) for row in rows]

    async def replace(self, record: SaleDetailRecord) -> int:
        """Writes the new snapshot over the stored row."""
        conn = self._require_transaction("replace")
        values = record.model_dump(include=_REPLACEABLE_FIELDS)
        return await SaleDetail.filter(id=record.id, is_deleted=False).using_db(conn).update(**values)

    async def soft_delete(self, sale_detail_id: int, actor_id: Optional[int] = None) -> int:
        conn = self._require_transaction("soft_delete")
        return await SaleDetail.filter(id=sale_detail_id, is_deleted=False).using_db(conn).update(
            is_deleted=True, updated_at=timezone.now(), updated_by=actor_id
        )

    async def total_for_sale(self, sale_id: str) -> Decimal:
        row = await self._live(sale_id=sale_id).annotate(total=Sum("total_amount")).first().values("total")
        total = row["total"] if row else None
        if total is None:
            return Decimal("0.00")
        return Decimal(str(total)).quantize(Decimal("0.01"))
