from saledetail.models.processed_event import ProcessedEvent
from saledetail.repositories.base import BoundRepository


class ProcessedEventRepository(BoundRepository):
    """Idempotency ledger of inbound messages that were already applied."""

    async def exists(self, idempotency_key: str) -> bool:
        return await self._using(ProcessedEvent.filter(idempotency_key=idempotency_key)).exists()

    async def record(self, idempotency_key: str, routing_key: str) -> None:
        conn = self._require_transaction("record")
        await ProcessedEvent.create(idempotency_key=idempotency_key, routing_key=routing_key, using_db=conn)
