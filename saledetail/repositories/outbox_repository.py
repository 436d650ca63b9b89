import uuid
from typing import List, Optional, Union

from tortoise import timezone
from tortoise.expressions import F

from saledetail.models.outbox import OutboxEvent, OutboxStatus
from saledetail.repositories.base import BoundRepository
from saledetail.schemas.outbox import OutboxRecord

ERROR_LOG_MAX = 2000

EventId = Union[str, uuid.UUID]


class OutboxRepository(BoundRepository):
    """Data access for the outbox table. Holds no retry or routing policy."""

    async def stage(self, record: OutboxRecord) -> OutboxRecord:
        """
        Inserts the event as PENDING in the caller's transaction.
        CRITICAL: the event must commit or roll back together with the business write.
        """
        conn = self._require_transaction("stage")
        event = await OutboxEvent.create(
            id=record.id or uuid.uuid4(),
            aggregate_id=record.aggregate_id or "",
            routing_key=record.routing_key,
            payload=record.payload,
            status=OutboxStatus.PENDING,
            attempt_count=0,
            error_log=None,
            using_db=conn,
        )
        return OutboxRecord.model_validate(event)

    async def get(self, event_id: EventId) -> Optional[OutboxRecord]:
        event = await self._using(OutboxEvent.filter(id=event_id)).first()
        return OutboxRecord.model_validate(event) if event else None

    async def fetch_pending(self, limit: int = 100) -> List[OutboxRecord]:
        """Oldest-first PENDING events, at most `limit`."""
        events = await self._using(
            OutboxEvent.filter(status=OutboxStatus.PENDING).order_by("created_at").limit(limit)
        )
        return [OutboxRecord.model_validate(event) for event in events]

    async def fetch_failed(self, limit: int = 100) -> List[OutboxRecord]:
        """Dead-letter list for operators, oldest first."""
        events = await self._using(
            OutboxEvent.filter(status=OutboxStatus.FAILED).order_by("created_at").limit(limit)
        )
        return [OutboxRecord.model_validate(event) for event in events]

    async def mark_published(self, event_id: EventId) -> bool:
        # Only PENDING rows move, so published_at is stamped exactly once
        updated = await self._using(
            OutboxEvent.filter(id=event_id, status=OutboxStatus.PENDING)
        ).update(status=OutboxStatus.PUBLISHED, published_at=timezone.now())
        return updated > 0

    async def increment_attempt(self, event_id: EventId, error: Optional[str] = None) -> int:
        """Counts one failed publish. The event stays PENDING. Returns the new count."""
        values = {"attempt_count": F("attempt_count") + 1}
        if error is not None:
            values["error_log"] = error[:ERROR_LOG_MAX]
        await self._using(OutboxEvent.filter(id=event_id)).update(**values)
        event = await self._using(OutboxEvent.filter(id=event_id)).first()
        return event.attempt_count if event else 0

    async def mark_failed(self, event_id: EventId) -> bool:
        updated = await self._using(
            OutboxEvent.filter(id=event_id, status=OutboxStatus.PENDING)
        ).update(status=OutboxStatus.FAILED)
        return updated > 0

    async def requeue(self, event_id: EventId) -> bool:
        """Operator action: FAILED -> PENDING with a fresh attempt budget."""
        updated = await self._using(
            OutboxEvent.filter(id=event_id, status=OutboxStatus.FAILED)
        ).update(status=OutboxStatus.PENDING, attempt_count=0)
        return updated > 0
