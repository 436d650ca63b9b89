import uuid
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

from saledetail.models.outbox import OutboxStatus


class OutboxRecord(BaseModel):
    """Snapshot of an outbox row. `payload` is the serialized event body."""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: Optional[uuid.UUID] = None
    aggregate_id: str = ""
    routing_key: str
    payload: str
    status: OutboxStatus = OutboxStatus.PENDING
    created_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    attempt_count: int = 0
    error_log: Optional[str] = None
