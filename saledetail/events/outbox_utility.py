import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict

from saledetail.schemas.outbox import OutboxRecord

# Routing keys produced by this service
SALEDETAIL_CREATED = "saledetail.created"
SALEDETAIL_UPDATED = "saledetail.updated"
SALEDETAIL_DELETED = "saledetail.deleted"
SALE_DETAILS_PERSISTED = "sale.details.persisted"


def _json_default(value: Any):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def build_outbox_event(routing_key: str, aggregate_id: Any, body: Dict[str, Any]) -> OutboxRecord:
    """
    Builds an unsaved outbox record for `body`.

    The serialized payload carries a fresh MessageId that downstream consumers use
    as their idempotency key, since dispatch is at-least-once.
    """
    envelope = {
        "MessageId": str(uuid.uuid4()),
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        **body,
    }
    return OutboxRecord(
        id=uuid.uuid4(),
        aggregate_id=str(aggregate_id),
        routing_key=routing_key,
        payload=json.dumps(envelope, default=_json_default),
    )
