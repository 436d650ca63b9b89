from enum import Enum
from tortoise import fields, models
import uuid


class OutboxStatus(str, Enum):
    PENDING = "PENDING"
    PUBLISHED = "PUBLISHED"  # Terminal, kept for audit
    FAILED = "FAILED"  # Dead-letter list, only reached when a max attempt count is configured


class OutboxEvent(models.Model):
    """
    The Outbox table stores events atomically with the database transaction.
    This is the core of the Transactional Outbox Pattern.
    """
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    aggregate_id = fields.CharField(max_length=64, default="") # ID of the entity that generated the event
    routing_key = fields.CharField(max_length=128) # e.g., 'saledetail.created'
    payload = fields.TextField() # Serialized event body, opaque to the store
    status = fields.CharEnumField(OutboxStatus, default=OutboxStatus.PENDING)
    created_at = fields.DatetimeField(auto_now_add=True)
    published_at = fields.DatetimeField(null=True)
    attempt_count = fields.IntField(default=0)
    error_log = fields.TextField(null=True)

    class Meta:
        table = "outbox"
        indexes = [
            ("status", "created_at"),  # Pending scan, oldest first
        ]
