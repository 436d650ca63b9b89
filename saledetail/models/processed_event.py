from tortoise import fields, models


class ProcessedEvent(models.Model):
    """
    Table used for Idempotency in the saga consumer. Stores the idempotency key
    of every inbound message whose effects were committed.
    """
    id = fields.IntField(primary_key=True)
    idempotency_key = fields.CharField(max_length=128, unique=True)
    routing_key = fields.CharField(max_length=128)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "processed_events"
