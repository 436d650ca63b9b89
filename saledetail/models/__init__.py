# saledetail/models/__init__.py
from .sale_detail import SaleDetail
from .outbox import OutboxEvent, OutboxStatus
from .processed_event import ProcessedEvent

# Export all models
__all__ = [
    "SaleDetail",
    "OutboxEvent",
    "OutboxStatus",
    "ProcessedEvent",
]
