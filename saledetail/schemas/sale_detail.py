from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from decimal import Decimal
from datetime import datetime


class SaleDetailRecord(BaseModel):
    """
    Immutable snapshot of a sale_details row.
    Changes are made by building a new snapshot (model_copy) and replacing the row.
    """
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: Optional[int] = None
    sale_id: str
    medicine_id: int
    quantity: int
    unit_price: Decimal
    total_amount: Decimal = Decimal("0")
    description: str = ""
    is_deleted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[int] = None
    updated_by: Optional[int] = None


class SaleDetailCreateRequest(BaseModel):
    """Schema for registering a sale detail."""
    sale_id: str = Field(..., min_length=1, max_length=64)
    medicine_id: int
    quantity: int
    unit_price: Decimal
    description: str = ""


class SaleDetailUpdateRequest(BaseModel):
    """Schema for updating a sale detail. The sale and medicine stay fixed."""
    quantity: int
    unit_price: Decimal
    description: Optional[str] = None


class SaleDetailResponse(BaseModel):
    id: int
    sale_id: str
    medicine_id: int
    quantity: int
    unit_price: Decimal
    total_amount: Decimal
    description: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_record(cls, record: SaleDetailRecord) -> "SaleDetailResponse":
        return cls(
            id=record.id,
            sale_id=record.sale_id,
            medicine_id=record.medicine_id,
            quantity=record.quantity,
            unit_price=record.unit_price,
            total_amount=record.total_amount,
            description=record.description,
            created_at=str(record.created_at) if record.created_at else None,
            updated_at=str(record.updated_at) if record.updated_at else None,
        )
