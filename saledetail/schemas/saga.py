from decimal import Decimal, InvalidOperation
from typing import Any, List
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def coerce_int(value: Any, default: int = 0) -> int:
    """
    Reads an integer that may arrive as a number or as a numeric string.
    Falls back to `default` instead of raising.
    """
    if isinstance(value, (int, float, Decimal)):
        try:
            return int(value)
        except (ValueError, OverflowError, InvalidOperation):
            return default
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return int(Decimal(text))
        except (InvalidOperation, ValueError, OverflowError):
            return default
    return default


def coerce_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    """Same contract as coerce_int, for money fields."""
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, (int, Decimal)):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            return default
    else:
        return default
    return result if result.is_finite() else default


class SaleItem(BaseModel):
    """One line of a 'sale created' event. Field names follow the Sales service (camelCase)."""
    model_config = ConfigDict(extra="ignore")

    medicine_id: int = Field(0, validation_alias=AliasChoices("medicineId", "medicine_id"))
    quantity: int = 0
    unit_price: Decimal = Field(Decimal("0"), validation_alias=AliasChoices("price", "unit_price", "unitPrice"))
    description: str = ""

    @field_validator("medicine_id", "quantity", mode="before")
    @classmethod
    def _to_int(cls, value):
        return coerce_int(value)

    @field_validator("unit_price", mode="before")
    @classmethod
    def _to_decimal(cls, value):
        return coerce_decimal(value)

    @field_validator("description", mode="before")
    @classmethod
    def _to_text(cls, value):
        return "" if value is None else str(value)


class SaleEvent(BaseModel):
    """Fields shared by every inbound sale event."""
    model_config = ConfigDict(extra="ignore")

    sale_id: str = Field(..., min_length=1, max_length=64)

    @field_validator("sale_id", mode="before")
    @classmethod
    def _sale_id_to_text(cls, value):
        # Sales may send its id as a number
        if isinstance(value, (int, Decimal)) and not isinstance(value, bool):
            return str(value)
        return value


class SaleCreatedEvent(SaleEvent):
    items: List[SaleItem] = []

    @field_validator("items", mode="before")
    @classmethod
    def _missing_items(cls, value):
        return [] if value is None else value


class SaleFailedEvent(SaleEvent):
    reason: str = "unknown"
