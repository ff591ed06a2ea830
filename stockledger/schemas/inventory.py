from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


AdjustmentType = Literal["Receive", "Issue", "Adjust"]


def _strip_nullable(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


class StockAdjustmentRequest(BaseModel):
    location_id: int
    transaction_type: AdjustmentType
    quantity: int
    unit_cost: Optional[Decimal] = Field(None, ge=0)
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    notes: Optional[str] = None

    @field_validator("reference_type", "notes")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)

    @model_validator(mode="after")
    def _quantity_sign(self):
        # Receive/Issue take a magnitude; Adjust takes a signed delta.
        if self.transaction_type == "Adjust":
            if self.quantity == 0:
                raise ValueError("Adjust quantity cannot be zero")
        elif self.quantity <= 0:
            raise ValueError("quantity must be > 0")
        return self


class StockTransferRequest(BaseModel):
    from_location_id: int
    to_location_id: int
    quantity: int = Field(..., gt=0)
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)

    @model_validator(mode="after")
    def _different_locations(self):
        if self.from_location_id == self.to_location_id:
            raise ValueError("From and To locations must be different")
        return self


class StockReserveRequest(BaseModel):
    location_id: int
    quantity: int = Field(..., gt=0)
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    notes: Optional[str] = None

    @field_validator("reference_type", "notes")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)


class StockConsumeRequest(StockReserveRequest):
    unit_cost: Optional[Decimal] = Field(None, ge=0)


class PartStockOut(BaseModel):
    part_id: int
    location_id: int
    quantity_on_hand: int
    quantity_reserved: int
    quantity_available: int
    bin_number: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[int] = None

    class Config:
        from_attributes = True


class TransferOut(BaseModel):
    from_stock: PartStockOut
    to_stock: PartStockOut


class PartTransactionOut(BaseModel):
    id: int
    part_id: int
    location_id: int
    to_location_id: Optional[int] = None
    transaction_type: str
    quantity: int
    unit_cost: Decimal
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    notes: Optional[str] = None
    performed_by: Optional[int] = None
    transaction_date: datetime

    class Config:
        from_attributes = True


class PagedTransactions(BaseModel):
    items: List[PartTransactionOut]
    total_count: int
    page: int
    page_size: int
    total_pages: int


class ReplayMismatchOut(BaseModel):
    part_id: int
    location_id: int
    quantity_on_hand: int
    replayed_on_hand: int
    quantity_reserved: int
    replayed_reserved: int

    class Config:
        from_attributes = True


class ReplayReport(BaseModel):
    consistent: bool
    mismatches: List[ReplayMismatchOut]
