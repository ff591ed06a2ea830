from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


PartStatusName = Literal["Active", "Inactive", "Obsolete", "Discontinued"]
UnitOfMeasureName = Literal[
    "Each", "Foot", "Meter", "Gallon", "Quart", "Liter", "Pound",
    "Kilogram", "Box", "Case", "Roll", "Set", "Pair",
]
ReorderStatusName = Literal["Ok", "Low", "Critical", "OutOfStock"]


def _strip_nullable(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


class PartCreate(BaseModel):
    part_number: Optional[str] = None
    name: str
    description: Optional[str] = None
    unit_of_measure: UnitOfMeasureName = "Each"
    unit_cost: Decimal = Field(Decimal("0"), ge=0)

    reorder_point: int = Field(0, ge=0)
    reorder_quantity: int = Field(0, ge=0)
    min_stock_level: int = Field(0, ge=0)
    max_stock_level: int = Field(0, ge=0)
    lead_time_days: int = Field(0, ge=0)

    manufacturer: Optional[str] = None
    barcode: Optional[str] = None
    notes: Optional[str] = None
    status: PartStatusName = "Active"

    @field_validator("name")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v

    @field_validator("part_number", "manufacturer", "barcode")
    @classmethod
    def _strip_optional(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)

    @model_validator(mode="after")
    def _levels(self):
        if self.max_stock_level < self.min_stock_level:
            raise ValueError("max_stock_level must be >= min_stock_level")
        return self


class PartUpdate(BaseModel):
    part_number: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    unit_of_measure: Optional[UnitOfMeasureName] = None
    unit_cost: Optional[Decimal] = Field(None, ge=0)

    reorder_point: Optional[int] = Field(None, ge=0)
    reorder_quantity: Optional[int] = Field(None, ge=0)
    min_stock_level: Optional[int] = Field(None, ge=0)
    max_stock_level: Optional[int] = Field(None, ge=0)
    lead_time_days: Optional[int] = Field(None, ge=0)

    manufacturer: Optional[str] = None
    barcode: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[PartStatusName] = None

    @field_validator("name", "part_number")
    @classmethod
    def _strip_optional(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = (v or "").strip()
        if not v:
            raise ValueError("cannot be empty")
        return v


class PartOut(BaseModel):
    id: int
    part_number: str
    name: str
    description: Optional[str] = None
    unit_of_measure: str
    unit_cost: Decimal
    reorder_point: int
    reorder_quantity: int
    min_stock_level: int
    max_stock_level: int
    lead_time_days: int
    manufacturer: Optional[str] = None
    barcode: Optional[str] = None
    notes: Optional[str] = None
    status: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    total_on_hand: int = 0
    total_reserved: int = 0
    total_available: int = 0
    reorder_status: Optional[ReorderStatusName] = None

    class Config:
        from_attributes = True


class PagedParts(BaseModel):
    items: List[PartOut]
    total_count: int
    page: int
    page_size: int
    total_pages: int


class ReorderStatusOut(BaseModel):
    part_id: int
    total_on_hand: int
    total_reserved: int
    total_available: int
    reorder_point: int
    min_stock_level: int
    reorder_quantity: int
    reorder_status: ReorderStatusName
