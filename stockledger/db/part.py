from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from .database import Base, utcnow


class PartStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    OBSOLETE = "Obsolete"
    DISCONTINUED = "Discontinued"


class UnitOfMeasure(str, Enum):
    EACH = "Each"
    FOOT = "Foot"
    METER = "Meter"
    GALLON = "Gallon"
    QUART = "Quart"
    LITER = "Liter"
    POUND = "Pound"
    KILOGRAM = "Kilogram"
    BOX = "Box"
    CASE = "Case"
    ROLL = "Roll"
    SET = "Set"
    PAIR = "Pair"


class Part(Base):
    """Catalog item. The ledger reads it, never writes it."""
    __tablename__ = "parts"
    __table_args__ = (
        CheckConstraint("unit_cost >= 0", name="ck_parts_unit_cost"),
        CheckConstraint("max_stock_level >= min_stock_level", name="ck_parts_stock_levels"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    part_number = Column(String(100), nullable=False, unique=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    unit_of_measure = Column(String(20), nullable=False, default=UnitOfMeasure.EACH.value)
    unit_cost = Column(Numeric(12, 2), nullable=False, default=0)

    reorder_point = Column(Integer, nullable=False, default=0)
    reorder_quantity = Column(Integer, nullable=False, default=0)
    min_stock_level = Column(Integer, nullable=False, default=0)
    max_stock_level = Column(Integer, nullable=False, default=0)
    lead_time_days = Column(Integer, nullable=False, default=0)

    manufacturer = Column(String(200), nullable=True)
    barcode = Column(String(100), nullable=True, index=True)
    notes = Column(Text, nullable=True)

    status = Column(String(20), nullable=False, default=PartStatus.ACTIVE.value, index=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=utcnow)

    stocks = relationship("PartStock", back_populates="part")

    @property
    def is_active(self) -> bool:
        return not self.is_deleted and self.status == PartStatus.ACTIVE.value
