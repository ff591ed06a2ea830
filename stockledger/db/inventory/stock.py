from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from ..database import Base, utcnow


class PartStock(Base):
    __tablename__ = "part_stock"
    __table_args__ = (
        UniqueConstraint("part_id", "location_id", name="ux_part_stock_part_location"),
        CheckConstraint("quantity_on_hand >= 0", name="ck_part_stock_on_hand"),
        CheckConstraint("quantity_reserved >= 0", name="ck_part_stock_reserved"),
        CheckConstraint("quantity_reserved <= quantity_on_hand", name="ck_part_stock_reserved_le_on_hand"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    part_id = Column(Integer, ForeignKey("parts.id"), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("storage_locations.id"), nullable=False, index=True)

    quantity_on_hand = Column(Integer, nullable=False, default=0)
    quantity_reserved = Column(Integer, nullable=False, default=0)
    bin_number = Column(String(50), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True)
    updated_by = Column(Integer, nullable=True)

    part = relationship("Part", back_populates="stocks")
    location = relationship("StorageLocation", back_populates="part_stocks")

    @property
    def quantity_available(self) -> int:
        return int(self.quantity_on_hand or 0) - int(self.quantity_reserved or 0)

    @property
    def key(self) -> tuple[int, int]:
        return (self.part_id, self.location_id)
