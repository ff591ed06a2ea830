from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from .database import Base, utcnow

PATH_SEPARATOR = " > "


class StorageLocation(Base):
    __tablename__ = "storage_locations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    code = Column(String(50), nullable=True, index=True)
    description = Column(Text, nullable=True)

    parent_id = Column(Integer, ForeignKey("storage_locations.id"), nullable=True, index=True)
    level = Column(Integer, nullable=False, default=0)
    full_path = Column(Text, nullable=True)  # "Main > Aisle 3 > Bin 12"

    is_active = Column(Boolean, nullable=False, default=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=utcnow)

    parent = relationship("StorageLocation", remote_side=[id], back_populates="children")
    children = relationship("StorageLocation", back_populates="parent")
    part_stocks = relationship("PartStock", back_populates="location")
