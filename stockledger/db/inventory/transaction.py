from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text

from ..database import Base, utcnow


class TransactionType(str, Enum):
    RECEIVE = "Receive"
    ISSUE = "Issue"
    ADJUST = "Adjust"
    TRANSFER = "Transfer"
    RESERVE = "Reserve"
    UNRESERVE = "Unreserve"


ADJUSTMENT_TYPES = (TransactionType.RECEIVE, TransactionType.ISSUE, TransactionType.ADJUST)


class PartTransaction(Base):
    """Journal entry. Written once by the ledger, never updated or deleted.

    ``quantity`` sign: Receive +, Issue -, Adjust signed, Transfer + (from
    ``location_id`` to ``to_location_id``), Reserve +, Unreserve -.
    """
    __tablename__ = "part_transactions"
    __table_args__ = (
        Index("ix_part_transactions_part_location", "part_id", "location_id"),
        Index("ix_part_transactions_reference", "reference_type", "reference_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    part_id = Column(Integer, ForeignKey("parts.id"), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("storage_locations.id"), nullable=False)
    to_location_id = Column(Integer, ForeignKey("storage_locations.id"), nullable=True, index=True)

    transaction_type = Column(String(20), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_cost = Column(Numeric(12, 2), nullable=False, default=0)

    reference_type = Column(String(50), nullable=True)
    reference_id = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    performed_by = Column(Integer, nullable=True)
    transaction_date = Column(DateTime, nullable=False, default=utcnow, index=True)

    def on_hand_deltas(self) -> list[tuple[int, int]]:
        """(location_id, delta) pairs this entry applies to quantity_on_hand."""
        kind = TransactionType(self.transaction_type)
        if kind in ADJUSTMENT_TYPES:
            return [(self.location_id, int(self.quantity))]
        if kind == TransactionType.TRANSFER:
            return [(self.location_id, -int(self.quantity)), (self.to_location_id, int(self.quantity))]
        return []

    def reserved_delta(self) -> int:
        kind = TransactionType(self.transaction_type)
        if kind in (TransactionType.RESERVE, TransactionType.UNRESERVE):
            return int(self.quantity)
        return 0
