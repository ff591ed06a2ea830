"""
Append-only part transaction journal.

The journal is the authoritative record of stock movements; PartStock rows
are a cache of it, kept in step by the ledger inside the same database
transaction. ``replay`` rebuilds the balances from the journal alone.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Dict, Generic, List, Optional, Tuple, TypeVar

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.config import settings
from stockledger.core.exceptions import InvalidRequest
from stockledger.db.database import utcnow
from stockledger.db.inventory.transaction import PartTransaction, TransactionType

T = TypeVar("T")

SORT_COLUMNS = {
    "date": PartTransaction.transaction_date,
    "type": PartTransaction.transaction_type,
    "quantity": PartTransaction.quantity,
}


@dataclass
class PagedResult(Generic[T]):
    items: List[T]
    total_count: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.page_size else 0


@dataclass
class TransactionFilter:
    part_id: Optional[int] = None
    location_id: Optional[int] = None
    transaction_type: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    from_date: Optional[date] = None
    to_date: Optional[date] = None
    page: int = 1
    page_size: int = field(default_factory=lambda: settings.default_page_size)
    sort_by: str = "date"
    sort_descending: bool = True

    def validate(self) -> None:
        if self.page < 1:
            raise InvalidRequest("page must be >= 1")
        if not 1 <= self.page_size <= settings.max_page_size:
            raise InvalidRequest(f"page_size must be between 1 and {settings.max_page_size}")
        if self.transaction_type is not None:
            try:
                TransactionType(self.transaction_type)
            except ValueError:
                raise InvalidRequest(f"Unknown transaction type: {self.transaction_type}")
        if self.sort_by not in SORT_COLUMNS:
            raise InvalidRequest(f"sort_by must be one of {sorted(SORT_COLUMNS)}")
        if self.from_date and self.to_date and _day(self.from_date) > _day(self.to_date):
            raise InvalidRequest("from_date must not be after to_date")


@dataclass
class ReplayedBalance:
    quantity_on_hand: int = 0
    quantity_reserved: int = 0


def _day(d: date) -> date:
    return d.date() if isinstance(d, datetime) else d


class TransactionJournal:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        *,
        part_id: int,
        location_id: int,
        transaction_type: TransactionType,
        quantity: int,
        unit_cost: Decimal,
        performed_by: int,
        to_location_id: Optional[int] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> PartTransaction:
        """Stage one journal entry in the caller's transaction.

        The caller owns the commit; the row becomes visible together with the
        balance change it records.
        """
        entry = PartTransaction(
            part_id=part_id,
            location_id=location_id,
            to_location_id=to_location_id,
            transaction_type=TransactionType(transaction_type).value,
            quantity=int(quantity),
            unit_cost=unit_cost,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
            performed_by=performed_by,
            transaction_date=utcnow(),
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    def _filtered(self, stmt, flt: TransactionFilter):
        if flt.part_id is not None:
            stmt = stmt.where(PartTransaction.part_id == flt.part_id)
        if flt.location_id is not None:
            stmt = stmt.where(
                or_(
                    PartTransaction.location_id == flt.location_id,
                    PartTransaction.to_location_id == flt.location_id,
                )
            )
        if flt.transaction_type:
            stmt = stmt.where(PartTransaction.transaction_type == TransactionType(flt.transaction_type).value)
        if flt.reference_type:
            stmt = stmt.where(PartTransaction.reference_type == flt.reference_type)
        if flt.reference_id is not None:
            stmt = stmt.where(PartTransaction.reference_id == flt.reference_id)
        if flt.from_date:
            start_dt = datetime.combine(_day(flt.from_date), time.min)
            stmt = stmt.where(PartTransaction.transaction_date >= start_dt)
        if flt.to_date:
            end_excl = datetime.combine(_day(flt.to_date), time.min) + timedelta(days=1)
            stmt = stmt.where(PartTransaction.transaction_date < end_excl)
        return stmt

    async def query(self, flt: TransactionFilter) -> PagedResult[PartTransaction]:
        flt.validate()

        count_stmt = self._filtered(select(func.count()).select_from(PartTransaction), flt)
        total = int((await self.db.execute(count_stmt)).scalar_one() or 0)

        column = SORT_COLUMNS[flt.sort_by]
        id_order = PartTransaction.id.desc() if flt.sort_descending else PartTransaction.id.asc()
        stmt = (
            self._filtered(select(PartTransaction), flt)
            .order_by(column.desc() if flt.sort_descending else column.asc(), id_order)
            .offset((flt.page - 1) * flt.page_size)
            .limit(flt.page_size)
        )
        res = await self.db.execute(stmt)
        return PagedResult(
            items=list(res.scalars().all()),
            total_count=total,
            page=flt.page,
            page_size=flt.page_size,
        )

    async def replay(self, part_id: Optional[int] = None) -> Dict[Tuple[int, int], ReplayedBalance]:
        """Rebuild (part_id, location_id) balances from the journal alone."""
        stmt = select(PartTransaction).order_by(PartTransaction.id.asc())
        if part_id is not None:
            stmt = stmt.where(PartTransaction.part_id == part_id)
        res = await self.db.execute(stmt)

        balances: Dict[Tuple[int, int], ReplayedBalance] = defaultdict(ReplayedBalance)
        for entry in res.scalars().all():
            for location_id, delta in entry.on_hand_deltas():
                balances[(entry.part_id, location_id)].quantity_on_hand += delta
            reserved = entry.reserved_delta()
            if reserved:
                balances[(entry.part_id, entry.location_id)].quantity_reserved += reserved
        return dict(balances)
