"""
Stock ledger: the only writer of PartStock and PartTransaction.

Every mutator runs as one unit of work:

1. take the in-process locks for the touched (part_id, location_id) keys,
   in ascending key order, bounded by ``lock_timeout``;
2. open a write transaction, read part and location ``FOR SHARE`` (deletion
   takes them ``FOR UPDATE``), upsert-then-``SELECT ... FOR UPDATE`` the
   balance rows (same key order);
3. apply the balance change and append the journal entry;
4. commit, or roll back everything on any exception, cancellation included.

Lock contention (in-process timeout, database lock timeout, deadlock or
serialization failure) surfaces as ConcurrencyConflict; the ledger never
retries on its own.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.core.config import settings
from stockledger.core.exceptions import (
    ConcurrencyConflict,
    InsufficientAvailableStock,
    InsufficientStock,
    InvalidRequest,
    PersistenceError,
    StockLedgerError,
)
from stockledger.core.locks import KeyedLockRegistry, StockKey
from stockledger.core.logging_config import get_logger, log_extra
from stockledger.db.database import begin_write, utcnow
from stockledger.db.inventory.stock import PartStock
from stockledger.db.inventory.transaction import ADJUSTMENT_TYPES, PartTransaction, TransactionType
from stockledger.db.part import Part
from stockledger.services.catalog import PartCatalog
from stockledger.services.journal import PagedResult, TransactionFilter, TransactionJournal
from stockledger.services.locations import LocationRegistry

logger = get_logger(__name__)

REFERENCE_WORK_ORDER = "WorkOrder"

# Shared by every ledger in this process.
stock_locks = KeyedLockRegistry()

# lock_not_available, serialization_failure, deadlock_detected
_CONTENTION_SQLSTATES = {"55P03", "40001", "40P01"}


def _is_lock_contention(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None)):
        sqlstate = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if sqlstate in _CONTENTION_SQLSTATES:
            return True
    message = str(orig or exc).lower()
    return "database is locked" in message or "lock timeout" in message or "deadlock" in message


def _coerce_type(transaction_type) -> TransactionType:
    try:
        return TransactionType(transaction_type)
    except ValueError:
        raise InvalidRequest(f"Unknown transaction type: {transaction_type}")


def _require_whole(quantity, what: str) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidRequest(f"{what} quantity must be a whole number, got {quantity!r}")
    return quantity


def _require_positive(quantity, what: str) -> int:
    quantity = _require_whole(quantity, what)
    if quantity <= 0:
        raise InvalidRequest(f"{what} quantity must be greater than zero")
    return quantity


@dataclass
class ReplayMismatch:
    part_id: int
    location_id: int
    quantity_on_hand: int
    replayed_on_hand: int
    quantity_reserved: int
    replayed_reserved: int


class StockLedger:
    def __init__(
        self,
        db: AsyncSession,
        locks: Optional[KeyedLockRegistry] = None,
        lock_timeout: Optional[float] = None,
    ):
        self.db = db
        self.locks = locks if locks is not None else stock_locks
        self.lock_timeout = settings.lock_timeout_seconds if lock_timeout is None else lock_timeout
        self.catalog = PartCatalog(db)
        self.locations = LocationRegistry(db)
        self.journal = TransactionJournal(db)

    # ------------------------------------------------------------------
    # unit of work
    # ------------------------------------------------------------------

    def _dialect_name(self) -> str:
        return self.db.get_bind().dialect.name

    @asynccontextmanager
    async def _unit_of_work(self, operation: str, keys: Iterable[StockKey]):
        keys = list(keys)
        try:
            async with self.locks.acquire(keys, self.lock_timeout):
                try:
                    await begin_write(self.db, self.lock_timeout)
                    yield
                    await self.db.commit()
                except StockLedgerError as e:
                    await self.db.rollback()
                    logger.info(
                        f"{operation} rejected: {e.code}",
                        extra=log_extra(operation=operation, code=e.code, keys=keys, reason=e.message),
                    )
                    raise
                except DBAPIError as e:
                    await self.db.rollback()
                    if _is_lock_contention(e):
                        raise ConcurrencyConflict(f"{operation} hit lock contention on {keys}", keys=keys) from e
                    logger.exception(
                        f"{operation} failed in the persistence layer",
                        extra=log_extra(operation=operation, keys=keys),
                    )
                    raise PersistenceError(f"{operation} failed: {e.__class__.__name__}") from e
                except BaseException:
                    # Cancellation or any unexpected error: nothing is kept.
                    await self.db.rollback()
                    raise
        except ConcurrencyConflict as e:
            logger.warning(
                f"{operation} concurrency conflict",
                extra=log_extra(operation=operation, keys=keys, reason=e.message),
            )
            raise

    async def _lock_stock(self, part_id: int, location_id: int) -> PartStock:
        """Return the balance row for the key, created zeroed if missing, locked FOR UPDATE."""
        dialect = self._dialect_name()
        if dialect in ("postgresql", "sqlite"):
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            await self.db.execute(
                insert(PartStock.__table__)
                .values(
                    part_id=part_id,
                    location_id=location_id,
                    quantity_on_hand=0,
                    quantity_reserved=0,
                    created_at=utcnow(),
                )
                .on_conflict_do_nothing(index_elements=["part_id", "location_id"])
            )
        else:
            exists = await self.db.execute(
                select(PartStock.id).where(PartStock.part_id == part_id, PartStock.location_id == location_id)
            )
            if exists.scalar_one_or_none() is None:
                self.db.add(PartStock(part_id=part_id, location_id=location_id, quantity_on_hand=0, quantity_reserved=0))
                await self.db.flush()

        res = await self.db.execute(
            select(PartStock)
            .where(PartStock.part_id == part_id, PartStock.location_id == location_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return res.scalar_one()

    @staticmethod
    def _touch(stock: PartStock, user_id: int) -> None:
        stock.updated_at = utcnow()
        stock.updated_by = user_id

    @staticmethod
    def _unit_cost(part: Part, unit_cost: Optional[Decimal]) -> Decimal:
        if unit_cost is None:
            return Decimal(part.unit_cost or 0)
        unit_cost = Decimal(str(unit_cost))
        if unit_cost < 0:
            raise InvalidRequest("unit_cost cannot be negative")
        return unit_cost

    # ------------------------------------------------------------------
    # mutators
    # ------------------------------------------------------------------

    async def adjust_stock(
        self,
        part_id: int,
        location_id: int,
        transaction_type,
        quantity: int,
        user_id: int,
        unit_cost: Optional[Decimal] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> PartStock:
        """Receive, Issue or Adjust on-hand stock at one location.

        Receive and Issue take a positive quantity. Adjust takes a signed,
        non-zero delta.
        """
        kind = _coerce_type(transaction_type)
        if kind not in ADJUSTMENT_TYPES:
            raise InvalidRequest("Transaction type must be Receive, Issue, or Adjust")
        if kind == TransactionType.ADJUST:
            delta = _require_whole(quantity, "Adjust")
            if delta == 0:
                raise InvalidRequest("Adjust quantity cannot be zero")
        else:
            qty = _require_positive(quantity, kind.value)
            delta = qty if kind == TransactionType.RECEIVE else -qty

        async with self._unit_of_work(f"adjust_stock[{kind.value}]", [(part_id, location_id)]):
            part = await self.catalog.require_active_part(part_id, lock="share")
            await self.locations.require_active_location(location_id, lock="share")
            cost = self._unit_cost(part, unit_cost)
            stock = await self._lock_stock(part_id, location_id)

            if delta < 0:
                removing = -delta
                if removing > stock.quantity_on_hand:
                    raise InsufficientStock(part_id, location_id, removing, stock.quantity_on_hand)
                if removing > stock.quantity_available:
                    raise InsufficientAvailableStock(part_id, location_id, removing, stock.quantity_available)

            stock.quantity_on_hand += delta
            self._touch(stock, user_id)
            entry = await self.journal.append(
                part_id=part_id,
                location_id=location_id,
                transaction_type=kind,
                quantity=delta,
                unit_cost=cost,
                performed_by=user_id,
                reference_type=reference_type,
                reference_id=reference_id,
                notes=notes,
            )

        logger.info(
            f"{kind.value} {delta:+d} of part {part_id} at location {location_id}",
            extra=log_extra(transaction_id=entry.id, part_id=part_id, location_id=location_id,
                            on_hand=stock.quantity_on_hand, reserved=stock.quantity_reserved),
        )
        return stock

    async def transfer_stock(
        self,
        part_id: int,
        from_location_id: int,
        to_location_id: int,
        quantity: int,
        user_id: int,
        notes: Optional[str] = None,
    ) -> Tuple[PartStock, PartStock]:
        """Move available stock between two locations as one journal entry."""
        if from_location_id == to_location_id:
            raise InvalidRequest("From and To locations must be different")
        qty = _require_positive(quantity, "Transfer")

        keys = [(part_id, from_location_id), (part_id, to_location_id)]
        async with self._unit_of_work("transfer_stock", keys):
            part = await self.catalog.require_active_part(part_id, lock="share")
            for location_id in sorted((from_location_id, to_location_id)):
                await self.locations.require_active_location(location_id, lock="share")

            locked = {}
            for _, location_id in KeyedLockRegistry.canonical_order(keys):
                locked[location_id] = await self._lock_stock(part_id, location_id)
            from_stock = locked[from_location_id]
            to_stock = locked[to_location_id]

            if qty > from_stock.quantity_available:
                raise InsufficientAvailableStock(part_id, from_location_id, qty, from_stock.quantity_available)

            from_stock.quantity_on_hand -= qty
            to_stock.quantity_on_hand += qty
            self._touch(from_stock, user_id)
            self._touch(to_stock, user_id)
            entry = await self.journal.append(
                part_id=part_id,
                location_id=from_location_id,
                to_location_id=to_location_id,
                transaction_type=TransactionType.TRANSFER,
                quantity=qty,
                unit_cost=Decimal(part.unit_cost or 0),
                performed_by=user_id,
                notes=notes,
            )

        logger.info(
            f"Transfer {qty} of part {part_id} from {from_location_id} to {to_location_id}",
            extra=log_extra(transaction_id=entry.id, part_id=part_id,
                            from_location_id=from_location_id, to_location_id=to_location_id),
        )
        return from_stock, to_stock

    async def reserve_stock(
        self,
        part_id: int,
        location_id: int,
        quantity: int,
        user_id: int,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> PartStock:
        qty = _require_positive(quantity, "Reserve")

        async with self._unit_of_work("reserve_stock", [(part_id, location_id)]):
            part = await self.catalog.require_active_part(part_id, lock="share")
            await self.locations.require_active_location(location_id, lock="share")
            stock = await self._lock_stock(part_id, location_id)

            if qty > stock.quantity_available:
                raise InsufficientAvailableStock(part_id, location_id, qty, stock.quantity_available)

            stock.quantity_reserved += qty
            self._touch(stock, user_id)
            entry = await self.journal.append(
                part_id=part_id,
                location_id=location_id,
                transaction_type=TransactionType.RESERVE,
                quantity=qty,
                unit_cost=Decimal(part.unit_cost or 0),
                performed_by=user_id,
                reference_type=reference_type,
                reference_id=reference_id,
                notes=notes,
            )

        logger.info(
            f"Reserved {qty} of part {part_id} at location {location_id}",
            extra=log_extra(transaction_id=entry.id, reference_type=reference_type, reference_id=reference_id),
        )
        return stock

    async def unreserve_stock(
        self,
        part_id: int,
        location_id: int,
        quantity: int,
        user_id: int,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> PartStock:
        qty = _require_positive(quantity, "Unreserve")

        async with self._unit_of_work("unreserve_stock", [(part_id, location_id)]):
            part = await self.catalog.require_active_part(part_id, lock="share")
            await self.locations.require_active_location(location_id, lock="share")
            stock = await self._lock_stock(part_id, location_id)

            if qty > stock.quantity_reserved:
                raise InvalidRequest(
                    f"Cannot unreserve {qty}: only {stock.quantity_reserved} reserved "
                    f"for part {part_id} at location {location_id}"
                )

            stock.quantity_reserved -= qty
            self._touch(stock, user_id)
            entry = await self.journal.append(
                part_id=part_id,
                location_id=location_id,
                transaction_type=TransactionType.UNRESERVE,
                quantity=-qty,
                unit_cost=Decimal(part.unit_cost or 0),
                performed_by=user_id,
                reference_type=reference_type,
                reference_id=reference_id,
                notes=notes,
            )

        logger.info(
            f"Unreserved {qty} of part {part_id} at location {location_id}",
            extra=log_extra(transaction_id=entry.id, reference_type=reference_type, reference_id=reference_id),
        )
        return stock

    async def consume_reservation(
        self,
        part_id: int,
        location_id: int,
        quantity: int,
        user_id: int,
        reference_type: str = REFERENCE_WORK_ORDER,
        reference_id: Optional[int] = None,
        unit_cost: Optional[Decimal] = None,
        notes: Optional[str] = None,
    ) -> PartStock:
        """Issue stock that was reserved earlier (e.g. for a work order).

        Releases the reservation and issues the same quantity in one unit of
        work, writing an Unreserve and an Issue entry.
        """
        qty = _require_positive(quantity, "Consume")

        async with self._unit_of_work("consume_reservation", [(part_id, location_id)]):
            part = await self.catalog.require_active_part(part_id, lock="share")
            await self.locations.require_active_location(location_id, lock="share")
            cost = self._unit_cost(part, unit_cost)
            stock = await self._lock_stock(part_id, location_id)

            if qty > stock.quantity_reserved:
                raise InvalidRequest(
                    f"Cannot consume {qty}: only {stock.quantity_reserved} reserved "
                    f"for part {part_id} at location {location_id}"
                )

            stock.quantity_reserved -= qty
            stock.quantity_on_hand -= qty
            self._touch(stock, user_id)
            for kind, signed in ((TransactionType.UNRESERVE, -qty), (TransactionType.ISSUE, -qty)):
                await self.journal.append(
                    part_id=part_id,
                    location_id=location_id,
                    transaction_type=kind,
                    quantity=signed,
                    unit_cost=cost,
                    performed_by=user_id,
                    reference_type=reference_type,
                    reference_id=reference_id,
                    notes=notes,
                )

        logger.info(
            f"Consumed {qty} reserved of part {part_id} at location {location_id}",
            extra=log_extra(reference_type=reference_type, reference_id=reference_id),
        )
        return stock

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    async def get_stock(self, part_id: int, location_id: int) -> PartStock:
        """Balance for one pair; an unpersisted zero row if never touched."""
        await self.catalog.get_part(part_id)
        await self.locations.get_location(location_id)
        res = await self.db.execute(
            select(PartStock)
            .where(PartStock.part_id == part_id, PartStock.location_id == location_id)
            .execution_options(populate_existing=True)
        )
        stock = res.scalar_one_or_none()
        if stock is None:
            return PartStock(part_id=part_id, location_id=location_id, quantity_on_hand=0, quantity_reserved=0)
        return stock

    async def list_stock(self, part_id: int) -> List[PartStock]:
        """Every balance row for a part, ordered by location."""
        await self.catalog.get_part(part_id)
        res = await self.db.execute(
            select(PartStock)
            .where(PartStock.part_id == part_id)
            .order_by(PartStock.location_id.asc())
            .execution_options(populate_existing=True)
        )
        return list(res.scalars().all())

    async def get_transactions(self, flt: TransactionFilter) -> PagedResult[PartTransaction]:
        return await self.journal.query(flt)

    async def verify_replay(self, part_id: Optional[int] = None) -> List[ReplayMismatch]:
        """Compare materialized balances against a replay of the journal."""
        replayed = await self.journal.replay(part_id)
        stmt = select(PartStock).execution_options(populate_existing=True)
        if part_id is not None:
            stmt = stmt.where(PartStock.part_id == part_id)
        stocks = {s.key: s for s in (await self.db.execute(stmt)).scalars().all()}

        mismatches: List[ReplayMismatch] = []
        for key in sorted(set(stocks) | set(replayed)):
            stock = stocks.get(key)
            on_hand = int(stock.quantity_on_hand) if stock else 0
            reserved = int(stock.quantity_reserved) if stock else 0
            replay = replayed.get(key)
            replay_on_hand = replay.quantity_on_hand if replay else 0
            replay_reserved = replay.quantity_reserved if replay else 0
            if (on_hand, reserved) != (replay_on_hand, replay_reserved):
                mismatches.append(
                    ReplayMismatch(key[0], key[1], on_hand, replay_on_hand, reserved, replay_reserved)
                )
        if mismatches:
            logger.error(
                f"Journal replay found {len(mismatches)} mismatched balances",
                extra=log_extra(part_id=part_id, keys=[(m.part_id, m.location_id) for m in mismatches]),
            )
        return mismatches
