"""
Stock ledger mutator tests.

Covers the receive / reserve / issue / transfer / unreserve walk-through,
the validation failures of every mutator, and the journal entry each
successful call writes.
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from stockledger.core.exceptions import (
    Conflict,
    InsufficientAvailableStock,
    InsufficientStock,
    InvalidRequest,
    NotFound,
)
from stockledger.db.inventory.stock import PartStock
from stockledger.db.inventory.transaction import PartTransaction, TransactionType
from stockledger.services.catalog import PartCatalog
from stockledger.services.journal import TransactionFilter
from stockledger.services.locations import LocationRegistry

USER = 7


async def _journal(db, part_id):
    res = await db.execute(
        select(PartTransaction).where(PartTransaction.part_id == part_id).order_by(PartTransaction.id.asc())
    )
    return [(t.transaction_type, t.quantity, t.location_id, t.to_location_id) for t in res.scalars().all()]


class TestWalkthrough:
    """Receive 100, reserve 30, issue 80, transfer 50, unreserve 40, delete B."""

    async def test_full_sequence(self, ledger, db, part_id, loc_a, loc_b, balance_of):
        stock = await ledger.adjust_stock(part_id, loc_a, "Receive", 100, USER)
        assert (stock.quantity_on_hand, stock.quantity_reserved, stock.quantity_available) == (100, 0, 100)
        assert await _journal(db, part_id) == [("Receive", 100, loc_a, None)]

        stock = await ledger.reserve_stock(part_id, loc_a, 30, USER, reference_type="WorkOrder", reference_id=42)
        assert (stock.quantity_on_hand, stock.quantity_reserved, stock.quantity_available) == (100, 30, 70)

        with pytest.raises(InsufficientAvailableStock) as exc:
            await ledger.adjust_stock(part_id, loc_a, "Issue", 80, USER)
        assert exc.value.available == 70
        assert exc.value.requested == 80
        assert await balance_of(part_id, loc_a) == (100, 30, 70)

        from_stock, to_stock = await ledger.transfer_stock(part_id, loc_a, loc_b, 50, USER)
        assert (from_stock.quantity_on_hand, from_stock.quantity_reserved, from_stock.quantity_available) == (50, 30, 20)
        assert (to_stock.quantity_on_hand, to_stock.quantity_reserved, to_stock.quantity_available) == (50, 0, 50)

        with pytest.raises(InvalidRequest):
            await ledger.unreserve_stock(part_id, loc_a, 40, USER)
        assert await balance_of(part_id, loc_a) == (50, 30, 20)

        with pytest.raises(Conflict):
            await LocationRegistry(db).delete_location(loc_b)

        assert await _journal(db, part_id) == [
            ("Receive", 100, loc_a, None),
            ("Reserve", 30, loc_a, None),
            ("Transfer", 50, loc_a, loc_b),
        ]
        assert await ledger.verify_replay(part_id) == []


class TestAdjustStock:
    async def test_issue_more_than_on_hand_is_insufficient_stock(self, ledger, part_id, loc_a, balance_of):
        await ledger.adjust_stock(part_id, loc_a, "Receive", 5, USER)
        with pytest.raises(InsufficientStock) as exc:
            await ledger.adjust_stock(part_id, loc_a, "Issue", 6, USER)
        assert exc.value.on_hand == 5
        assert await balance_of(part_id, loc_a) == (5, 0, 5)

    async def test_negative_adjust_obeys_same_rules_as_issue(self, ledger, part_id, loc_a, balance_of):
        await ledger.adjust_stock(part_id, loc_a, "Receive", 10, USER)
        await ledger.reserve_stock(part_id, loc_a, 4, USER)

        with pytest.raises(InsufficientStock):
            await ledger.adjust_stock(part_id, loc_a, "Adjust", -11, USER)
        with pytest.raises(InsufficientAvailableStock):
            await ledger.adjust_stock(part_id, loc_a, "Adjust", -7, USER)

        stock = await ledger.adjust_stock(part_id, loc_a, "Adjust", -6, USER, notes="cycle count")
        assert (stock.quantity_on_hand, stock.quantity_reserved) == (4, 4)
        stock = await ledger.adjust_stock(part_id, loc_a, "Adjust", 3, USER)
        assert stock.quantity_on_hand == 7

    @pytest.mark.parametrize(
        "kind, quantity",
        [("Receive", 0), ("Receive", -3), ("Issue", 0), ("Issue", -1), ("Adjust", 0)],
    )
    async def test_rejects_bad_quantity(self, ledger, part_id, loc_a, kind, quantity):
        with pytest.raises(InvalidRequest):
            await ledger.adjust_stock(part_id, loc_a, kind, quantity, USER)

    @pytest.mark.parametrize(
        "kind, quantity",
        [("Receive", 2.7), ("Issue", 1.0), ("Adjust", -1.5), ("Receive", "3"), ("Adjust", True), ("Receive", None)],
    )
    async def test_fractional_or_non_integer_quantity_is_rejected(self, ledger, part_id, loc_a, balance_of,
                                                                  kind, quantity):
        with pytest.raises(InvalidRequest):
            await ledger.adjust_stock(part_id, loc_a, kind, quantity, USER)
        assert await balance_of(part_id, loc_a) == (0, 0, 0)

    async def test_other_mutators_reject_fractional_quantity(self, ledger, part_id, loc_a, loc_b, balance_of):
        await ledger.adjust_stock(part_id, loc_a, "Receive", 10, USER)
        with pytest.raises(InvalidRequest):
            await ledger.transfer_stock(part_id, loc_a, loc_b, 2.5, USER)
        with pytest.raises(InvalidRequest):
            await ledger.reserve_stock(part_id, loc_a, 0.5, USER)
        await ledger.reserve_stock(part_id, loc_a, 4, USER)
        with pytest.raises(InvalidRequest):
            await ledger.unreserve_stock(part_id, loc_a, 1.2, USER)
        with pytest.raises(InvalidRequest):
            await ledger.consume_reservation(part_id, loc_a, 3.9, USER)
        assert await balance_of(part_id, loc_a) == (10, 4, 6)
        assert await balance_of(part_id, loc_b) == (0, 0, 0)

    @pytest.mark.parametrize("kind", ["Transfer", "Reserve", "Unreserve", "Scrap"])
    async def test_rejects_non_adjustment_types(self, ledger, part_id, loc_a, kind):
        with pytest.raises(InvalidRequest):
            await ledger.adjust_stock(part_id, loc_a, kind, 1, USER)

    async def test_rejects_negative_unit_cost(self, ledger, part_id, loc_a):
        with pytest.raises(InvalidRequest):
            await ledger.adjust_stock(part_id, loc_a, "Receive", 1, USER, unit_cost=Decimal("-1"))

    async def test_unknown_part_or_location(self, ledger, part_id, loc_a):
        with pytest.raises(NotFound):
            await ledger.adjust_stock(9999, loc_a, "Receive", 1, USER)
        with pytest.raises(NotFound):
            await ledger.adjust_stock(part_id, 9999, "Receive", 1, USER)

    async def test_inactive_part_or_location(self, ledger, db, part_id, loc_a):
        await PartCatalog(db).update_part(part_id, {"status": "Obsolete"})
        with pytest.raises(NotFound):
            await ledger.adjust_stock(part_id, loc_a, "Receive", 1, USER)

        other = await PartCatalog(db).create_part({"name": "V-Belt A48"})
        await LocationRegistry(db).update_location(loc_a, {"is_active": False})
        with pytest.raises(NotFound):
            await ledger.adjust_stock(other.id, loc_a, "Receive", 1, USER)

    async def test_failed_first_touch_leaves_no_stock_row(self, ledger, db, part_id, loc_a):
        with pytest.raises(InsufficientStock):
            await ledger.adjust_stock(part_id, loc_a, "Issue", 1, USER)
        count = await db.execute(select(func.count()).select_from(PartStock))
        assert count.scalar_one() == 0

    async def test_journal_entry_fields(self, ledger, db, part_id, loc_a):
        await ledger.adjust_stock(
            part_id, loc_a, "Receive", 12, USER,
            unit_cost=Decimal("40.00"), reference_type="PurchaseOrder", reference_id=9, notes="dock 2",
        )
        await ledger.adjust_stock(part_id, loc_a, "Issue", 2, USER, reference_type="WorkOrder", reference_id=42)

        page = await ledger.get_transactions(TransactionFilter(part_id=part_id, sort_descending=False))
        receive, issue = page.items
        assert receive.transaction_type == TransactionType.RECEIVE.value
        assert receive.quantity == 12
        assert receive.unit_cost == Decimal("40.00")
        assert (receive.reference_type, receive.reference_id, receive.notes) == ("PurchaseOrder", 9, "dock 2")
        assert receive.performed_by == USER

        assert issue.quantity == -2
        assert issue.unit_cost == Decimal("42.50")  # falls back to the part's cost
        assert (issue.reference_type, issue.reference_id) == ("WorkOrder", 42)

    async def test_stock_row_records_last_writer(self, ledger, part_id, loc_a):
        stock = await ledger.adjust_stock(part_id, loc_a, "Receive", 3, 99)
        assert stock.updated_by == 99
        assert stock.updated_at is not None


class TestTransferStock:
    async def test_same_location_rejected(self, ledger, part_id, loc_a):
        with pytest.raises(InvalidRequest):
            await ledger.transfer_stock(part_id, loc_a, loc_a, 1, USER)

    async def test_non_positive_quantity_rejected(self, ledger, part_id, loc_a, loc_b):
        with pytest.raises(InvalidRequest):
            await ledger.transfer_stock(part_id, loc_a, loc_b, 0, USER)

    async def test_reserved_stock_cannot_move(self, ledger, part_id, loc_a, loc_b, balance_of):
        await ledger.adjust_stock(part_id, loc_a, "Receive", 10, USER)
        await ledger.reserve_stock(part_id, loc_a, 8, USER)
        with pytest.raises(InsufficientAvailableStock):
            await ledger.transfer_stock(part_id, loc_a, loc_b, 3, USER)
        assert await balance_of(part_id, loc_a) == (10, 8, 2)
        assert await balance_of(part_id, loc_b) == (0, 0, 0)

    async def test_destination_must_be_active(self, ledger, db, part_id, loc_a, loc_b, balance_of):
        await ledger.adjust_stock(part_id, loc_a, "Receive", 10, USER)
        await LocationRegistry(db).update_location(loc_b, {"is_active": False})
        with pytest.raises(NotFound):
            await ledger.transfer_stock(part_id, loc_a, loc_b, 5, USER)
        assert await balance_of(part_id, loc_a) == (10, 0, 10)

    async def test_transfer_back_and_forth(self, ledger, part_id, loc_a, loc_b):
        await ledger.adjust_stock(part_id, loc_a, "Receive", 10, USER)
        await ledger.transfer_stock(part_id, loc_a, loc_b, 10, USER)
        from_stock, to_stock = await ledger.transfer_stock(part_id, loc_b, loc_a, 4, USER)
        assert (from_stock.location_id, from_stock.quantity_on_hand) == (loc_b, 6)
        assert (to_stock.location_id, to_stock.quantity_on_hand) == (loc_a, 4)


class TestReservations:
    async def test_reserve_more_than_available(self, ledger, part_id, loc_a):
        await ledger.adjust_stock(part_id, loc_a, "Receive", 5, USER)
        with pytest.raises(InsufficientAvailableStock):
            await ledger.reserve_stock(part_id, loc_a, 6, USER)

    async def test_reserve_on_untouched_pair(self, ledger, part_id, loc_a):
        with pytest.raises(InsufficientAvailableStock) as exc:
            await ledger.reserve_stock(part_id, loc_a, 1, USER)
        assert exc.value.available == 0

    async def test_unreserve_never_clamps(self, ledger, part_id, loc_a, balance_of):
        await ledger.adjust_stock(part_id, loc_a, "Receive", 5, USER)
        await ledger.reserve_stock(part_id, loc_a, 2, USER)
        with pytest.raises(InvalidRequest):
            await ledger.unreserve_stock(part_id, loc_a, 3, USER)
        stock = await ledger.unreserve_stock(part_id, loc_a, 2, USER)
        assert (stock.quantity_reserved, stock.quantity_available) == (0, 5)
        assert await balance_of(part_id, loc_a) == (5, 0, 5)

    async def test_consume_reservation_for_work_order(self, ledger, db, part_id, loc_a):
        await ledger.adjust_stock(part_id, loc_a, "Receive", 10, USER)
        await ledger.reserve_stock(part_id, loc_a, 4, USER, reference_type="WorkOrder", reference_id=42)

        stock = await ledger.consume_reservation(part_id, loc_a, 3, USER, reference_id=42)
        assert (stock.quantity_on_hand, stock.quantity_reserved, stock.quantity_available) == (7, 1, 6)

        page = await ledger.get_transactions(TransactionFilter(reference_type="WorkOrder", reference_id=42,
                                                               sort_descending=False))
        assert [(t.transaction_type, t.quantity) for t in page.items] == [
            ("Reserve", 4), ("Unreserve", -3), ("Issue", -3),
        ]
        assert await ledger.verify_replay(part_id) == []

    async def test_consume_more_than_reserved(self, ledger, part_id, loc_a):
        await ledger.adjust_stock(part_id, loc_a, "Receive", 10, USER)
        await ledger.reserve_stock(part_id, loc_a, 2, USER)
        with pytest.raises(InvalidRequest):
            await ledger.consume_reservation(part_id, loc_a, 3, USER)


class TestReads:
    async def test_get_stock_on_untouched_pair_is_zero(self, ledger, part_id, loc_a):
        stock = await ledger.get_stock(part_id, loc_a)
        assert (stock.quantity_on_hand, stock.quantity_reserved, stock.quantity_available) == (0, 0, 0)

    async def test_get_stock_unknown_location(self, ledger, part_id):
        with pytest.raises(NotFound):
            await ledger.get_stock(part_id, 4242)

    async def test_get_stock_is_idempotent(self, ledger, part_id, loc_a):
        await ledger.adjust_stock(part_id, loc_a, "Receive", 9, USER)
        await ledger.reserve_stock(part_id, loc_a, 2, USER)
        first = await ledger.get_stock(part_id, loc_a)
        first = (first.quantity_on_hand, first.quantity_reserved, first.quantity_available)
        second = await ledger.get_stock(part_id, loc_a)
        assert first == (second.quantity_on_hand, second.quantity_reserved, second.quantity_available)

    async def test_list_stock_orders_by_location(self, ledger, part_id, loc_a, loc_b):
        await ledger.adjust_stock(part_id, loc_b, "Receive", 2, USER)
        await ledger.adjust_stock(part_id, loc_a, "Receive", 1, USER)
        stocks = await ledger.list_stock(part_id)
        assert [(s.location_id, s.quantity_on_hand) for s in stocks] == [(loc_a, 1), (loc_b, 2)]
