from decimal import Decimal

import pytest

from stockledger.core.exceptions import Conflict, InvalidRequest, NotFound
from stockledger.core.reorder import ReorderStatus
from stockledger.services.catalog import PartCatalog

USER = 7


@pytest.fixture
def catalog(db):
    return PartCatalog(db)


class TestPartNumbers:
    async def test_generated_in_sequence(self, catalog):
        first = await catalog.create_part({"name": "Gasket"})
        second = await catalog.create_part({"name": "O-Ring"})
        assert (first.part_number, second.part_number) == ("PRT-000001", "PRT-000002")

    async def test_explicit_number_must_be_unique(self, catalog):
        await catalog.create_part({"name": "Gasket", "part_number": "GSK-1"})
        with pytest.raises(Conflict):
            await catalog.create_part({"name": "Gasket copy", "part_number": "GSK-1"})


class TestValidation:
    @pytest.mark.parametrize(
        "data",
        [
            {"name": ""},
            {"name": "Gasket", "reorder_point": -1},
            {"name": "Gasket", "unit_cost": Decimal("-0.01")},
            {"name": "Gasket", "min_stock_level": 10, "max_stock_level": 5},
            {"name": "Gasket", "status": "Retired"},
            {"name": "Gasket", "unit_of_measure": "Bushel"},
        ],
    )
    async def test_create_rejects(self, catalog, data):
        with pytest.raises(InvalidRequest):
            await catalog.create_part(data)

    async def test_update_checks_merged_levels(self, catalog, part_id):
        with pytest.raises(InvalidRequest):
            await catalog.update_part(part_id, {"min_stock_level": 500})
        part = await catalog.update_part(part_id, {"min_stock_level": 50, "reorder_point": 60})
        assert (part.min_stock_level, part.reorder_point, part.max_stock_level) == (50, 60, 200)

    async def test_update_unknown_part(self, catalog):
        with pytest.raises(NotFound):
            await catalog.update_part(12345, {"name": "x"})


class TestDelete:
    async def test_delete_with_stock_is_conflict(self, catalog, ledger, part_id, loc_a):
        await ledger.adjust_stock(part_id, loc_a, "Receive", 2, USER)
        with pytest.raises(Conflict):
            await catalog.delete_part(part_id)

        await ledger.adjust_stock(part_id, loc_a, "Issue", 2, USER)
        await catalog.delete_part(part_id)
        with pytest.raises(NotFound):
            await catalog.get_part(part_id)


class TestStockSummary:
    async def test_summary_across_locations(self, catalog, ledger, part_id, loc_a, loc_b):
        summary = await catalog.stock_summary(part_id)
        assert summary.reorder_status == ReorderStatus.OUT_OF_STOCK

        await ledger.adjust_stock(part_id, loc_a, "Receive", 30, USER)
        await ledger.adjust_stock(part_id, loc_b, "Receive", 5, USER)
        await ledger.reserve_stock(part_id, loc_a, 27, USER)

        summary = await catalog.stock_summary(part_id)
        assert (summary.total_on_hand, summary.total_reserved, summary.total_available) == (35, 27, 8)
        assert summary.reorder_status == ReorderStatus.LOW

        await ledger.reserve_stock(part_id, loc_b, 4, USER)
        summary = await catalog.stock_summary(part_id)
        assert summary.reorder_status == ReorderStatus.CRITICAL

    async def test_low_stock_listing(self, catalog, ledger, part_id, loc_a):
        healthy = await catalog.create_part({"name": "Bearing", "reorder_point": 2})
        healthy_id = healthy.id
        await ledger.adjust_stock(healthy_id, loc_a, "Receive", 50, USER)

        low = await catalog.low_stock_parts()
        assert [(p.id, s.reorder_status) for p, s in low] == [(part_id, ReorderStatus.OUT_OF_STOCK)]

        page = await catalog.list_parts(low_stock=True)
        assert [p.id for p in page.items] == [part_id]

    async def test_search(self, catalog, part_id):
        await catalog.create_part({"name": "V-Belt A48", "manufacturer": "Gates"})
        page = await catalog.list_parts(search="gates")
        assert [p.name for p in page.items] == ["V-Belt A48"]
        page = await catalog.list_parts(search="hf-200")
        assert [p.id for p in page.items] == [part_id]

    async def test_list_rejects_bad_paging(self, catalog):
        with pytest.raises(InvalidRequest):
            await catalog.list_parts(page=0)
