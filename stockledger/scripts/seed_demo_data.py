"""
Seed a small demo warehouse: a location tree, a handful of parts and some
opening stock, all booked through the ledger so the journal replays cleanly.

Run from the repo root:
  python -m stockledger.scripts.seed_demo_data
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

from sqlalchemy import select

from stockledger.core.config import settings
from stockledger.core.logging_config import get_logger, setup_logging
from stockledger.db.database import async_session_maker, create_db_and_tables
from stockledger.db.location import StorageLocation
from stockledger.db.part import Part
from stockledger.services.catalog import PartCatalog
from stockledger.services.ledger import StockLedger
from stockledger.services.locations import LocationRegistry

logger = get_logger(__name__)

SEED_USER_ID = 1

# (code, name, parent code)
LOCATIONS = [
    ("MAIN", "Main Warehouse", None),
    ("MAIN-A1", "Aisle 1", "MAIN"),
    ("MAIN-A1-B01", "Bin 01", "MAIN-A1"),
    ("MAIN-A1-B02", "Bin 02", "MAIN-A1"),
    ("TRUCK-1", "Service Truck 1", None),
]

# (name, unit, cost, reorder point, reorder qty, min, max, {location code: opening qty})
PARTS = [
    ("Hydraulic Filter HF-200", "Each", Decimal("42.50"), 10, 20, 4, 40, {"MAIN-A1-B01": 25, "TRUCK-1": 2}),
    ("V-Belt A48", "Each", Decimal("11.90"), 6, 12, 2, 24, {"MAIN-A1-B02": 5}),
    ("Bearing 6205-2RS", "Each", Decimal("7.35"), 20, 50, 10, 100, {"MAIN-A1-B01": 60}),
    ("Hydraulic Oil ISO 46", "Gallon", Decimal("18.00"), 15, 30, 5, 60, {"MAIN": 0}),
]


async def get_or_create_location(registry: LocationRegistry, code: str, name: str, parent_id) -> StorageLocation:
    res = await registry.db.execute(
        select(StorageLocation).where(StorageLocation.code == code, StorageLocation.is_deleted == False)  # noqa: E712
    )
    loc = res.scalar_one_or_none()
    if loc:
        return loc
    return await registry.create_location({"name": name, "code": code, "parent_id": parent_id})


async def get_or_create_part(catalog: PartCatalog, data: dict) -> tuple[Part, bool]:
    res = await catalog.db.execute(select(Part).where(Part.name == data["name"], Part.is_deleted == False))  # noqa: E712
    part = res.scalar_one_or_none()
    if part:
        return part, False
    return await catalog.create_part(data), True


async def main() -> None:
    setup_logging(settings.log_level)
    await create_db_and_tables()

    async with async_session_maker() as db:
        registry = LocationRegistry(db)
        catalog = PartCatalog(db)
        ledger = StockLedger(db)

        by_code = {}
        for code, name, parent_code in LOCATIONS:
            parent_id = by_code[parent_code].id if parent_code else None
            by_code[code] = await get_or_create_location(registry, code, name, parent_id)

        for name, unit, cost, reorder_point, reorder_qty, min_level, max_level, opening in PARTS:
            part, created = await get_or_create_part(
                catalog,
                {
                    "name": name,
                    "unit_of_measure": unit,
                    "unit_cost": cost,
                    "reorder_point": reorder_point,
                    "reorder_quantity": reorder_qty,
                    "min_stock_level": min_level,
                    "max_stock_level": max_level,
                },
            )
            if not created:
                continue
            for code, qty in opening.items():
                if qty > 0:
                    await ledger.adjust_stock(
                        part.id, by_code[code].id, "Receive", qty, SEED_USER_ID,
                        reference_type="OpeningBalance", notes="Seeded opening stock",
                    )

        mismatches = await ledger.verify_replay()
        low = await catalog.low_stock_parts()

    logger.info(f"Seeded {len(LOCATIONS)} locations, {len(PARTS)} parts")
    logger.info(f"Parts needing reorder: {', '.join(p.part_number for p, _ in low) or 'none'}")
    if mismatches:
        logger.warning(f"{len(mismatches)} balances disagree with the journal")


if __name__ == "__main__":
    asyncio.run(main())
