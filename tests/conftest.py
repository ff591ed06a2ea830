"""
Pytest fixtures for the stock ledger test suite.

Provides:
- a fresh SQLite database file per test (aiosqlite, WAL, NullPool so every
  session gets its own connection)
- a private lock registry per test
- a part and two storage locations to book stock against
- an HTTP client bound to the app with the test database
"""

import os

# The module-level engine is built at import time; point it away from Postgres.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import NullPool

from stockledger.core.locks import KeyedLockRegistry
from stockledger.db.database import build_engine, create_db_and_tables, get_async_session
from stockledger.services.catalog import PartCatalog
from stockledger.services.ledger import StockLedger
from stockledger.services.locations import LocationRegistry

TEST_USER_ID = 7


@pytest.fixture
async def engine(tmp_path):
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", poolclass=NullPool)
    await create_db_and_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def locks():
    return KeyedLockRegistry()


@pytest.fixture
def ledger(db, locks):
    return StockLedger(db, locks=locks, lock_timeout=5)


@pytest.fixture
def make_ledger(session_maker, locks):
    """Ledger bound to its own session, for concurrent callers."""

    def _make(session, lock_timeout: float = 10):
        return StockLedger(session, locks=locks, lock_timeout=lock_timeout)

    return _make


@pytest.fixture
async def part_id(db) -> int:
    part = await PartCatalog(db).create_part(
        {
            "name": "Hydraulic Filter HF-200",
            "unit_cost": Decimal("42.50"),
            "reorder_point": 10,
            "reorder_quantity": 20,
            "min_stock_level": 5,
            "max_stock_level": 200,
        }
    )
    return part.id


@pytest.fixture
async def loc_a(db) -> int:
    loc = await LocationRegistry(db).create_location({"name": "Bin A", "code": "A"})
    return loc.id


@pytest.fixture
async def loc_b(db) -> int:
    loc = await LocationRegistry(db).create_location({"name": "Bin B", "code": "B"})
    return loc.id


@pytest.fixture
def balance_of(session_maker, locks):
    """Read (on_hand, reserved, available) through a fresh session."""

    async def _balance(part_id: int, location_id: int):
        async with session_maker() as session:
            stock = await StockLedger(session, locks=locks).get_stock(part_id, location_id)
            return (stock.quantity_on_hand, stock.quantity_reserved, stock.quantity_available)

    return _balance


@pytest.fixture
async def client(session_maker):
    from stockledger.main import app

    async def _session_override():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_async_session] = _session_override
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
