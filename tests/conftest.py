"""Pytest configuration and fixtures for CiderTrack tests.

The database fixtures build a fresh schema per test.  They default to an
in-memory SQLite database (aiosqlite); point ``TEST_DATABASE_URL`` at a
Postgres database to run the same suite against asyncpg.
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cidertrack import models  # noqa: F401
from cidertrack.database import Base, get_db
from cidertrack.main import app
from cidertrack.models.batch import Batch, BatchComposition
from cidertrack.models.press_run import PressItem, PressRun
from cidertrack.models.press_run_allocation import PressRunAllocation
from cidertrack.models.purchase import FruitVariety, Purchase, PurchaseItem, Vendor
from cidertrack.models.vessel import Vessel

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

PRESS_DATE = datetime(2025, 9, 19, 10, 30)


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine():
    """Create a test engine with every table in place."""
    if TEST_DATABASE_URL.startswith("sqlite"):
        # One shared connection so every session sees the same in-memory DB
        engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    else:
        engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Test client whose requests each get a session on the test engine."""

    async def override_get_db():
        async with session_factory() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Test Data Fixtures ───────────────────────────────────────────

@dataclass
class SeededPressRun:
    press_run_id: str
    purchase_item_ids: list[str] = field(default_factory=list)
    vessel_ids: list[str] = field(default_factory=list)


async def seed_press_run(
    session: AsyncSession,
    *,
    total_juice_l: float,
    lines: list[dict],
    vessels: list[tuple[str, float]],
) -> SeededPressRun:
    """Insert a completed press run with its purchase lines and vessels.

    Each line dict takes ``variety``, ``weight_kg`` and optionally
    ``total_cost``, ``unit_cost``, ``brix`` and ``lot_code``.
    """
    vendor = Vendor(name="Test Orchard")
    session.add(vendor)
    await session.flush()

    purchase = Purchase(vendor_id=vendor.id, purchase_date=PRESS_DATE.date())
    session.add(purchase)

    press_run = PressRun(
        name="PR-2025-001",
        status="completed",
        total_juice_produced_l=total_juice_l,
        completed_at=PRESS_DATE,
    )
    session.add(press_run)
    await session.flush()

    seeded = SeededPressRun(press_run_id=press_run.id)
    varieties: dict[str, FruitVariety] = {}
    for line in lines:
        variety = varieties.get(line["variety"])
        if variety is None:
            variety = varieties[line["variety"]] = FruitVariety(name=line["variety"])
            session.add(variety)
            await session.flush()

        item = PurchaseItem(
            purchase_id=purchase.id,
            fruit_variety_id=variety.id,
            quantity_kg=line["weight_kg"],
            price_per_unit=line.get("unit_cost"),
            total_cost=line.get("total_cost"),
            lot_code=line.get("lot_code"),
        )
        session.add(item)
        await session.flush()
        session.add(
            PressItem(
                press_run_id=press_run.id,
                purchase_item_id=item.id,
                quantity_used_kg=line["weight_kg"],
                brix_measured=line.get("brix"),
            )
        )
        seeded.purchase_item_ids.append(item.id)

    for name, capacity in vessels:
        vessel = Vessel(name=name, capacity_l=capacity)
        session.add(vessel)
        await session.flush()
        seeded.vessel_ids.append(vessel.id)

    await session.commit()
    return seeded


async def count_rows(session: AsyncSession) -> dict[str, int]:
    """Row counts for every table press completion writes to."""
    counts = {}
    for model in (Batch, BatchComposition, PressRunAllocation):
        counts[model.__tablename__] = (
            await session.execute(select(func.count()).select_from(model))
        ).scalar_one()
    return counts


@pytest.fixture
def seed(db_session):
    async def _seed(**kwargs) -> SeededPressRun:
        return await seed_press_run(db_session, **kwargs)
    return _seed


@pytest.fixture
def row_counts(session_factory):
    async def _counts() -> dict[str, int]:
        async with session_factory() as session:
            return await count_rows(session)
    return _counts


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API endpoint tests")
