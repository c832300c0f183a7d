"""Pytest fixtures for testing"""

from decimal import Decimal
from typing import AsyncIterator

import httpx
import pytest
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from returns_engine.api.main import create_app
from returns_engine.domain.models import RateBand
from returns_engine.infrastructure.database.session import create_schema, get_db
from returns_engine.services.plan_rules import PlanRuleManager
from returns_engine.services.wallet import WalletLedger

RUPEE = 100  # paise


@pytest.fixture
async def engine(tmp_path):
    """Fresh SQLite database file per test"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def app(session_factory) -> FastAPI:
    """App wired to the test database; each request gets its own session"""
    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
async def client(app) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def default_bands() -> list[RateBand]:
    return [
        RateBand(1, 3, Decimal("0.03")),
        RateBand(4, 6, Decimal("0.04")),
        RateBand(7, 9, Decimal("0.05")),
        RateBand(10, 12, Decimal("0.06")),
        RateBand(13, 15, Decimal("0.07")),
    ]


@pytest.fixture
async def active_rule(db, default_bands):
    """Default rule: min ₹1,00,000, special tier from ₹3,00,000 at 10%, 4% admin, 10% booster"""
    return await PlanRuleManager(db).create_rule(
        name="Default plan rule",
        bands=default_bands,
        min_amount_paise=100_000 * RUPEE,
        special_min_paise=300_000 * RUPEE,
        special_rate=Decimal("0.10"),
        admin_charge=Decimal("0.04"),
        booster=Decimal("0.10"),
        activate=True,
    )


@pytest.fixture
async def funded_wallet(db):
    """Wallet for user_1 holding ₹10,000"""
    ledger = WalletLedger(db)
    await ledger.open_wallet("user_1")
    return await ledger.credit("user_1", 10_000 * RUPEE, reference_id="seed")
