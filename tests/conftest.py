"""
Pytest configuration and fixtures.

Every test gets its own SQLite database file, so concurrent sessions inside a
test really contend for the same rows.
"""
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from cashless.api.dependencies import Services
from cashless.config import Settings
from cashless.core.identity import IdentityResolver
from cashless.core.ledger import OrderLedger
from cashless.core.settlement import SettlementEngine
from cashless.database.connection import (
    create_engine_from_settings,
    create_session_factory,
    init_db,
)
from cashless.database.models import Holder, Product, SecondaryHolder

TEST_PIN = "1234"


@dataclass
class SeedData:
    """Ids and card identifiers of the rows every test starts with."""

    burger_id: int
    drink_id: int
    sold_out_id: int
    unavailable_id: int
    holder_id: int
    holder_card: str
    poor_holder_card: str
    secondary_holder_id: int
    secondary_card: str
    inactive_card: str


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings pointing at a throwaway database."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'cashless_test.db'}",
        app_name="cashless-settlement-test",
        app_env="test",
        log_level="DEBUG",
        sqlite_busy_timeout=30.0,
        bcrypt_rounds=4,
        card_scan_timeout_seconds=0.3,
        card_scan_poll_interval_seconds=0.05,
    )


@pytest_asyncio.fixture
async def engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, Any]:
    """Create the test engine and schema."""
    engine = create_engine_from_settings(test_settings)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def seed(session_factory: async_sessionmaker[AsyncSession]) -> SeedData:
    """Insert a small catalog and a handful of accounts."""
    async with session_factory.begin() as session:
        burger = Product(
            name="Burger",
            description="Beef burger",
            category="food",
            price=Decimal("25.00"),
            stock_quantity=10,
        )
        drink = Product(
            name="Lemonade",
            description="Fresh lemonade",
            category="drinks",
            price=Decimal("50.00"),
            stock_quantity=5,
        )
        sold_out = Product(name="Pie", price=Decimal("12.50"), stock_quantity=0)
        unavailable = Product(
            name="Seasonal Soup", price=Decimal("8.00"), stock_quantity=20, is_available=False
        )

        holder = Holder(
            card_id="CARD-HOLDER-1",
            first_name="Ada",
            last_name="Lovelace",
            balance=Decimal("200.00"),
        )
        poor_holder = Holder(
            card_id="CARD-HOLDER-2",
            first_name="Charles",
            last_name="Babbage",
            balance=Decimal("50.00"),
        )
        secondary = SecondaryHolder(
            card_id="CARD-STAFF-1",
            first_name="Grace",
            last_name="Hopper",
            balance=Decimal("100.00"),
        )
        inactive = Holder(
            card_id="CARD-INACTIVE",
            first_name="Alan",
            last_name="Turing",
            balance=Decimal("500.00"),
            is_active=False,
        )
        for account in (holder, poor_holder, secondary, inactive):
            account.set_pin(TEST_PIN, rounds=4)

        session.add_all([burger, drink, sold_out, unavailable])
        session.add_all([holder, poor_holder, secondary, inactive])
        await session.flush()

        return SeedData(
            burger_id=burger.id,
            drink_id=drink.id,
            sold_out_id=sold_out.id,
            unavailable_id=unavailable.id,
            holder_id=holder.id,
            holder_card=holder.card_id,
            poor_holder_card=poor_holder.card_id,
            secondary_holder_id=secondary.id,
            secondary_card=secondary.card_id,
            inactive_card=inactive.card_id,
        )


@pytest.fixture
def identity_resolver(session_factory: async_sessionmaker[AsyncSession]) -> IdentityResolver:
    return IdentityResolver(session_factory)


@pytest.fixture
def ledger(
    session_factory: async_sessionmaker[AsyncSession], identity_resolver: IdentityResolver
) -> OrderLedger:
    return OrderLedger(session_factory, identity_resolver)


@pytest.fixture
def engine_under_test(
    session_factory: async_sessionmaker[AsyncSession],
    identity_resolver: IdentityResolver,
    ledger: OrderLedger,
) -> SettlementEngine:
    return SettlementEngine(session_factory, identity_resolver=identity_resolver, ledger=ledger)


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    test_settings: Settings,
    seed: SeedData,
) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client wired to the test database."""
    from cashless.api.main import app

    app.state.services = Services.build(session_factory, test_settings)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def get_product(
    session_factory: async_sessionmaker[AsyncSession], product_id: int
) -> Product:
    async with session_factory() as session:
        return await session.get(Product, product_id)


async def get_holder(session_factory: async_sessionmaker[AsyncSession], holder_id: int) -> Holder:
    async with session_factory() as session:
        return await session.get(Holder, holder_id)
