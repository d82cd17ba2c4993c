"""
Shared fixtures.

Every test gets its own in-memory SQLite database. The example order is
Rs. 1000: two shirts at Rs. 400 each plus Rs. 200 shipping.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import uuid
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from return_ledger import database
from return_ledger.database import Base, custom_json_dumps, get_db
from return_ledger.main import app
from return_ledger.models import Customer, Order, OrderItem
from return_ledger.services.valuation import ReturnPolicy


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        json_serializer=custom_json_dumps,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine, monkeypatch):
    factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    # Background jobs open their own session through the module factory
    monkeypatch.setattr(database, "async_session_factory", factory)
    return factory


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def tenant_id():
    return uuid.uuid4()


@pytest.fixture
def policy():
    return ReturnPolicy()


@pytest.fixture
async def customer(db_session, tenant_id):
    customer = Customer(
        tenant_id=tenant_id,
        name="Ayesha Khan",
        phone_number="03001234567",
        advance_balance=Decimal("0.00"),
    )
    db_session.add(customer)
    await db_session.commit()
    return customer


@pytest.fixture
async def order(db_session, tenant_id, customer):
    order = Order(
        tenant_id=tenant_id,
        order_number="ORD-1001",
        customer_id=customer.id,
        selected_products=[
            {"id": "P1", "variantId": "V1", "name": "Blue Shirt", "price": 400, "quantity": 1},
            {"id": "P2", "name": "Red Shirt", "price": 400, "quantity": 1},
        ],
        product_quantities={"P1_V1": 1, "P2": 1},
        product_prices={"P1_V1": 400, "P2": 400},
        shipping_charges=Decimal("200.00"),
    )
    order.items = [
        OrderItem(
            product_id="P1",
            product_variant_id="V1",
            product_name="Blue Shirt",
            color="Blue",
            size="M",
            quantity=1,
            unit_price=Decimal("400.00"),
        ),
        OrderItem(
            product_id="P2",
            product_name="Red Shirt",
            color="Red",
            size="L",
            quantity=1,
            unit_price=Decimal("400.00"),
        ),
    ]
    db_session.add(order)
    await db_session.commit()
    return order


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
