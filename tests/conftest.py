"""
Shared fixtures.

Every test gets a fresh in-memory SQLite database. Fixtures hand out plain
ids rather than ORM objects: a service rolls back on a domain error, which
expires whatever the session had loaded.
"""
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production"

from decimal import Decimal
from types import SimpleNamespace
import uuid

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from fulfillment.core.access_policy import Actor
from fulfillment.core.security import create_access_token
from fulfillment.database import build_engine, get_db, init_db
from fulfillment.main import app
from fulfillment.models.address import Address
from fulfillment.models.inventory import InventoryRecord
from fulfillment.models.product import Product
from fulfillment.models.user import DriverProfile, User, UserRole, WarehouseOpsAssignment
from fulfillment.models.warehouse import Warehouse
from fulfillment.services.cart_service import CartService
from fulfillment.services.inventory_service import InventoryService
from fulfillment.services.order_service import OrderService


@pytest_asyncio.fixture
async def engine():
    engine = build_engine(os.environ["DATABASE_URL"], poolclass=StaticPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory, seed):
    async with session_factory() as session:
        yield session


def _warehouse(code: str, city: str) -> Warehouse:
    return Warehouse(
        code=code,
        name=f"{city} Warehouse",
        address_line1=f"Plot 7, {city} Industrial Area",
        city=city,
        state="Maharashtra",
        pincode="411001",
    )


@pytest_asyncio.fixture
async def seed(session_factory):
    """
    Two warehouses, three products and one user per role.

    Stock: P1 10 units in W1 and 5 in W2, P2 10 units in W2, the bulk product
    (MOQ 5) 50 units in W1.
    """
    async with session_factory() as session:
        admin = User(phone="9000000001", name="Admin", role=UserRole.ADMIN.value)
        ops = User(phone="9000000002", name="Ops W1", role=UserRole.OPS.value)
        buyer = User(phone="9000000003", name="Buyer One", business_name="Sharma Traders", role=UserRole.BUYER.value)
        other_buyer = User(phone="9000000004", name="Buyer Two", role=UserRole.BUYER.value)
        driver = User(phone="9000000005", name="Ravi", role=UserRole.DRIVER.value)
        other_driver = User(phone="9000000006", name="Suresh", role=UserRole.DRIVER.value)
        w1 = _warehouse("WH-PUN", "Pune")
        w2 = _warehouse("WH-MUM", "Mumbai")
        p1 = Product(sku="SKU-FAN-01", name="Ceiling Fan", price=Decimal("100.00"), moq=1)
        p2 = Product(sku="SKU-GEY-01", name="Water Heater", price=Decimal("250.50"), moq=1)
        bulk = Product(sku="SKU-LED-10", name="LED Bulb Pack", price=Decimal("12.00"), moq=5)
        session.add_all([admin, ops, buyer, other_buyer, driver, other_driver, w1, w2, p1, p2, bulk])
        await session.flush()

        address = Address(
            user_id=buyer.id,
            label="Shop",
            line1="14 MG Road",
            city="Pune",
            state="Maharashtra",
            pincode="411001",
            is_default=True,
        )
        other_address = Address(user_id=other_buyer.id, line1="2 Link Road", city="Mumbai", state="Maharashtra", pincode="400001")
        session.add_all([
            address,
            other_address,
            WarehouseOpsAssignment(user_id=ops.id, warehouse_id=w1.id),
            DriverProfile(user_id=driver.id, vehicle_number="MH12AB1234", vehicle_type="VAN"),
            DriverProfile(user_id=other_driver.id, vehicle_number="MH12CD5678", vehicle_type="BIKE"),
            InventoryRecord(warehouse_id=w1.id, product_id=p1.id, quantity=10, reserved_quantity=0),
            InventoryRecord(warehouse_id=w2.id, product_id=p1.id, quantity=5, reserved_quantity=0),
            InventoryRecord(warehouse_id=w2.id, product_id=p2.id, quantity=10, reserved_quantity=0),
            InventoryRecord(warehouse_id=w1.id, product_id=bulk.id, quantity=50, reserved_quantity=0),
        ])
        await session.commit()

        return SimpleNamespace(
            admin_id=admin.id,
            ops_id=ops.id,
            buyer_id=buyer.id,
            other_buyer_id=other_buyer.id,
            driver_id=driver.id,
            other_driver_id=other_driver.id,
            w1=w1.id,
            w2=w2.id,
            p1=p1.id,
            p2=p2.id,
            bulk=bulk.id,
            address_id=address.id,
            other_address_id=other_address.id,
        )


@pytest.fixture
def actors(seed):
    return SimpleNamespace(
        admin=Actor(id=seed.admin_id, role=UserRole.ADMIN.value),
        ops=Actor(id=seed.ops_id, role=UserRole.OPS.value, warehouse_ids=frozenset({seed.w1})),
        buyer=Actor(id=seed.buyer_id, role=UserRole.BUYER.value),
        other_buyer=Actor(id=seed.other_buyer_id, role=UserRole.BUYER.value),
        driver=Actor(id=seed.driver_id, role=UserRole.DRIVER.value),
        other_driver=Actor(id=seed.other_driver_id, role=UserRole.DRIVER.value),
    )


@pytest.fixture
def stock(db):
    """Read (quantity, reserved_quantity) for a warehouse/product pair."""

    async def _stock(warehouse_id: uuid.UUID, product_id: uuid.UUID):
        record = await InventoryService(db).get_record(warehouse_id, product_id)
        return record.quantity, record.reserved_quantity

    return _stock


@pytest.fixture
def place_order(db, seed, actors):
    """Fill the buyer's cart with (product, warehouse, qty) lines and check out."""

    async def _place(lines, actor=None, address_id=None, **kwargs):
        actor = actor or actors.buyer
        cart = CartService(db)
        for product_id, warehouse_id, quantity in lines:
            await cart.add_to_cart(actor, product_id, warehouse_id, quantity)
        order = await OrderService(db).create_order_from_cart(
            actor, address_id or seed.address_id, **kwargs
        )
        return order.id

    return _place


@pytest.fixture
def tokens(seed):
    return {
        "admin": create_access_token(seed.admin_id, UserRole.ADMIN.value),
        "ops": create_access_token(seed.ops_id, UserRole.OPS.value),
        "buyer": create_access_token(seed.buyer_id, UserRole.BUYER.value),
        "other_buyer": create_access_token(seed.other_buyer_id, UserRole.BUYER.value),
        "driver": create_access_token(seed.driver_id, UserRole.DRIVER.value),
        "other_driver": create_access_token(seed.other_driver_id, UserRole.DRIVER.value),
    }


@pytest.fixture
def auth(tokens):
    def _headers(role: str) -> dict:
        return {"Authorization": f"Bearer {tokens[role]}"}

    return _headers


@pytest_asyncio.fixture
async def client(session_factory, seed):
    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
