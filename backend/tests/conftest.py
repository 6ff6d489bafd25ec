import itertools
import os
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

# console logging only, and never touch the default database file
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("DATABASE_URI", "sqlite+aiosqlite:///:memory:")

import pytest
from sqlalchemy import select

from dairyx.core.actor import Actor
from dairyx.core.states import UserRole
from dairyx.db.init_db import ensure_tables_exist
from dairyx.db.session import build_engine, build_sessionmaker
from dairyx.models import Batch, Product, Shop, Truck, User
from dairyx.schemas.delivery import DeliveryBatchIn, DeliveryCreate, DeliveryItemIn
from dairyx.schemas.truck_load import TruckLoadCreate, TruckLoadItemIn
from dairyx.services.deliveries import receive_delivery
from dairyx.services.truck_loads import create_truck_load

DAY = date(2025, 3, 10)


@pytest.fixture
async def engine(tmp_path):
    """Fresh SQLite file per test"""
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'dairyx_test.db'}")
    await ensure_tables_exist(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seed(db):
    """Users, products, trucks and a shop"""
    manager = User(username="manager", role=UserRole.MANAGER)
    driver_1 = User(username="driver_1", role=UserRole.DRIVER)
    driver_2 = User(username="driver_2", role=UserRole.DRIVER)
    db.add_all([manager, driver_1, driver_2])
    await db.flush()

    milk = Product(name="Milk 1L", current_wholesale_price=Decimal("100.00"), commission_per_unit=Decimal("5.00"))
    yoghurt = Product(name="Yoghurt", current_wholesale_price=Decimal("50.00"), commission_per_unit=Decimal("2.00"))
    truck_1 = Truck(truck_number="TRK-1", driver_id=driver_1.id, max_allowance_limit=Decimal("4000.00"))
    truck_2 = Truck(truck_number="TRK-2", driver_id=driver_2.id, max_allowance_limit=Decimal("500.00"))
    idle_truck = Truck(truck_number="TRK-IDLE", is_active=False, max_allowance_limit=Decimal("4000.00"))
    shop = Shop(name="Corner Shop")
    db.add_all([milk, yoghurt, truck_1, truck_2, idle_truck, shop])
    await db.commit()
    # a failed service call rolls back and expires everything still attached
    db.expunge_all()

    return SimpleNamespace(
        manager=manager,
        driver_1=driver_1,
        driver_2=driver_2,
        milk=milk,
        yoghurt=yoghurt,
        truck_1=truck_1,
        truck_2=truck_2,
        idle_truck=idle_truck,
        shop=shop,
    )


@pytest.fixture
def manager(seed):
    return Actor(user_id=seed.manager.id, role=UserRole.MANAGER)


@pytest.fixture
def driver_1(seed):
    return Actor(user_id=seed.driver_1.id, role=UserRole.DRIVER)


@pytest.fixture
def driver_2(seed):
    return Actor(user_id=seed.driver_2.id, role=UserRole.DRIVER)


@pytest.fixture
def receive(db, manager):
    """receive(product, ("B1", 5, expiry), ...) -> {"B1": Batch, ...}"""
    counter = itertools.count(1)

    async def _receive(product, *lines, delivery_date=DAY):
        number = next(counter)
        await receive_delivery(db, DeliveryCreate(
            delivery_date=delivery_date,
            delivery_note_number=f"DN-{number:04d}",
            items=[DeliveryItemIn(
                product_id=product.id,
                unit_price=Decimal("10.00"),
                batches=[
                    DeliveryBatchIn(batch_number=batch_number, quantity=quantity, expiry_date=expiry)
                    for batch_number, quantity, expiry in lines
                ],
            )],
        ), manager)
        batches = {}
        for batch_number, _, _ in lines:
            batches[batch_number] = await db.scalar(
                select(Batch)
                .where(Batch.product_id == product.id, Batch.batch_number == batch_number)
                .execution_options(populate_existing=True)
            )
        return batches

    return _receive


@pytest.fixture
def load_truck(db, manager):
    """load_truck(truck, product, quantity) -> TruckLoad, FIFO"""
    async def _load(truck, product, quantity, load_date=DAY):
        return await create_truck_load(db, TruckLoadCreate(
            truck_id=truck.id,
            load_date=load_date,
            items=[TruckLoadItemIn(product_id=product.id, quantity_loaded=quantity)],
        ), manager)

    return _load


def expiry(days: int) -> date:
    return DAY + timedelta(days=days)
