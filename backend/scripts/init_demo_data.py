"""
Demo data
- wipes business data (tables are kept)
- creates a manager, two drivers, products, trucks and shops
- receives one delivery and loads both trucks for today
Run from the backend directory: python -m scripts.init_demo_data
"""

import asyncio
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from dairyx.core.actor import Actor
from dairyx.core.states import UserRole
from dairyx.db.init_db import ensure_tables_exist
from dairyx.db.session import SessionLocal
from dairyx.models import Product, Shop, Truck, User
from dairyx.schemas.delivery import DeliveryBatchIn, DeliveryCreate, DeliveryItemIn
from dairyx.schemas.truck_load import TruckLoadCreate, TruckLoadItemIn
from dairyx.services.deliveries import receive_delivery
from dairyx.services.truck_loads import create_truck_load

# children first
TABLES_TO_CLEAR = [
    "reconciliation_lines",
    "reconciliation_items",
    "daily_reconciliations",
    "truck_allowances",
    "transport_allowances",
    "sale_items",
    "sales",
    "truck_load_items",
    "truck_loads",
    "stock_movements",
    "batches",
    "delivery_items",
    "deliveries",
    "shops",
    "trucks",
    "products",
    "users",
]


async def clear_all_data(db: AsyncSession):
    print("Clearing data...")
    for table in TABLES_TO_CLEAR:
        await db.execute(text(f"DELETE FROM {table}"))
    await db.commit()


async def create_people_and_fleet(db: AsyncSession):
    manager = User(username="admin", full_name="Depot manager", role=UserRole.MANAGER)
    driver_a = User(username="driver_a", full_name="Driver A", role=UserRole.DRIVER)
    driver_b = User(username="driver_b", full_name="Driver B", role=UserRole.DRIVER)
    db.add_all([manager, driver_a, driver_b])
    await db.flush()

    products = [
        Product(name="Fresh Milk 1L", current_wholesale_price=Decimal("180.00"), commission_per_unit=Decimal("5.00")),
        Product(name="Yoghurt 80g", current_wholesale_price=Decimal("55.00"), commission_per_unit=Decimal("2.00")),
        Product(name="Curd 1kg", current_wholesale_price=Decimal("420.00"), commission_per_unit=Decimal("12.00")),
    ]
    trucks = [
        Truck(truck_number="TRK-001", driver_id=driver_a.id),
        Truck(truck_number="TRK-002", driver_id=driver_b.id, max_allowance_limit=Decimal("3000.00")),
    ]
    shops = [
        Shop(name="Lakeside Grocery", location="Main Street"),
        Shop(name="Hill Top Mart", location="Station Road"),
    ]
    db.add_all(products + trucks + shops)
    await db.commit()
    return manager, products, trucks


async def main():
    await ensure_tables_exist()
    async with SessionLocal() as db:
        await clear_all_data(db)
        manager, products, trucks = await create_people_and_fleet(db)
        actor = Actor(user_id=manager.id, role=UserRole.MANAGER)

        today = date.today()
        await receive_delivery(db, DeliveryCreate(
            delivery_date=today,
            delivery_note_number=f"DN-{today:%Y%m%d}-001",
            items=[
                DeliveryItemIn(product_id=p.id, unit_price=p.current_wholesale_price * Decimal("0.8"), batches=[
                    DeliveryBatchIn(batch_number=f"{p.id}-A", quantity=200, expiry_date=today + timedelta(days=5)),
                    DeliveryBatchIn(batch_number=f"{p.id}-B", quantity=150, expiry_date=today + timedelta(days=9)),
                ])
                for p in products
            ],
        ), actor)

        for truck in trucks:
            await create_truck_load(db, TruckLoadCreate(
                truck_id=truck.id,
                load_date=today,
                items=[TruckLoadItemIn(product_id=p.id, quantity_loaded=120) for p in products],
            ), actor)

    print("Demo data ready:")
    print("   - manager 'admin', drivers 'driver_a' and 'driver_b'")
    print("   - 3 products, 2 trucks, 2 shops")
    print("   - one delivery (6 batches), both trucks loaded for today")


if __name__ == "__main__":
    asyncio.run(main())
