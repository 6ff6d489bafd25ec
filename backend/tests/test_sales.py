from decimal import Decimal

import pytest
from sqlalchemy import func, select

from dairyx.core.errors import ConflictError, ForbiddenError, InsufficientStock, NotFoundError, ValidationFailed
from dairyx.core.states import MovementType, PaymentStatus
from dairyx.models import Sale, SaleItem, StockMovement
from dairyx.schemas.sale import SaleCreate, SaleItemIn
from dairyx.schemas.truck_load import TruckLoadCreate, TruckLoadItemIn, TruckReturnLine
from dairyx.services.ledger import check_batch_balance
from dairyx.services.sales import add_payment, create_sale, list_sales
from dairyx.services.truck_loads import create_truck_load, get_truck_load, reconcile_truck_load

from conftest import DAY, expiry


def _sale(seed, *items, truck_load_id=None, amount_paid="0"):
    return SaleCreate(
        shop_id=seed.shop.id,
        sale_date=DAY,
        truck_load_id=truck_load_id,
        amount_paid=Decimal(amount_paid),
        items=list(items),
    )


@pytest.fixture
async def loaded_truck(db, seed, manager, receive):
    """truck_1 carrying milk B1(5, sooner) + B2(10, later) and 6 yoghurt"""
    milk = await receive(seed.milk, ("B2", 10, expiry(10)), ("B1", 5, expiry(5)))
    await receive(seed.yoghurt, ("Y1", 6, expiry(3)))
    load = await create_truck_load(db, TruckLoadCreate(
        truck_id=seed.truck_1.id,
        load_date=DAY,
        items=[
            TruckLoadItemIn(product_id=seed.milk.id, quantity_loaded=15),
            TruckLoadItemIn(product_id=seed.yoghurt.id, quantity_loaded=6),
        ],
    ), manager)
    return load, milk


class TestTruckSale:
    async def test_draws_from_truck_by_expiry(self, db, seed, driver_1, loaded_truck):
        load, milk = loaded_truck

        sale = await create_sale(db, _sale(
            seed,
            SaleItemIn(product_id=seed.milk.id, quantity=8),
            SaleItemIn(product_id=seed.yoghurt.id, quantity=2, unit_price=Decimal("45.00")),
            truck_load_id=load.id,
            amount_paid="200",
        ), driver_1)

        # 8 x 100 default price + 2 x 45 override
        assert sale.total_amount == Decimal("890.00")
        assert sale.amount_paid == Decimal("200.00")
        assert sale.balance_due == Decimal("690.00")
        assert sale.payment_status == PaymentStatus.PENDING
        assert sale.truck_id == seed.truck_1.id

        milk_lines = sorted(
            (i.batch_id, i.quantity, i.commission_earned) for i in sale.items if i.product_id == seed.milk.id
        )
        assert milk_lines == sorted([
            (milk["B1"].id, 5, Decimal("25.00")),
            (milk["B2"].id, 3, Decimal("15.00")),
        ])

        load = await get_truck_load(db, load.id)
        sold = {item.batch_id: item.quantity_sold for item in load.items}
        assert sold[milk["B1"].id] == 5
        assert sold[milk["B2"].id] == 3

        # the stock already left the batches when the truck was loaded
        for batch in milk.values():
            await db.refresh(batch)
        assert milk["B1"].remaining_quantity == 0
        assert milk["B2"].remaining_quantity == 0
        sale_out = await db.scalar(
            select(func.count(StockMovement.id)).where(StockMovement.movement_type == MovementType.SALE_OUT)
        )
        assert sale_out == 0

    async def test_not_enough_on_truck(self, db, seed, driver_1, loaded_truck):
        load, _ = loaded_truck
        with pytest.raises(InsufficientStock):
            await create_sale(db, _sale(
                seed, SaleItemIn(product_id=seed.milk.id, quantity=16), truck_load_id=load.id,
            ), driver_1)

    async def test_overpayment_rolls_everything_back(self, db, seed, driver_1, loaded_truck):
        load, _ = loaded_truck
        load_id = load.id
        with pytest.raises(ValidationFailed, match="cannot exceed"):
            await create_sale(db, _sale(
                seed, SaleItemIn(product_id=seed.milk.id, quantity=2), truck_load_id=load_id, amount_paid="500",
            ), driver_1)

        assert await db.scalar(select(func.count(Sale.id))) == 0
        assert await db.scalar(select(func.count(SaleItem.id))) == 0
        load = await get_truck_load(db, load_id)
        assert sum(item.quantity_sold for item in load.items) == 0

    async def test_driver_only_sells_from_own_truck(self, db, seed, driver_2, loaded_truck):
        load, _ = loaded_truck
        with pytest.raises(ForbiddenError):
            await create_sale(db, _sale(
                seed, SaleItemIn(product_id=seed.milk.id, quantity=1), truck_load_id=load.id,
            ), driver_2)

    async def test_reconciled_load_is_closed(self, db, seed, manager, driver_1, loaded_truck):
        load, milk = loaded_truck
        await reconcile_truck_load(db, load.id, [TruckReturnLine(batch_id=milk["B1"].id, quantity_returned=5)], manager)

        with pytest.raises(ConflictError):
            await create_sale(db, _sale(
                seed, SaleItemIn(product_id=seed.milk.id, quantity=1), truck_load_id=load.id,
            ), driver_1)

    @pytest.mark.parametrize("item, amount_paid", [
        (SaleItemIn(product_id=1, quantity=0), "0"),
        (SaleItemIn(product_id=1, quantity=1, unit_price=Decimal("-1")), "0"),
        (SaleItemIn(product_id=1, quantity=1), "-5"),
    ])
    async def test_rejects_bad_input(self, db, seed, driver_1, loaded_truck, item, amount_paid):
        load, _ = loaded_truck
        with pytest.raises(ValidationFailed):
            await create_sale(db, _sale(seed, item, truck_load_id=load.id, amount_paid=amount_paid), driver_1)

    async def test_unknown_shop(self, db, seed, driver_1, loaded_truck):
        load, _ = loaded_truck
        data = _sale(seed, SaleItemIn(product_id=seed.milk.id, quantity=1), truck_load_id=load.id)
        data.shop_id = 999
        with pytest.raises(NotFoundError):
            await create_sale(db, data, driver_1)

    async def test_dated_on_the_load_date(self, db, seed, driver_1, loaded_truck):
        load, _ = loaded_truck
        load_id = load.id
        data = _sale(seed, SaleItemIn(product_id=seed.milk.id, quantity=1), truck_load_id=load_id)
        data.sale_date = expiry(1)
        with pytest.raises(ValidationFailed, match="load date"):
            await create_sale(db, data, driver_1)

        load = await get_truck_load(db, load_id)
        assert sum(item.quantity_sold for item in load.items) == 0
        assert await db.scalar(select(func.count(Sale.id))) == 0


class TestDepotSale:
    async def test_posts_sale_out_fifo(self, db, seed, manager, receive):
        batches = await receive(seed.milk, ("B1", 5, expiry(5)), ("B2", 10, expiry(10)))

        sale = await create_sale(db, _sale(seed, SaleItemIn(product_id=seed.milk.id, quantity=7)), manager)

        assert sale.truck_id is None
        assert sale.total_amount == Decimal("700.00")
        for batch in batches.values():
            await db.refresh(batch)
            assert (await check_batch_balance(db, batch.id)).is_balanced
        assert batches["B1"].remaining_quantity == 0
        assert batches["B2"].remaining_quantity == 8

    async def test_drivers_cannot_sell_from_depot(self, db, seed, driver_1, receive):
        await receive(seed.milk, ("B1", 5, expiry(5)))
        with pytest.raises(ForbiddenError):
            await create_sale(db, _sale(seed, SaleItemIn(product_id=seed.milk.id, quantity=1)), driver_1)


class TestPayments:
    async def test_payment_settles_sale(self, db, seed, driver_1, loaded_truck):
        load, _ = loaded_truck
        sale = await create_sale(db, _sale(
            seed, SaleItemIn(product_id=seed.milk.id, quantity=3), truck_load_id=load.id, amount_paid="100",
        ), driver_1)

        sale = await add_payment(db, sale.id, Decimal("150.00"), driver_1)
        assert sale.amount_paid == Decimal("250.00")
        assert sale.payment_status == PaymentStatus.PENDING

        sale = await add_payment(db, sale.id, Decimal("50.00"), driver_1)
        assert sale.payment_status == PaymentStatus.PAID
        assert sale.balance_due == Decimal("0.00")

        with pytest.raises(ValidationFailed):
            await add_payment(db, sale.id, Decimal("0.01"), driver_1)

    async def test_payment_must_be_positive(self, db, seed, driver_1, loaded_truck):
        load, _ = loaded_truck
        sale = await create_sale(db, _sale(
            seed, SaleItemIn(product_id=seed.milk.id, quantity=1), truck_load_id=load.id,
        ), driver_1)
        with pytest.raises(ValidationFailed):
            await add_payment(db, sale.id, Decimal("0"), driver_1)

    async def test_other_drivers_sales_are_off_limits(self, db, seed, driver_1, driver_2, manager, loaded_truck):
        load, _ = loaded_truck
        sale = await create_sale(db, _sale(
            seed, SaleItemIn(product_id=seed.milk.id, quantity=1), truck_load_id=load.id,
        ), driver_1)

        sale_id = sale.id

        with pytest.raises(ForbiddenError):
            await add_payment(db, sale_id, Decimal("10"), driver_2)
        sale = await add_payment(db, sale_id, Decimal("10"), manager)
        assert sale.amount_paid == Decimal("10.00")


async def test_drivers_list_only_their_sales(db, seed, manager, driver_1, driver_2, loaded_truck):
    load, _ = loaded_truck
    await create_sale(db, _sale(
        seed, SaleItemIn(product_id=seed.milk.id, quantity=1), truck_load_id=load.id, amount_paid="100",
    ), driver_1)
    await create_sale(db, _sale(seed, SaleItemIn(product_id=seed.milk.id, quantity=1), truck_load_id=load.id), manager)

    _, total = await list_sales(db, manager)
    assert total == 2
    sales, total = await list_sales(db, driver_1)
    assert total == 1 and sales[0].user_id == driver_1.user_id
    _, total = await list_sales(db, driver_2)
    assert total == 0
    _, total = await list_sales(db, manager, payment_status=PaymentStatus.PAID)
    assert total == 1
