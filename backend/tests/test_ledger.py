import pytest
from sqlalchemy import select

from dairyx.core.errors import ForbiddenError, InsufficientStock, NotFoundError, ValidationFailed
from dairyx.core.states import MovementType, ReferenceType
from dairyx.db.session import atomic
from dairyx.models import StockMovement
from dairyx.services.ledger import (
    Reference,
    adjust_stock,
    batch_movement_history,
    check_batch_balance,
    daily_movement_summary,
    get_running_balance,
    post_movement,
    product_movements,
)

from conftest import DAY, expiry


async def _post(db, batch, movement_type, quantity, actor):
    async with atomic(db):
        return await post_movement(
            db, batch, movement_type, quantity,
            Reference(ReferenceType.MANUAL), actor, movement_date=DAY,
        )


async def test_delivery_opens_batch_with_one_movement(db, seed, receive):
    batches = await receive(seed.milk, ("M-1", 100, expiry(7)))
    batch = batches["M-1"]

    assert batch.initial_quantity == 100
    assert batch.remaining_quantity == 100

    movements = (await db.execute(select(StockMovement).where(StockMovement.batch_id == batch.id))).scalars().all()
    assert [(m.movement_type, m.quantity) for m in movements] == [(MovementType.DELIVERY_IN, 100)]

    check = await check_batch_balance(db, batch.id)
    assert check.is_balanced


async def test_outbound_movement_never_goes_negative(db, seed, manager, receive):
    batch = (await receive(seed.milk, ("M-1", 100, expiry(7))))["M-1"]

    with pytest.raises(InsufficientStock) as exc_info:
        await _post(db, batch, MovementType.SALE_OUT, 150, manager)
    assert exc_info.value.extra["available"] == 100

    await db.refresh(batch)
    assert batch.remaining_quantity == 100
    count = len((await db.execute(select(StockMovement.id))).scalars().all())
    assert count == 1


async def test_return_cannot_exceed_initial_quantity(db, seed, manager, receive):
    batch = (await receive(seed.milk, ("M-1", 10, expiry(7))))["M-1"]
    await _post(db, batch, MovementType.TRUCK_LOAD_OUT, 4, manager)

    await _post(db, batch, MovementType.TRUCK_RETURN_IN, 4, manager)
    assert batch.remaining_quantity == 10

    with pytest.raises(ValidationFailed):
        await _post(db, batch, MovementType.TRUCK_RETURN_IN, 1, manager)
    await db.refresh(batch)
    assert batch.remaining_quantity == 10


@pytest.mark.parametrize("movement_type, quantity", [
    (MovementType.SALE_OUT, 0),
    (MovementType.TRUCK_LOAD_OUT, -3),
    (MovementType.ADJUSTMENT, 0),
])
async def test_rejects_meaningless_quantities(db, seed, manager, receive, movement_type, quantity):
    batch = (await receive(seed.milk, ("M-1", 10, expiry(7))))["M-1"]
    with pytest.raises(ValidationFailed):
        await _post(db, batch, movement_type, quantity, manager)


async def test_running_balance_follows_every_movement(db, seed, manager, receive):
    batch = (await receive(seed.milk, ("M-1", 100, expiry(7))))["M-1"]
    await _post(db, batch, MovementType.TRUCK_LOAD_OUT, 30, manager)
    await _post(db, batch, MovementType.TRUCK_RETURN_IN, 10, manager)
    await _post(db, batch, MovementType.ADJUSTMENT, -5, manager)
    await _post(db, batch, MovementType.EXPIRED_OUT, 5, manager)

    balances = [balance async for _, balance in get_running_balance(db, batch.id)]
    assert balances == [100, 70, 80, 75, 70]

    await db.refresh(batch)
    assert batch.remaining_quantity == 70
    assert batch.initial_quantity == 95

    check = await check_batch_balance(db, batch.id)
    assert check.is_balanced
    assert check.ledger_total == 70
    assert check.intake_total == 95

    history = await batch_movement_history(db, batch.id)
    assert [m.movement_type for m, _ in history.entries] == [
        MovementType.DELIVERY_IN,
        MovementType.TRUCK_LOAD_OUT,
        MovementType.TRUCK_RETURN_IN,
        MovementType.ADJUSTMENT,
        MovementType.EXPIRED_OUT,
    ]


async def test_balance_check_unknown_batch(db, seed):
    with pytest.raises(NotFoundError):
        await check_batch_balance(db, 999)


class TestAdjustStock:
    async def test_positive_adjustment_grows_both_counters(self, db, seed, manager, receive):
        batch = (await receive(seed.milk, ("M-1", 20, expiry(7))))["M-1"]

        movement = await adjust_stock(
            db, batch_id=batch.id, product_id=seed.milk.id,
            movement_type=MovementType.ADJUSTMENT, quantity=5,
            reason="Recount", notes="found a crate", actor=manager,
        )

        assert movement.notes == "Recount - found a crate"
        await db.refresh(batch)
        assert (batch.initial_quantity, batch.remaining_quantity) == (25, 25)

    async def test_expired_write_off(self, db, seed, manager, receive):
        batch = (await receive(seed.milk, ("M-1", 20, expiry(-1))))["M-1"]

        await adjust_stock(
            db, batch_id=batch.id, product_id=seed.milk.id,
            movement_type=MovementType.EXPIRED_OUT, quantity=20,
            reason="Expired", actor=manager,
        )

        await db.refresh(batch)
        assert batch.remaining_quantity == 0
        assert batch.initial_quantity == 20
        assert batch.status == "depleted"

    async def test_negative_adjustment_beyond_stock(self, db, seed, manager, receive):
        batch = (await receive(seed.milk, ("M-1", 5, expiry(7))))["M-1"]
        with pytest.raises(InsufficientStock):
            await adjust_stock(
                db, batch_id=batch.id, product_id=seed.milk.id,
                movement_type=MovementType.ADJUSTMENT, quantity=-6,
                reason="Breakage", actor=manager,
            )

    async def test_product_must_match_batch(self, db, seed, manager, receive):
        batch = (await receive(seed.milk, ("M-1", 5, expiry(7))))["M-1"]
        with pytest.raises(ValidationFailed, match="does not match"):
            await adjust_stock(
                db, batch_id=batch.id, product_id=seed.yoghurt.id,
                movement_type=MovementType.ADJUSTMENT, quantity=1,
                reason="Recount", actor=manager,
            )

    async def test_only_manual_types(self, db, seed, manager, receive):
        batch = (await receive(seed.milk, ("M-1", 5, expiry(7))))["M-1"]
        with pytest.raises(ValidationFailed):
            await adjust_stock(
                db, batch_id=batch.id, product_id=seed.milk.id,
                movement_type=MovementType.SALE_OUT, quantity=1,
                reason="Recount", actor=manager,
            )

    async def test_drivers_cannot_adjust(self, db, seed, driver_1, receive):
        batch = (await receive(seed.milk, ("M-1", 5, expiry(7))))["M-1"]
        with pytest.raises(ForbiddenError):
            await adjust_stock(
                db, batch_id=batch.id, product_id=seed.milk.id,
                movement_type=MovementType.ADJUSTMENT, quantity=1,
                reason="Recount", actor=driver_1,
            )


async def test_movement_reports(db, seed, manager, receive):
    milk = (await receive(seed.milk, ("M-1", 50, expiry(7)), ("M-2", 50, expiry(9))))
    await receive(seed.yoghurt, ("Y-1", 30, expiry(3)))
    await _post(db, milk["M-1"], MovementType.TRUCK_LOAD_OUT, 20, manager)

    summary = await daily_movement_summary(db, DAY)
    rows = {(r.product_name, r.movement_type): (r.transaction_count, r.total_quantity) for r in summary}
    assert rows[("Milk 1L", MovementType.DELIVERY_IN)] == (2, 100)
    assert rows[("Milk 1L", MovementType.TRUCK_LOAD_OUT)] == (1, 20)
    assert rows[("Yoghurt", MovementType.DELIVERY_IN)] == (1, 30)

    outbound = await product_movements(db, seed.milk.id, movement_type=MovementType.TRUCK_LOAD_OUT)
    assert [m.quantity for m in outbound] == [20]
    assert await product_movements(db, seed.milk.id, start_date=expiry(1)) == []
    assert len(await product_movements(db, seed.milk.id)) == 3
