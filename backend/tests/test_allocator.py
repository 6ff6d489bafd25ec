import asyncio

import pytest
from sqlalchemy import func, select

from dairyx.core.errors import ConflictError, InsufficientStock, NotFoundError, ValidationFailed
from dairyx.core.states import MovementType, ReferenceType
from dairyx.db.session import atomic
from dairyx.models import Batch, StockMovement
from dairyx.schemas.truck_load import TruckLoadCreate, TruckLoadItemIn
from dairyx.services.allocator import allocate_fifo, allocate_specific, plan_fifo
from dairyx.services.ledger import Reference, check_batch_balance
from dairyx.services.truck_loads import create_truck_load

from conftest import DAY, expiry

REF = Reference(ReferenceType.MANUAL)


async def _outbound_count(db) -> int:
    return await db.scalar(
        select(func.count(StockMovement.id)).where(StockMovement.movement_type == MovementType.TRUCK_LOAD_OUT)
    )


async def test_earliest_expiry_first(db, seed, manager, receive):
    # later-expiring batch arrives first; expiry still decides
    later = (await receive(seed.milk, ("B2", 10, expiry(10))))["B2"]
    sooner = (await receive(seed.milk, ("B1", 5, expiry(5))))["B1"]

    async with atomic(db):
        plan = await allocate_fifo(db, seed.milk.id, 8, reference=REF, actor=manager)

    assert [(a.batch_id, a.quantity) for a in plan] == [(sooner.id, 5), (later.id, 3)]
    await db.refresh(sooner)
    await db.refresh(later)
    assert sooner.remaining_quantity == 0
    assert later.remaining_quantity == 7
    assert await _outbound_count(db) == 2


async def test_shortfall_changes_nothing(db, seed, manager, receive):
    batches = await receive(seed.milk, ("B1", 5, expiry(5)), ("B2", 10, expiry(10)))

    with pytest.raises(InsufficientStock) as exc_info:
        async with atomic(db):
            await allocate_fifo(db, seed.milk.id, 20, reference=REF, actor=manager)

    assert exc_info.value.extra == {"product_id": seed.milk.id, "available": 15, "requested": 20}
    for batch in batches.values():
        await db.refresh(batch)
    assert batches["B1"].remaining_quantity == 5
    assert batches["B2"].remaining_quantity == 10
    assert await _outbound_count(db) == 0


async def test_expired_batches_are_still_drawn_first(db, seed, manager, receive):
    batches = await receive(seed.milk, ("OLD", 4, expiry(-2)), ("NEW", 10, expiry(6)))

    plan = await plan_fifo(db, seed.milk.id, 6)

    assert [(a.batch.batch_number, a.quantity) for a in plan] == [("OLD", 4), ("NEW", 2)]
    await db.refresh(batches["OLD"])
    assert batches["OLD"].remaining_quantity == 4


async def test_plan_rejects_non_positive_quantity(db, seed):
    with pytest.raises(ValidationFailed):
        await plan_fifo(db, seed.milk.id, 0)


async def test_fifo_only_posts_outbound_types(db, seed, manager, receive):
    await receive(seed.milk, ("B1", 5, expiry(5)))
    with pytest.raises(ValidationFailed):
        await allocate_fifo(db, seed.milk.id, 1, movement_type=MovementType.EXPIRED_OUT, reference=REF, actor=manager)


class TestAllocateSpecific:
    async def test_draws_named_batch(self, db, seed, manager, receive):
        batches = await receive(seed.milk, ("B1", 5, expiry(5)), ("B2", 10, expiry(10)))

        async with atomic(db):
            allocation = await allocate_specific(db, batches["B2"].id, 4, reference=REF, actor=manager)

        assert allocation.quantity == 4
        await db.refresh(batches["B1"])
        await db.refresh(batches["B2"])
        assert batches["B1"].remaining_quantity == 5
        assert batches["B2"].remaining_quantity == 6

    async def test_unknown_batch(self, db, seed, manager):
        with pytest.raises(NotFoundError):
            await allocate_specific(db, 404, 1, reference=REF, actor=manager)

    async def test_not_enough_in_batch(self, db, seed, manager, receive):
        batch = (await receive(seed.milk, ("B1", 5, expiry(5))))["B1"]
        with pytest.raises(InsufficientStock):
            await allocate_specific(db, batch.id, 6, reference=REF, actor=manager)

    async def test_batch_already_on_the_load(self, db, seed, manager, receive):
        batch = (await receive(seed.milk, ("B1", 20, expiry(5))))["B1"]
        load = await create_truck_load(db, TruckLoadCreate(
            truck_id=seed.truck_1.id,
            load_date=DAY,
            items=[TruckLoadItemIn(batch_id=batch.id, quantity_loaded=5)],
        ), manager)

        with pytest.raises(ConflictError):
            await allocate_specific(db, batch.id, 5, truck_load_id=load.id, reference=REF, actor=manager)


async def test_stale_snapshot_cannot_overdraw(session_factory, seed, manager, receive):
    """Two sessions read remaining=10; 7 then 6 must not both succeed"""
    batch_id = (await receive(seed.milk, ("B1", 10, expiry(5))))["B1"].id

    async with session_factory() as first, session_factory() as second:
        assert (await first.get(Batch, batch_id)).remaining_quantity == 10
        assert (await second.get(Batch, batch_id)).remaining_quantity == 10

        async with atomic(first):
            await allocate_fifo(first, seed.milk.id, 7, reference=REF, actor=manager)

        # `second` still holds remaining=10 in its identity map
        with pytest.raises(InsufficientStock):
            async with atomic(second):
                await allocate_fifo(second, seed.milk.id, 6, reference=REF, actor=manager)

    async with session_factory() as fresh:
        batch = await fresh.get(Batch, batch_id)
        assert batch.remaining_quantity == 3
        assert (await check_batch_balance(fresh, batch_id)).is_balanced


async def test_concurrent_allocations_one_wins(session_factory, seed, manager, receive):
    batch_id = (await receive(seed.milk, ("B1", 10, expiry(5))))["B1"].id

    async def allocate(quantity):
        async with session_factory() as session:
            async with atomic(session):
                await allocate_fifo(session, seed.milk.id, quantity, reference=REF, actor=manager)
            return quantity

    results = await asyncio.gather(allocate(7), allocate(6), return_exceptions=True)

    won = [r for r in results if isinstance(r, int)]
    lost = [r for r in results if isinstance(r, Exception)]
    assert len(won) == 1
    assert len(lost) == 1 and isinstance(lost[0], InsufficientStock)

    async with session_factory() as fresh:
        batch = await fresh.get(Batch, batch_id)
        assert batch.remaining_quantity == 10 - won[0]
