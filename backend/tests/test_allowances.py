from decimal import Decimal

import pytest
from sqlalchemy import func, select

from dairyx.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailed
from dairyx.core.states import AllowanceStatus
from dairyx.models import TruckAllowance
from dairyx.schemas.allowance import AllocationUpdate, AllowanceCreate, TruckAllocationIn
from dairyx.services.allowances import (
    allocate_to_trucks,
    allowance_for_truck,
    create_allowance,
    delete_allowance,
    finalize_allowance,
    get_allowance,
    list_allowances,
    update_truck_allocation,
)

from conftest import DAY, expiry


@pytest.fixture
async def allowance_id(db, manager):
    allowance = await create_allowance(
        db, AllowanceCreate(allowance_date=DAY, total_allowance=Decimal("1000.00")), manager,
    )
    return allowance.id


def _alloc(truck, amount, distance=None):
    return TruckAllocationIn(
        truck_id=truck.id,
        amount=Decimal(amount),
        distance_covered=Decimal(distance) if distance is not None else None,
    )


async def test_create_allowance(db, seed, manager, allowance_id):
    allowance = await get_allowance(db, allowance_id)
    assert allowance.status == AllowanceStatus.PENDING
    assert allowance.allocated_amount == Decimal("0.00")
    assert allowance.remaining_amount == Decimal("1000.00")

    with pytest.raises(ConflictError):
        await create_allowance(db, AllowanceCreate(allowance_date=DAY, total_allowance=Decimal("5")), manager)
    with pytest.raises(ValidationFailed):
        await create_allowance(db, AllowanceCreate(allowance_date=expiry(1), total_allowance=Decimal("0")), manager)


async def test_drivers_cannot_create(db, seed, driver_1):
    with pytest.raises(ForbiddenError):
        await create_allowance(db, AllowanceCreate(allowance_date=DAY, total_allowance=Decimal("10")), driver_1)


class TestAllocate:
    async def test_split_across_trucks(self, db, seed, manager, allowance_id):
        result = await allocate_to_trucks(db, allowance_id, [
            _alloc(seed.truck_1, "600.00", "42.5"),
            _alloc(seed.truck_2, "300.00"),
        ], manager)

        assert result.status == AllowanceStatus.ALLOCATED
        assert result.allocated_amount == Decimal("900.00")
        assert result.remaining_amount == Decimal("100.00")
        assert await allowance_for_truck(db, DAY, seed.truck_1.id) == Decimal("600.00")
        assert await allowance_for_truck(db, DAY, seed.truck_2.id) == Decimal("300.00")
        assert await allowance_for_truck(db, expiry(1), seed.truck_1.id) == Decimal("0.00")

    async def test_total_cannot_be_exceeded(self, db, seed, manager, allowance_id):
        with pytest.raises(ValidationFailed):
            await allocate_to_trucks(db, allowance_id, [
                _alloc(seed.truck_1, "700.00"),
                _alloc(seed.truck_2, "400.00"),
            ], manager)

        assert await db.scalar(select(func.count(TruckAllowance.id))) == 0
        assert (await get_allowance(db, allowance_id)).status == AllowanceStatus.PENDING

    async def test_truck_limit(self, db, seed, manager, allowance_id):
        # truck_2 is capped at 500
        with pytest.raises(ValidationFailed, match="exceeds its limit"):
            await allocate_to_trucks(db, allowance_id, [_alloc(seed.truck_2, "500.01")], manager)

    async def test_one_share_per_truck(self, db, seed, manager, allowance_id):
        await allocate_to_trucks(db, allowance_id, [_alloc(seed.truck_1, "100")], manager)
        with pytest.raises(ConflictError):
            await allocate_to_trucks(db, allowance_id, [_alloc(seed.truck_1, "100")], manager)

    @pytest.mark.parametrize("amount, distance", [("0", None), ("-5", None), ("10", "-1")])
    async def test_rejects_bad_amounts(self, db, seed, manager, allowance_id, amount, distance):
        with pytest.raises(ValidationFailed):
            await allocate_to_trucks(db, allowance_id, [_alloc(seed.truck_1, amount, distance)], manager)

    async def test_inactive_or_unknown_truck(self, db, seed, manager, allowance_id):
        with pytest.raises(ValidationFailed):
            await allocate_to_trucks(db, allowance_id, [_alloc(seed.idle_truck, "10")], manager)
        with pytest.raises(NotFoundError):
            await allocate_to_trucks(
                db, allowance_id, [TruckAllocationIn(truck_id=999, amount=Decimal("10"))], manager,
            )


class TestUpdateAllocation:
    async def test_update_within_budget(self, db, seed, manager, allowance_id):
        await allocate_to_trucks(db, allowance_id, [
            _alloc(seed.truck_1, "600"), _alloc(seed.truck_2, "300"),
        ], manager)

        result = await update_truck_allocation(
            db, allowance_id, seed.truck_1.id, AllocationUpdate(amount=Decimal("700"), notes="long route"), manager,
        )
        assert result.allocated_amount == Decimal("1000.00")
        share = next(ta for ta in result.truck_allowances if ta.truck_id == seed.truck_1.id)
        assert share.notes == "long route"

        with pytest.raises(ValidationFailed):
            await update_truck_allocation(
                db, allowance_id, seed.truck_1.id, AllocationUpdate(amount=Decimal("700.01")), manager,
            )

    async def test_missing_share(self, db, seed, manager, allowance_id):
        with pytest.raises(NotFoundError):
            await update_truck_allocation(
                db, allowance_id, seed.truck_1.id, AllocationUpdate(amount=Decimal("1")), manager,
            )


class TestLifecycle:
    async def test_finalized_is_read_only(self, db, seed, manager, allowance_id):
        await allocate_to_trucks(db, allowance_id, [_alloc(seed.truck_1, "100")], manager)
        result = await finalize_allowance(db, allowance_id, manager)
        assert result.status == AllowanceStatus.FINALIZED

        with pytest.raises(ConflictError):
            await finalize_allowance(db, allowance_id, manager)
        with pytest.raises(ConflictError):
            await allocate_to_trucks(db, allowance_id, [_alloc(seed.truck_2, "100")], manager)
        with pytest.raises(ConflictError):
            await update_truck_allocation(
                db, allowance_id, seed.truck_1.id, AllocationUpdate(amount=Decimal("50")), manager,
            )
        with pytest.raises(ConflictError):
            await delete_allowance(db, allowance_id, manager)

    async def test_only_pending_can_be_deleted(self, db, seed, manager, allowance_id):
        other_id = (await create_allowance(
            db, AllowanceCreate(allowance_date=expiry(1), total_allowance=Decimal("50")), manager,
        )).id
        await allocate_to_trucks(db, allowance_id, [_alloc(seed.truck_1, "100")], manager)

        with pytest.raises(ConflictError):
            await delete_allowance(db, allowance_id, manager)
        await delete_allowance(db, other_id, manager)

        allowances, total = await list_allowances(db)
        assert total == 1
        assert allowances[0].id == allowance_id

    async def test_list_by_status(self, db, seed, manager, allowance_id):
        await create_allowance(db, AllowanceCreate(allowance_date=expiry(1), total_allowance=Decimal("50")), manager)
        await allocate_to_trucks(db, allowance_id, [_alloc(seed.truck_1, "100")], manager)

        _, total = await list_allowances(db, status=AllowanceStatus.PENDING)
        assert total == 1
        _, total = await list_allowances(db, start_date=DAY, end_date=DAY)
        assert total == 1
