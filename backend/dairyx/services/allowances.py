"""
Transport allowances
- one budget per day, split across trucks
- a truck's share never exceeds its max_allowance_limit
- the shares never add up to more than the day's budget
- finalized budgets are read-only; only pending ones can be deleted
"""
import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dairyx.core.actor import Actor, require_manager
from dairyx.core.errors import ConflictError, NotFoundError, ValidationFailed
from dairyx.core.states import AllowanceStatus, ensure_transition, is_terminal
from dairyx.db.session import atomic
from dairyx.models.allowance import TransportAllowance, TruckAllowance
from dairyx.models.catalog import Truck
from dairyx.schemas.allowance import AllowanceCreate, AllocationUpdate, TruckAllocationIn

logger = logging.getLogger(__name__)


async def get_allowance(db: AsyncSession, allowance_id: int) -> TransportAllowance:
    result = await db.execute(
        select(TransportAllowance)
        .where(TransportAllowance.id == allowance_id)
        .options(selectinload(TransportAllowance.truck_allowances))
        .execution_options(populate_existing=True)
    )
    allowance = result.scalar_one_or_none()
    if not allowance:
        raise NotFoundError("Allowance not found")
    return allowance


async def list_allowances(
    db: AsyncSession,
    status: Optional[AllowanceStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = 0,
    limit: int = 100,
) -> Tuple[List[TransportAllowance], int]:
    filters = []
    if status:
        filters.append(TransportAllowance.status == AllowanceStatus(status))
    if start_date:
        filters.append(TransportAllowance.allowance_date >= start_date)
    if end_date:
        filters.append(TransportAllowance.allowance_date <= end_date)

    result = await db.execute(
        select(TransportAllowance)
        .where(*filters)
        .options(selectinload(TransportAllowance.truck_allowances))
        .order_by(TransportAllowance.allowance_date.desc())
        .offset(skip)
        .limit(limit)
    )
    total = await db.scalar(select(func.count(TransportAllowance.id)).where(*filters)) or 0
    return list(result.scalars().all()), total


async def allowance_for_truck(db: AsyncSession, allowance_date: date, truck_id: int) -> Decimal:
    """Amount given to a truck on a day (0 when there is none)"""
    amount = await db.scalar(
        select(TruckAllowance.amount)
        .join(TransportAllowance, TransportAllowance.id == TruckAllowance.allowance_id)
        .where(TransportAllowance.allowance_date == allowance_date, TruckAllowance.truck_id == truck_id)
    )
    return Decimal(str(amount)) if amount is not None else Decimal("0.00")


async def create_allowance(db: AsyncSession, data: AllowanceCreate, actor: Actor) -> TransportAllowance:
    require_manager(actor, "create allowances")
    if data.total_allowance <= 0:
        raise ValidationFailed("Total allowance must be greater than 0")

    async with atomic(db):
        existing = await db.scalar(
            select(TransportAllowance.id).where(TransportAllowance.allowance_date == data.allowance_date)
        )
        if existing:
            raise ConflictError(f"An allowance already exists for {data.allowance_date}")

        allowance = TransportAllowance(
            allowance_date=data.allowance_date,
            total_allowance=data.total_allowance,
            status=AllowanceStatus.PENDING,
            notes=data.notes,
            created_by=actor.user_id,
        )
        db.add(allowance)
        await db.flush()

    logger.info(f"Allowance {allowance.id} created for {data.allowance_date}: {data.total_allowance}")
    return await get_allowance(db, allowance.id)


async def _check_truck_amount(db: AsyncSession, truck_id: int, amount: Decimal, distance: Optional[Decimal]) -> Truck:
    if amount <= 0:
        raise ValidationFailed("Allocation amount must be greater than 0")
    if distance is not None and distance < 0:
        raise ValidationFailed("Distance covered cannot be negative")

    truck = await db.get(Truck, truck_id)
    if not truck:
        raise NotFoundError(f"Truck {truck_id} not found")
    if not truck.is_active:
        raise ValidationFailed(f"Truck {truck.truck_number} is not active")
    if amount > truck.max_allowance_limit:
        raise ValidationFailed(
            f"Allocation {amount} for truck {truck.truck_number} exceeds its limit {truck.max_allowance_limit}"
        )
    return truck


async def allocate_to_trucks(
    db: AsyncSession,
    allowance_id: int,
    allocations: Sequence[TruckAllocationIn],
    actor: Actor,
) -> TransportAllowance:
    require_manager(actor, "allocate allowances")
    if not allocations:
        raise ValidationFailed("At least one allocation is required")

    async with atomic(db):
        allowance = await get_allowance(db, allowance_id)
        if is_terminal(allowance.status):
            raise ConflictError("Cannot allocate a finalized allowance")

        running_total = allowance.allocated_amount
        already = {ta.truck_id for ta in allowance.truck_allowances}
        for alloc in allocations:
            truck = await _check_truck_amount(db, alloc.truck_id, alloc.amount, alloc.distance_covered)
            if truck.id in already:
                raise ConflictError(f"Truck {truck.truck_number} already has an allocation for this allowance")
            running_total += alloc.amount
            if running_total > allowance.total_allowance:
                raise ValidationFailed(
                    f"Total allocations {running_total} exceed the allowance {allowance.total_allowance}"
                )
            db.add(TruckAllowance(
                allowance_id=allowance.id,
                truck_id=truck.id,
                amount=alloc.amount,
                distance_covered=alloc.distance_covered,
                notes=alloc.notes,
                allocated_by=actor.user_id,
            ))
            already.add(truck.id)

        ensure_transition(allowance.status, AllowanceStatus.ALLOCATED, "Allowance")
        allowance.status = AllowanceStatus.ALLOCATED
        await db.flush()

    logger.info(f"Allowance {allowance_id}: {len(allocations)} truck allocations, total now {running_total}")
    return await get_allowance(db, allowance_id)


async def update_truck_allocation(
    db: AsyncSession,
    allowance_id: int,
    truck_id: int,
    data: AllocationUpdate,
    actor: Actor,
) -> TransportAllowance:
    require_manager(actor, "update allowances")

    async with atomic(db):
        allowance = await get_allowance(db, allowance_id)
        if is_terminal(allowance.status):
            raise ConflictError("Cannot modify a finalized allowance")

        current = next((ta for ta in allowance.truck_allowances if ta.truck_id == truck_id), None)
        if not current:
            raise NotFoundError("Truck allocation not found")

        await _check_truck_amount(db, truck_id, data.amount, data.distance_covered)
        others = allowance.allocated_amount - current.amount
        if others + data.amount > allowance.total_allowance:
            raise ValidationFailed(
                f"Total allocations {others + data.amount} exceed the allowance {allowance.total_allowance}"
            )

        current.amount = data.amount
        if data.distance_covered is not None:
            current.distance_covered = data.distance_covered
        if data.notes is not None:
            current.notes = data.notes
        await db.flush()

    return await get_allowance(db, allowance_id)


async def finalize_allowance(db: AsyncSession, allowance_id: int, actor: Actor) -> TransportAllowance:
    require_manager(actor, "finalize allowances")

    async with atomic(db):
        allowance = await get_allowance(db, allowance_id)
        if allowance.status == AllowanceStatus.FINALIZED:
            raise ConflictError("Allowance is already finalized")
        ensure_transition(allowance.status, AllowanceStatus.FINALIZED, "Allowance")
        allowance.status = AllowanceStatus.FINALIZED
        await db.flush()

    logger.info(f"Allowance {allowance_id} finalized by user {actor.user_id}")
    return await get_allowance(db, allowance_id)


async def delete_allowance(db: AsyncSession, allowance_id: int, actor: Actor) -> None:
    require_manager(actor, "delete allowances")

    async with atomic(db):
        allowance = await get_allowance(db, allowance_id)
        if allowance.status != AllowanceStatus.PENDING:
            raise ConflictError("Only pending allowances can be deleted")
        for truck_allowance in list(allowance.truck_allowances):
            await db.delete(truck_allowance)
        await db.delete(allowance)
        await db.flush()

    logger.info(f"Allowance {allowance_id} deleted by user {actor.user_id}")
