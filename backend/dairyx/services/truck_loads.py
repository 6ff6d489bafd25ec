"""
Truck load lifecycle
- create: allocate stock to a truck for a day (manual batch or FIFO);
  closed for a day once its reconciliation has started
- reconcile: record returns, put returned stock back, loaded -> reconciled
- delete: only before any sale; the inverse of create
"""
import logging
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dairyx.core.actor import Actor, require_manager
from dairyx.core.errors import ConflictError, NotFoundError, ValidationFailed
from dairyx.core.states import MovementType, ReferenceType, TruckLoadStatus, ensure_transition
from dairyx.db.session import atomic
from dairyx.models.batch import Batch
from dairyx.models.catalog import Product, Truck
from dairyx.models.reconciliation import ReconciliationItem
from dairyx.models.sale import Sale
from dairyx.models.truck_load import TruckLoad, TruckLoadItem
from dairyx.schemas.truck_load import TruckLoadCreate, TruckReturnLine
from dairyx.services.allocator import Allocation, allocate_fifo, allocate_specific
from dairyx.services.ledger import Reference, post_movement
from dairyx.services.reconciliation import reconciliation_started

logger = logging.getLogger(__name__)


def _load_options():
    return (
        selectinload(TruckLoad.truck),
        selectinload(TruckLoad.items).selectinload(TruckLoadItem.batch),
        selectinload(TruckLoad.items).selectinload(TruckLoadItem.product),
    )


async def get_truck_load(db: AsyncSession, truck_load_id: int) -> TruckLoad:
    result = await db.execute(
        select(TruckLoad)
        .where(TruckLoad.id == truck_load_id)
        .options(*_load_options())
        .execution_options(populate_existing=True)
    )
    load = result.scalar_one_or_none()
    if not load:
        raise NotFoundError("Truck load not found")
    return load


async def list_truck_loads(
    db: AsyncSession,
    truck_id: Optional[int] = None,
    load_date: Optional[date] = None,
    status: Optional[TruckLoadStatus] = None,
    skip: int = 0,
    limit: int = 100,
) -> Tuple[List[TruckLoad], int]:
    query = select(TruckLoad)
    count_query = select(func.count(TruckLoad.id))
    if truck_id:
        query = query.where(TruckLoad.truck_id == truck_id)
        count_query = count_query.where(TruckLoad.truck_id == truck_id)
    if load_date:
        query = query.where(TruckLoad.load_date == load_date)
        count_query = count_query.where(TruckLoad.load_date == load_date)
    if status:
        query = query.where(TruckLoad.status == TruckLoadStatus(status))
        count_query = count_query.where(TruckLoad.status == TruckLoadStatus(status))

    query = (
        query.options(*_load_options())
        .order_by(TruckLoad.load_date.desc(), TruckLoad.id.desc())
        .offset(skip)
        .limit(limit)
    )
    result = await db.execute(query)
    total = await db.scalar(count_query) or 0
    return list(result.scalars().all()), total


async def create_truck_load(db: AsyncSession, data: TruckLoadCreate, actor: Actor) -> TruckLoad:
    """
    Load a truck for one day.

    Each line names either a batch (manual pick) or a product (FIFO across
    that product's batches). All allocations and their truck_load_out
    movements commit together or not at all.
    """
    require_manager(actor, "create truck loads")
    if not data.items:
        raise ValidationFailed("Truck load must contain at least one item")
    for item in data.items:
        if (item.batch_id is None) == (item.product_id is None):
            raise ValidationFailed("Each item must specify either batch_id or product_id, not both")
        if item.quantity_loaded <= 0:
            raise ValidationFailed("Quantity loaded must be greater than 0")

    async with atomic(db):
        truck = await db.get(Truck, data.truck_id)
        if not truck:
            raise NotFoundError("Truck not found")
        if not truck.is_active:
            raise ValidationFailed(f"Truck {truck.truck_number} is not active")

        existing = await db.scalar(
            select(TruckLoad.id).where(TruckLoad.truck_id == truck.id, TruckLoad.load_date == data.load_date)
        )
        if existing:
            raise ConflictError(f"Truck {truck.truck_number} already has a load for {data.load_date}")
        if await reconciliation_started(db, data.load_date):
            raise ConflictError(f"Reconciliation has already started for {data.load_date}")

        load = TruckLoad(
            truck_id=truck.id,
            load_date=data.load_date,
            loaded_by=actor.user_id,
            status=TruckLoadStatus.LOADED,
            notes=data.notes,
        )
        db.add(load)
        await db.flush()

        reference = Reference(ReferenceType.TRUCK_LOAD, load.id)
        items_by_batch: Dict[int, TruckLoadItem] = {}
        for item in data.items:
            if item.batch_id is not None:
                allocations = [
                    await allocate_specific(
                        db, item.batch_id, item.quantity_loaded,
                        truck_load_id=load.id, reference=reference, actor=actor,
                        movement_date=data.load_date,
                    )
                ]
            else:
                if not await db.get(Product, item.product_id):
                    raise NotFoundError(f"Product {item.product_id} not found")
                allocations = await allocate_fifo(
                    db, item.product_id, item.quantity_loaded,
                    reference=reference, actor=actor, movement_date=data.load_date,
                )
            _merge_into_load(db, load, allocations, items_by_batch)
            await db.flush()

    logger.info(
        f"Truck {truck.truck_number} loaded for {data.load_date}: "
        f"{sum(i.quantity_loaded for i in items_by_batch.values())} units in {len(items_by_batch)} batches"
    )
    return await get_truck_load(db, load.id)


def _merge_into_load(
    db: AsyncSession,
    load: TruckLoad,
    allocations: Sequence[Allocation],
    items_by_batch: Dict[int, TruckLoadItem],
) -> None:
    # one row per batch; FIFO lines for the same product may land on the same batch
    for allocation in allocations:
        load_item = items_by_batch.get(allocation.batch_id)
        if load_item:
            load_item.quantity_loaded += allocation.quantity
            continue
        load_item = TruckLoadItem(
            truck_load_id=load.id,
            batch_id=allocation.batch_id,
            product_id=allocation.batch.product_id,
            quantity_loaded=allocation.quantity,
            quantity_sold=0,
            quantity_returned=0,
        )
        db.add(load_item)
        items_by_batch[allocation.batch_id] = load_item


async def _get_load(db: AsyncSession, truck_load_id: int) -> TruckLoad:
    load = await db.get(TruckLoad, truck_load_id, populate_existing=True)
    if not load:
        raise NotFoundError("Truck load not found")
    return load


async def _load_items(db: AsyncSession, truck_load_id: int) -> List[TruckLoadItem]:
    result = await db.execute(
        select(TruckLoadItem)
        .where(TruckLoadItem.truck_load_id == truck_load_id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def reconcile_truck_load(
    db: AsyncSession,
    truck_load_id: int,
    returns: Sequence[TruckReturnLine],
    actor: Actor,
    notes: Optional[str] = None,
) -> TruckLoad:
    """
    Record what came back on the truck and close the load.

    Each returned quantity goes back to its batch as a truck_return_in
    movement. Whatever is neither sold nor returned is reported as
    lost/damaged from now on.
    """
    require_manager(actor, "reconcile truck loads")

    async with atomic(db):
        load = await _get_load(db, truck_load_id)
        if load.is_reconciled:
            raise ConflictError("Truck load already reconciled")
        ensure_transition(load.status, TruckLoadStatus.RECONCILED, "Truck load")

        items = {item.batch_id: item for item in await _load_items(db, load.id)}
        reference = Reference(ReferenceType.TRUCK_LOAD, load.id)
        for line in returns:
            item = items.get(line.batch_id)
            if not item:
                raise NotFoundError(f"Batch {line.batch_id} not found in this truck load")
            if line.quantity_returned < 0:
                raise ValidationFailed("Returned quantity cannot be negative")
            if item.quantity_sold + item.quantity_returned + line.quantity_returned > item.quantity_loaded:
                raise ValidationFailed(
                    f"Cannot return {line.quantity_returned} of batch {line.batch_id}: "
                    f"loaded {item.quantity_loaded}, sold {item.quantity_sold}, "
                    f"already returned {item.quantity_returned}"
                )
            if line.quantity_returned == 0:
                continue

            item.quantity_returned += line.quantity_returned
            batch = await db.get(Batch, item.batch_id)
            await post_movement(
                db, batch, MovementType.TRUCK_RETURN_IN, line.quantity_returned,
                reference, actor, movement_date=load.load_date,
                notes="Returned from truck",
            )

        load.status = TruckLoadStatus.RECONCILED
        if notes:
            load.notes = f"{load.notes}\n{notes}" if load.notes else notes
        await db.flush()

    logger.info(f"Truck load {truck_load_id} reconciled by user {actor.user_id}")
    return await get_truck_load(db, truck_load_id)


async def delete_truck_load(db: AsyncSession, truck_load_id: int, actor: Actor) -> None:
    """Undo a load that has no sales: put loaded - returned back to each batch"""
    require_manager(actor, "delete truck loads")

    async with atomic(db):
        load = await _get_load(db, truck_load_id)

        sale_count = await db.scalar(select(func.count(Sale.id)).where(Sale.truck_load_id == load.id))
        if sale_count:
            raise ConflictError("Cannot delete truck load with existing sales")
        in_reconciliation = await db.scalar(
            select(func.count(ReconciliationItem.id)).where(ReconciliationItem.truck_load_id == load.id)
        )
        if in_reconciliation:
            raise ConflictError("Cannot delete truck load that is part of a daily reconciliation")

        reference = Reference(ReferenceType.TRUCK_LOAD, load.id)
        items = await _load_items(db, load.id)
        for item in items:
            to_restore = item.quantity_loaded - item.quantity_returned
            if to_restore <= 0:
                continue
            batch = await db.get(Batch, item.batch_id)
            await post_movement(
                db, batch, MovementType.TRUCK_RETURN_IN, to_restore,
                reference, actor, notes="Truck load deleted",
            )

        for item in items:
            await db.delete(item)
        await db.flush()
        await db.delete(load)
        await db.flush()

    logger.info(f"Truck load {truck_load_id} deleted by user {actor.user_id}")
