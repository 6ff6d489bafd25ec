"""
FIFO batch allocation

Earliest expiry first (then oldest batch, then lowest id). Allocation is
all-or-nothing: the plan is checked against the total on hand before any
batch is touched, and every draw goes through the ledger's conditional
update inside the caller's transaction.

Expired batches are not skipped; expiry only decides the order.
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dairyx.core.actor import Actor
from dairyx.core.errors import ConflictError, InsufficientStock, NotFoundError, ValidationFailed
from dairyx.core.states import MovementType
from dairyx.models.batch import Batch
from dairyx.models.truck_load import TruckLoadItem
from dairyx.services.ledger import Reference, post_movement

logger = logging.getLogger(__name__)


@dataclass
class Allocation:
    batch: Batch
    quantity: int

    @property
    def batch_id(self) -> int:
        return self.batch.id


async def plan_fifo(db: AsyncSession, product_id: int, quantity_needed: int) -> List[Allocation]:
    """Pick batches for `quantity_needed` units without changing anything"""
    if quantity_needed <= 0:
        raise ValidationFailed("Quantity must be positive")

    result = await db.execute(
        select(Batch)
        .where(Batch.product_id == product_id, Batch.remaining_quantity > 0)
        .order_by(Batch.expiry_date.asc(), Batch.created_at.asc(), Batch.id.asc())
    )
    batches = result.scalars().all()

    available = sum(b.remaining_quantity for b in batches)
    if available < quantity_needed:
        logger.warning(f"FIFO shortfall for product {product_id}: need {quantity_needed}, have {available}")
        raise InsufficientStock(
            f"Insufficient stock for product {product_id}. Available: {available}, requested: {quantity_needed}",
            extra={"product_id": product_id, "available": available, "requested": quantity_needed},
        )

    plan = []
    remaining = quantity_needed
    for batch in batches:
        if remaining <= 0:
            break
        take = min(batch.remaining_quantity, remaining)
        plan.append(Allocation(batch=batch, quantity=take))
        remaining -= take
    return plan


async def allocate_fifo(
    db: AsyncSession,
    product_id: int,
    quantity_needed: int,
    *,
    movement_type: MovementType = MovementType.TRUCK_LOAD_OUT,
    reference: Reference,
    actor: Actor,
    movement_date: Optional[date] = None,
) -> List[Allocation]:
    """
    Draw `quantity_needed` units of a product, earliest expiry first.

    Returns [(batch, quantity_taken)] in draw order. Each draw posts a
    truck_load_out or sale_out movement. A concurrent writer that empties
    a planned batch first makes the draw fail with InsufficientStock; the
    caller's transaction then rolls back every earlier draw.
    """
    if movement_type not in (MovementType.TRUCK_LOAD_OUT, MovementType.SALE_OUT):
        raise ValidationFailed("Allocation can only post truck_load_out or sale_out")

    plan = await plan_fifo(db, product_id, quantity_needed)
    for allocation in plan:
        await post_movement(
            db, allocation.batch, movement_type, allocation.quantity,
            reference, actor, movement_date=movement_date,
        )
    logger.info(
        f"FIFO allocated {quantity_needed} of product {product_id}: "
        + ", ".join(f"{a.batch.batch_number}x{a.quantity}" for a in plan)
    )
    return plan


async def allocate_specific(
    db: AsyncSession,
    batch_id: int,
    quantity: int,
    *,
    truck_load_id: Optional[int] = None,
    movement_type: MovementType = MovementType.TRUCK_LOAD_OUT,
    reference: Reference,
    actor: Actor,
    movement_date: Optional[date] = None,
) -> Allocation:
    """Draw from one named batch (manual selection)"""
    if quantity <= 0:
        raise ValidationFailed("Quantity must be positive")
    if movement_type not in (MovementType.TRUCK_LOAD_OUT, MovementType.SALE_OUT):
        raise ValidationFailed("Allocation can only post truck_load_out or sale_out")

    batch = await db.get(Batch, batch_id)
    if not batch:
        raise NotFoundError(f"Batch {batch_id} not found")

    if truck_load_id is not None:
        existing = await db.scalar(
            select(TruckLoadItem.id).where(
                TruckLoadItem.truck_load_id == truck_load_id,
                TruckLoadItem.batch_id == batch_id,
            )
        )
        if existing:
            raise ConflictError(f"Batch {batch.batch_number} is already on this truck load")

    if batch.remaining_quantity < quantity:
        raise InsufficientStock(
            f"Insufficient stock in batch {batch.batch_number}. "
            f"Available: {batch.remaining_quantity}, requested: {quantity}",
            extra={"batch_id": batch.id, "available": batch.remaining_quantity, "requested": quantity},
        )

    await post_movement(db, batch, movement_type, quantity, reference, actor, movement_date=movement_date)
    return Allocation(batch=batch, quantity=quantity)
