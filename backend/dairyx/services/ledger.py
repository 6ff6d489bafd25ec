"""
Batch ledger
- post_movement: the only way a batch quantity changes
- running balance over a batch's movement history
- balance check (batch counters vs. ledger)
- manual adjustments / expiry write-offs
- daily and per-product movement reports

Quantity rules
- delivery_in and adjustment move initial_quantity and remaining_quantity together
- truck_load_out, sale_out, expired_out only lower remaining_quantity
- truck_return_in only raises remaining_quantity, never above initial_quantity
So at any time:
  remaining == sum(signed movements)
  initial   == sum(delivery_in + adjustment)
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import AsyncIterator, List, Optional, Tuple

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dairyx.core.actor import Actor, require_manager
from dairyx.core.errors import InsufficientStock, NotFoundError, ValidationFailed
from dairyx.core.states import MovementType, ReferenceType
from dairyx.db.session import atomic
from dairyx.models.batch import Batch
from dairyx.models.catalog import Product
from dairyx.models.stock_movement import StockMovement

logger = logging.getLogger(__name__)

INTAKE_TYPES = (MovementType.DELIVERY_IN, MovementType.ADJUSTMENT)
MANUAL_TYPES = (MovementType.ADJUSTMENT, MovementType.EXPIRED_OUT)


@dataclass(frozen=True)
class Reference:
    type: ReferenceType
    id: Optional[int] = None


@dataclass
class BalanceCheck:
    batch_id: int
    initial_quantity: int
    remaining_quantity: int
    intake_total: int
    ledger_total: int

    @property
    def is_balanced(self) -> bool:
        return (
            self.remaining_quantity == self.ledger_total
            and self.initial_quantity == self.intake_total
            and 0 <= self.remaining_quantity <= self.initial_quantity
        )


@dataclass
class BatchHistory:
    batch: Batch
    entries: List[Tuple[StockMovement, int]] = field(default_factory=list)


@dataclass
class MovementSummaryRow:
    product_id: int
    product_name: str
    movement_type: MovementType
    transaction_count: int
    total_quantity: int


def signed_quantity_expr():
    """SQL expression for a movement's effect on remaining_quantity"""
    return case(
        (StockMovement.movement_type.in_([MovementType.DELIVERY_IN, MovementType.TRUCK_RETURN_IN]),
         StockMovement.quantity),
        (StockMovement.movement_type == MovementType.ADJUSTMENT, StockMovement.quantity),
        else_=-StockMovement.quantity,
    )


async def get_batch(db: AsyncSession, batch_id: int) -> Batch:
    batch = await db.get(Batch, batch_id)
    if not batch:
        raise NotFoundError(f"Batch {batch_id} not found")
    return batch


async def post_movement(
    db: AsyncSession,
    batch: Batch,
    movement_type: MovementType,
    quantity: int,
    reference: Reference,
    actor: Actor,
    movement_date: Optional[date] = None,
    notes: Optional[str] = None,
) -> StockMovement:
    """
    Append a movement and apply it to the batch in the caller's transaction.

    The batch row is changed with a conditional UPDATE, so two writers
    working from stale copies of the same batch can never drive
    remaining_quantity below zero or above initial_quantity: the loser
    matches no row and gets an error.
    """
    movement_type = MovementType(movement_type)
    if movement_type == MovementType.ADJUSTMENT:
        if quantity == 0:
            raise ValidationFailed("Adjustment quantity cannot be zero")
    elif quantity <= 0:
        raise ValidationFailed(f"{movement_type.value} quantity must be positive")

    # new batches must be in the database before the conditional update
    await db.flush()

    stmt = update(Batch).where(Batch.id == batch.id)
    if movement_type == MovementType.DELIVERY_IN or (
        movement_type == MovementType.ADJUSTMENT and quantity > 0
    ):
        stmt = stmt.values(
            initial_quantity=Batch.initial_quantity + quantity,
            remaining_quantity=Batch.remaining_quantity + quantity,
        )
    elif movement_type == MovementType.ADJUSTMENT:
        stmt = stmt.where(Batch.remaining_quantity >= -quantity).values(
            initial_quantity=Batch.initial_quantity + quantity,
            remaining_quantity=Batch.remaining_quantity + quantity,
        )
    elif movement_type == MovementType.TRUCK_RETURN_IN:
        stmt = stmt.where(Batch.remaining_quantity + quantity <= Batch.initial_quantity).values(
            remaining_quantity=Batch.remaining_quantity + quantity,
        )
    else:
        stmt = stmt.where(Batch.remaining_quantity >= quantity).values(
            remaining_quantity=Batch.remaining_quantity - quantity,
        )

    result = await db.execute(stmt.execution_options(synchronize_session=False))
    if result.rowcount == 0:
        await db.refresh(batch)
        if movement_type == MovementType.TRUCK_RETURN_IN:
            logger.warning(f"Return rejected on batch {batch.batch_number}: {quantity} exceeds initial quantity")
            raise ValidationFailed(
                f"Returning {quantity} to batch {batch.batch_number} would exceed its initial quantity "
                f"({batch.remaining_quantity}/{batch.initial_quantity})"
            )
        logger.warning(
            f"Insufficient stock on batch {batch.batch_number}: need {abs(quantity)}, have {batch.remaining_quantity}"
        )
        raise InsufficientStock(
            f"Insufficient stock in batch {batch.batch_number}. "
            f"Available: {batch.remaining_quantity}, requested: {abs(quantity)}",
            extra={"batch_id": batch.id, "available": batch.remaining_quantity, "requested": abs(quantity)},
        )

    movement = StockMovement(
        batch_id=batch.id,
        product_id=batch.product_id,
        movement_type=movement_type,
        quantity=quantity,
        reference_type=reference.type,
        reference_id=reference.id,
        notes=notes,
        created_by=actor.user_id,
        movement_date=movement_date or date.today(),
    )
    db.add(movement)
    await db.flush()
    await db.refresh(batch)
    logger.debug(
        f"Movement {movement.id}: {movement_type.value} {quantity} on batch {batch.batch_number} "
        f"-> remaining {batch.remaining_quantity}"
    )
    return movement


async def get_running_balance(db: AsyncSession, batch_id: int) -> AsyncIterator[Tuple[StockMovement, int]]:
    """Yield (movement, balance after it) in (created_at, id) order, streamed from the database"""
    result = await db.stream_scalars(
        select(StockMovement)
        .where(StockMovement.batch_id == batch_id)
        .order_by(StockMovement.created_at.asc(), StockMovement.id.asc())
    )
    balance = 0
    async for movement in result:
        balance += movement.signed_quantity
        yield movement, balance


async def batch_movement_history(db: AsyncSession, batch_id: int) -> BatchHistory:
    batch = await get_batch(db, batch_id)
    history = BatchHistory(batch=batch)
    async for movement, balance in get_running_balance(db, batch_id):
        history.entries.append((movement, balance))
    return history


async def check_batch_balance(db: AsyncSession, batch_id: int) -> BalanceCheck:
    """Compare the batch counters with what its movements add up to"""
    batch = await get_batch(db, batch_id)
    await db.refresh(batch)

    ledger_total = await db.scalar(
        select(func.coalesce(func.sum(signed_quantity_expr()), 0))
        .where(StockMovement.batch_id == batch_id)
    )
    intake_total = await db.scalar(
        select(func.coalesce(func.sum(StockMovement.quantity), 0))
        .where(
            StockMovement.batch_id == batch_id,
            StockMovement.movement_type.in_(INTAKE_TYPES),
        )
    )
    check = BalanceCheck(
        batch_id=batch.id,
        initial_quantity=batch.initial_quantity,
        remaining_quantity=batch.remaining_quantity,
        intake_total=int(intake_total or 0),
        ledger_total=int(ledger_total or 0),
    )
    if not check.is_balanced:
        logger.error(
            f"Ledger mismatch on batch {batch.batch_number}: remaining={check.remaining_quantity} "
            f"ledger={check.ledger_total} initial={check.initial_quantity} intake={check.intake_total}"
        )
    return check


async def adjust_stock(
    db: AsyncSession,
    *,
    batch_id: int,
    product_id: int,
    movement_type: MovementType,
    quantity: int,
    reason: str,
    actor: Actor,
    notes: Optional[str] = None,
    movement_date: Optional[date] = None,
) -> StockMovement:
    """
    Manual stock correction (manager only).

    adjustment  - signed, non-zero; moves initial and remaining together
    expired_out - positive write-off of expired stock
    """
    require_manager(actor, "adjust stock")
    movement_type = MovementType(movement_type)
    if movement_type not in MANUAL_TYPES:
        raise ValidationFailed("Invalid movement type. Must be 'adjustment' or 'expired_out'")
    if movement_type == MovementType.EXPIRED_OUT and quantity <= 0:
        raise ValidationFailed("Expired quantity must be positive")
    if not reason or not reason.strip():
        raise ValidationFailed("A reason is required for manual stock changes")

    async with atomic(db):
        batch = await get_batch(db, batch_id)
        if batch.product_id != product_id:
            raise ValidationFailed("Product ID does not match batch")

        full_notes = f"{reason.strip()} - {notes}" if notes else reason.strip()
        movement = await post_movement(
            db, batch, movement_type, quantity,
            Reference(ReferenceType.MANUAL), actor,
            movement_date=movement_date, notes=full_notes,
        )

    logger.info(
        f"Manual {movement_type.value} of {quantity} on batch {batch.batch_number} by user {actor.user_id}: {reason}"
    )
    return movement


async def daily_movement_summary(db: AsyncSession, day: date) -> List[MovementSummaryRow]:
    result = await db.execute(
        select(
            StockMovement.product_id,
            Product.name,
            StockMovement.movement_type,
            func.count(StockMovement.id),
            func.coalesce(func.sum(StockMovement.quantity), 0),
        )
        .join(Product, Product.id == StockMovement.product_id)
        .where(StockMovement.movement_date == day)
        .group_by(StockMovement.product_id, Product.name, StockMovement.movement_type)
        .order_by(Product.name, StockMovement.movement_type)
    )
    return [
        MovementSummaryRow(
            product_id=product_id,
            product_name=name,
            movement_type=movement_type,
            transaction_count=count,
            total_quantity=int(total),
        )
        for product_id, name, movement_type, count, total in result.all()
    ]


async def product_movements(
    db: AsyncSession,
    product_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    movement_type: Optional[MovementType] = None,
    limit: int = 200,
) -> List[StockMovement]:
    query = select(StockMovement).where(StockMovement.product_id == product_id)
    if start_date:
        query = query.where(StockMovement.movement_date >= start_date)
    if end_date:
        query = query.where(StockMovement.movement_date <= end_date)
    if movement_type:
        query = query.where(StockMovement.movement_type == MovementType(movement_type))
    query = query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
