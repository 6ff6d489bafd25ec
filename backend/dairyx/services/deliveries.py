"""
Delivery intake

A delivery note lists products; each product arrives in one or more batches.
A batch line either creates a new batch or tops up an existing one with the
same (product, batch_number) and expiry. Every batch line posts delivery_in.
"""
import logging
from typing import Dict, List, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dairyx.core.actor import Actor, require_manager
from dairyx.core.errors import ConflictError, NotFoundError, ValidationFailed
from dairyx.core.states import MovementType, ReferenceType
from dairyx.db.session import atomic
from dairyx.models.batch import Batch, Delivery, DeliveryItem
from dairyx.models.catalog import Product
from dairyx.models.stock_movement import StockMovement
from dairyx.schemas.delivery import DeliveryCreate
from dairyx.services.ledger import Reference, post_movement

logger = logging.getLogger(__name__)


def _validate(data: DeliveryCreate) -> None:
    if not data.items:
        raise ValidationFailed("Delivery must contain at least one item")
    seen = set()
    for item in data.items:
        if item.product_id in seen:
            raise ConflictError(f"Product {item.product_id} appears twice in the delivery")
        seen.add(item.product_id)
        if item.unit_price < 0:
            raise ValidationFailed("Unit price cannot be negative")
        if not item.batches:
            raise ValidationFailed(f"Product {item.product_id} must have at least one batch")
        for line in item.batches:
            if line.quantity <= 0:
                raise ValidationFailed(f"Batch {line.batch_number} quantity must be greater than 0")


async def receive_delivery(db: AsyncSession, data: DeliveryCreate, actor: Actor) -> Delivery:
    require_manager(actor, "create deliveries")
    _validate(data)

    async with atomic(db):
        duplicate = await db.scalar(
            select(Delivery.id).where(Delivery.delivery_note_number == data.delivery_note_number)
        )
        if duplicate:
            raise ConflictError(f"Delivery note {data.delivery_note_number} already exists")

        delivery = Delivery(
            delivery_date=data.delivery_date,
            delivery_note_number=data.delivery_note_number,
            received_by=actor.user_id,
            notes=data.notes,
        )
        db.add(delivery)
        await db.flush()

        reference = Reference(ReferenceType.DELIVERY, delivery.id)
        for item in data.items:
            product = await db.get(Product, item.product_id)
            if not product:
                raise NotFoundError(f"Product {item.product_id} not found")

            db.add(DeliveryItem(delivery_id=delivery.id, product_id=product.id, unit_price=item.unit_price))

            for line in item.batches:
                batch = await db.scalar(
                    select(Batch).where(Batch.product_id == product.id, Batch.batch_number == line.batch_number)
                )
                if batch and batch.expiry_date != line.expiry_date:
                    raise ValidationFailed(
                        f"Batch {line.batch_number} of {product.name} already exists "
                        f"with expiry {batch.expiry_date}"
                    )
                if not batch:
                    batch = Batch(
                        product_id=product.id,
                        batch_number=line.batch_number,
                        delivery_id=delivery.id,
                        initial_quantity=0,
                        remaining_quantity=0,
                        expiry_date=line.expiry_date,
                    )
                    db.add(batch)

                await post_movement(
                    db, batch, MovementType.DELIVERY_IN, line.quantity,
                    reference, actor, movement_date=data.delivery_date,
                    notes=f"Delivery {data.delivery_note_number}",
                )

    logger.info(
        f"Delivery {data.delivery_note_number} received: "
        f"{sum(len(i.batches) for i in data.items)} batch lines, "
        f"{sum(line.quantity for i in data.items for line in i.batches)} units"
    )
    return await get_delivery(db, delivery.id)


async def get_delivery(db: AsyncSession, delivery_id: int) -> Delivery:
    result = await db.execute(
        select(Delivery)
        .where(Delivery.id == delivery_id)
        .options(selectinload(Delivery.items))
        .execution_options(populate_existing=True)
    )
    delivery = result.scalar_one_or_none()
    if not delivery:
        raise NotFoundError("Delivery not found")
    return delivery


async def delivery_batch_lines(db: AsyncSession, delivery_id: int) -> Dict[int, List[Tuple[Batch, int]]]:
    """Batches received on a delivery with the quantity each line brought, keyed by product"""
    result = await db.execute(
        select(Batch, StockMovement.quantity)
        .join(StockMovement, StockMovement.batch_id == Batch.id)
        .where(
            StockMovement.reference_type == ReferenceType.DELIVERY,
            StockMovement.reference_id == delivery_id,
            StockMovement.movement_type == MovementType.DELIVERY_IN,
        )
        .order_by(StockMovement.id)
    )
    lines: Dict[int, List[Tuple[Batch, int]]] = {}
    for batch, quantity in result.all():
        lines.setdefault(batch.product_id, []).append((batch, quantity))
    return lines


async def list_deliveries(
    db: AsyncSession,
    skip: int = 0,
    limit: int = 100,
) -> Tuple[List[Delivery], int]:
    result = await db.execute(
        select(Delivery)
        .options(selectinload(Delivery.items))
        .order_by(Delivery.delivery_date.desc(), Delivery.id.desc())
        .offset(skip)
        .limit(limit)
    )
    total = await db.scalar(select(func.count(Delivery.id))) or 0
    return list(result.scalars().all()), total

