"""
Sales to shops
- truck sale: drawn from the truck load's unsold stock, earliest expiry first,
  possibly across several load items; raises quantity_sold on each item.
  Batches are not touched: that stock already left them at loading.
  Truck sales are dated on the load date and stop once that day's
  reconciliation has started.
- depot sale (no truck load, managers only): FIFO straight from batches,
  posting sale_out through the ledger.
- payments: amount_paid only grows and never exceeds the total.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dairyx.core.actor import Actor, require_manager
from dairyx.core.errors import ConflictError, ForbiddenError, InsufficientStock, NotFoundError, ValidationFailed
from dairyx.core.states import MovementType, PaymentStatus, ReferenceType, TruckLoadStatus
from dairyx.db.session import atomic
from dairyx.models.batch import Batch
from dairyx.models.catalog import Product, Shop, Truck
from dairyx.models.sale import Sale, SaleItem
from dairyx.models.truck_load import TruckLoad, TruckLoadItem
from dairyx.schemas.sale import SaleCreate
from dairyx.services.allocator import allocate_fifo
from dairyx.services.ledger import Reference
from dairyx.services.reconciliation import reconciliation_started

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT)


async def draw_from_truck(
    db: AsyncSession,
    truck_load_id: int,
    product: Product,
    quantity: int,
) -> List[Tuple[TruckLoadItem, int]]:
    """
    Take `quantity` units of a product off a truck load, earliest expiry first.

    Each item is bumped with a conditional UPDATE so sold + returned can
    never pass loaded, even against a concurrent sale on the same truck.
    """
    available_expr = (
        TruckLoadItem.quantity_loaded - TruckLoadItem.quantity_sold - TruckLoadItem.quantity_returned
    )
    result = await db.execute(
        select(TruckLoadItem)
        .join(Batch, Batch.id == TruckLoadItem.batch_id)
        .where(
            TruckLoadItem.truck_load_id == truck_load_id,
            TruckLoadItem.product_id == product.id,
            available_expr > 0,
        )
        .order_by(Batch.expiry_date.asc(), Batch.created_at.asc(), Batch.id.asc())
        .execution_options(populate_existing=True)
    )
    items = result.scalars().all()

    available = sum(i.quantity_available for i in items)
    if available < quantity:
        raise InsufficientStock(
            f"Insufficient quantity for product '{product.name}' in truck load. "
            f"Need {quantity}, available {available}",
            extra={"product_id": product.id, "available": available, "requested": quantity},
        )

    draws = []
    remaining = quantity
    for item in items:
        if remaining <= 0:
            break
        take = min(item.quantity_available, remaining)
        updated = await db.execute(
            update(TruckLoadItem)
            .where(TruckLoadItem.id == item.id, available_expr >= take)
            .values(quantity_sold=TruckLoadItem.quantity_sold + take)
            .execution_options(synchronize_session=False)
        )
        if updated.rowcount == 0:
            raise InsufficientStock(f"Truck stock for product '{product.name}' changed, please retry")
        await db.refresh(item)
        draws.append((item, take))
        remaining -= take
    return draws


async def create_sale(db: AsyncSession, data: SaleCreate, actor: Actor) -> Sale:
    if not data.items:
        raise ValidationFailed("Sale must contain at least one item")
    for item in data.items:
        if item.quantity <= 0:
            raise ValidationFailed("Quantity must be greater than 0")
        if item.unit_price is not None and item.unit_price < 0:
            raise ValidationFailed("Unit price cannot be negative")
    if data.amount_paid < 0:
        raise ValidationFailed("Amount paid cannot be negative")

    async with atomic(db):
        truck_id = None
        if data.truck_load_id is not None:
            load = await db.get(TruckLoad, data.truck_load_id, populate_existing=True)
            if not load:
                raise NotFoundError("Truck load not found")
            truck = await db.get(Truck, load.truck_id)
            if actor.is_driver and truck.driver_id != actor.user_id:
                raise ForbiddenError("You can only create sales for your own truck")
            if load.status != TruckLoadStatus.LOADED:
                raise ConflictError("Truck load is already reconciled")
            if data.sale_date != load.load_date:
                raise ValidationFailed(f"Truck sales must be dated on the load date {load.load_date}")
            if await reconciliation_started(db, load.load_date):
                raise ConflictError(f"Reconciliation has already started for {load.load_date}")
            truck_id = truck.id
        else:
            require_manager(actor, "record depot sales")

        shop = await db.get(Shop, data.shop_id)
        if not shop:
            raise NotFoundError("Shop not found")

        sale = Sale(
            shop_id=shop.id,
            truck_id=truck_id,
            truck_load_id=data.truck_load_id,
            user_id=actor.user_id,
            sale_date=data.sale_date,
            total_amount=Decimal("0.00"),
            amount_paid=Decimal("0.00"),
            notes=data.notes,
        )
        db.add(sale)
        await db.flush()

        total = Decimal("0.00")
        for item in data.items:
            product = await db.get(Product, item.product_id)
            if not product:
                raise NotFoundError(f"Product {item.product_id} not found")
            unit_price = _money(item.unit_price if item.unit_price is not None else product.current_wholesale_price)
            rate = _money(product.commission_per_unit)

            if data.truck_load_id is not None:
                draws = [
                    (load_item.batch_id, load_item.id, qty)
                    for load_item, qty in await draw_from_truck(db, data.truck_load_id, product, item.quantity)
                ]
            else:
                allocations = await allocate_fifo(
                    db, product.id, item.quantity,
                    movement_type=MovementType.SALE_OUT,
                    reference=Reference(ReferenceType.SALE, sale.id),
                    actor=actor, movement_date=data.sale_date,
                )
                draws = [(a.batch_id, None, a.quantity) for a in allocations]

            for batch_id, load_item_id, qty in draws:
                db.add(SaleItem(
                    sale_id=sale.id,
                    product_id=product.id,
                    batch_id=batch_id,
                    truck_load_item_id=load_item_id,
                    quantity=qty,
                    unit_price=unit_price,
                    commission_earned=_money(rate * qty),
                ))
            total += unit_price * item.quantity

        total = _money(total)
        amount_paid = _money(data.amount_paid)
        if amount_paid > total:
            raise ValidationFailed("Amount paid cannot exceed total amount")
        sale.total_amount = total
        sale.amount_paid = amount_paid
        await db.flush()

    logger.info(
        f"Sale {sale.id} to shop {shop.name}: total {total}, paid {amount_paid} "
        f"({'truck load ' + str(data.truck_load_id) if data.truck_load_id else 'depot'})"
    )
    return await get_sale(db, sale.id)


async def add_payment(db: AsyncSession, sale_id: int, additional_payment: Decimal, actor: Actor) -> Sale:
    if additional_payment <= 0:
        raise ValidationFailed("Additional payment must be greater than 0")

    async with atomic(db):
        sale = await db.get(Sale, sale_id, populate_existing=True)
        if not sale:
            raise NotFoundError("Sale not found")
        if actor.is_driver and sale.user_id != actor.user_id:
            raise ForbiddenError("You can only update payments for your own sales")

        new_amount_paid = _money(sale.amount_paid + Decimal(str(additional_payment)))
        if new_amount_paid > sale.total_amount:
            raise ValidationFailed(
                f"Total payment ({new_amount_paid}) cannot exceed sale amount ({sale.total_amount})"
            )
        sale.amount_paid = new_amount_paid
        await db.flush()

    logger.info(f"Payment of {additional_payment} recorded on sale {sale_id}, now {sale.payment_status.value}")
    return await get_sale(db, sale_id)


async def get_sale(db: AsyncSession, sale_id: int) -> Sale:
    result = await db.execute(
        select(Sale)
        .where(Sale.id == sale_id)
        .options(selectinload(Sale.items))
        .execution_options(populate_existing=True)
    )
    sale = result.scalar_one_or_none()
    if not sale:
        raise NotFoundError("Sale not found")
    return sale


async def list_sales(
    db: AsyncSession,
    actor: Actor,
    shop_id: Optional[int] = None,
    truck_id: Optional[int] = None,
    sale_date: Optional[date] = None,
    payment_status: Optional[PaymentStatus] = None,
    skip: int = 0,
    limit: int = 100,
) -> Tuple[List[Sale], int]:
    """Drivers only see the sales they recorded"""
    filters = []
    if actor.is_driver:
        filters.append(Sale.user_id == actor.user_id)
    if shop_id:
        filters.append(Sale.shop_id == shop_id)
    if truck_id:
        filters.append(Sale.truck_id == truck_id)
    if sale_date:
        filters.append(Sale.sale_date == sale_date)
    if payment_status == PaymentStatus.PAID:
        filters.append(Sale.amount_paid >= Sale.total_amount)
    elif payment_status == PaymentStatus.PENDING:
        filters.append(Sale.amount_paid < Sale.total_amount)

    result = await db.execute(
        select(Sale)
        .where(*filters)
        .options(selectinload(Sale.items))
        .order_by(Sale.sale_date.desc(), Sale.id.desc())
        .offset(skip)
        .limit(limit)
    )
    total = await db.scalar(select(func.count(Sale.id)).where(*filters)) or 0
    return list(result.scalars().all()), total
