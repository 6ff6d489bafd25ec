"""
Daily reconciliation engine

start    - snapshot every truck loaded that day (stock and money per truck)
verify   - record what each truck brought back or discarded; a gap between
           expected and declared returns is flagged, never blocked
finalize - once every truck is verified: put returned stock back on the
           batches, close the truck loads, roll totals up, compute net profit

Finalize is terminal. Totals on the reconciliation are always recomputed
from its items, never accumulated.
"""
import logging
from collections import OrderedDict
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dairyx.core.actor import Actor, require_manager
from dairyx.core.config import settings
from dairyx.core.errors import ConflictError, NotFoundError, ValidationFailed
from dairyx.core.states import (
    LineKind, MovementType, ReconciliationStatus, ReferenceType, TruckLoadStatus, ensure_transition,
)
from dairyx.db.session import atomic
from dairyx.models.batch import Batch
from dairyx.models.catalog import Product, Truck
from dairyx.models.reconciliation import DailyReconciliation, ReconciliationItem, ReconciliationLine
from dairyx.models.sale import Sale, SaleItem
from dairyx.models.truck_load import TruckLoad, TruckLoadItem
from dairyx.schemas.reconciliation import VerifyTruckRequest
from dairyx.services.allowances import allowance_for_truck
from dairyx.services.ledger import Reference, post_movement

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


# === reads ===

async def get_reconciliation(db: AsyncSession, reconciliation_date: date) -> DailyReconciliation:
    result = await db.execute(
        select(DailyReconciliation)
        .where(DailyReconciliation.reconciliation_date == reconciliation_date)
        .options(
            selectinload(DailyReconciliation.items).selectinload(ReconciliationItem.lines),
            selectinload(DailyReconciliation.items).selectinload(ReconciliationItem.truck),
        )
        .execution_options(populate_existing=True)
    )
    reconciliation = result.scalar_one_or_none()
    if not reconciliation:
        raise NotFoundError(f"No reconciliation found for {reconciliation_date}")
    return reconciliation


async def list_reconciliations(
    db: AsyncSession,
    status: Optional[ReconciliationStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = 0,
    limit: int = 100,
) -> Tuple[List[DailyReconciliation], int]:
    filters = []
    if status:
        filters.append(DailyReconciliation.status == ReconciliationStatus(status))
    if start_date:
        filters.append(DailyReconciliation.reconciliation_date >= start_date)
    if end_date:
        filters.append(DailyReconciliation.reconciliation_date <= end_date)

    result = await db.execute(
        select(DailyReconciliation)
        .where(*filters)
        .order_by(DailyReconciliation.reconciliation_date.desc())
        .offset(skip)
        .limit(limit)
    )
    total = await db.scalar(select(func.count(DailyReconciliation.id)).where(*filters)) or 0
    return list(result.scalars().all()), total


async def reconciliation_started(db: AsyncSession, day: date) -> bool:
    """Once a day is being reconciled its truck snapshot is fixed"""
    existing = await db.scalar(
        select(DailyReconciliation.id).where(DailyReconciliation.reconciliation_date == day)
    )
    return existing is not None


async def _get_for_update(db: AsyncSession, reconciliation_date: date) -> DailyReconciliation:
    reconciliation = await db.scalar(
        select(DailyReconciliation)
        .where(DailyReconciliation.reconciliation_date == reconciliation_date)
        .execution_options(populate_existing=True)
    )
    if not reconciliation:
        raise NotFoundError(f"No reconciliation found for {reconciliation_date}")
    return reconciliation


# === start ===

async def _truck_day_figures(db: AsyncSession, load: TruckLoad) -> Dict[str, object]:
    """Stock and money for one truck on its load date"""
    items_loaded = await db.scalar(
        select(func.coalesce(func.sum(TruckLoadItem.quantity_loaded), 0))
        .where(TruckLoadItem.truck_load_id == load.id)
    )
    items_sold, commission = (await db.execute(
        select(
            func.coalesce(func.sum(SaleItem.quantity), 0),
            func.coalesce(func.sum(SaleItem.quantity * Product.commission_per_unit), 0),
        )
        .select_from(SaleItem)
        .join(Sale, Sale.id == SaleItem.sale_id)
        .join(Product, Product.id == SaleItem.product_id)
        .where(Sale.truck_id == load.truck_id, Sale.sale_date == load.load_date)
    )).one()
    sales_amount, payments = (await db.execute(
        select(
            func.coalesce(func.sum(Sale.total_amount), 0),
            func.coalesce(func.sum(Sale.amount_paid), 0),
        )
        .where(Sale.truck_id == load.truck_id, Sale.sale_date == load.load_date)
    )).one()

    sales_amount = _money(sales_amount)
    payments = _money(payments)
    return {
        "items_loaded": int(items_loaded or 0),
        "items_sold": int(items_sold or 0),
        "sales_amount": sales_amount,
        "commission_earned": _money(commission),
        "payments_collected": payments,
        "pending_payments": sales_amount - payments,
        "allowance_received": await allowance_for_truck(db, load.load_date, load.truck_id),
    }


async def start_reconciliation(
    db: AsyncSession,
    reconciliation_date: date,
    actor: Actor,
    notes: Optional[str] = None,
) -> DailyReconciliation:
    require_manager(actor, "start reconciliations")

    async with atomic(db):
        existing = await db.scalar(
            select(DailyReconciliation.id).where(DailyReconciliation.reconciliation_date == reconciliation_date)
        )
        if existing:
            raise ConflictError(f"Reconciliation already exists for {reconciliation_date}")

        result = await db.execute(
            select(TruckLoad)
            .where(TruckLoad.load_date == reconciliation_date)
            .order_by(TruckLoad.truck_id)
        )
        loads = result.scalars().all()

        reconciliation = DailyReconciliation(
            reconciliation_date=reconciliation_date,
            status=ReconciliationStatus.IN_PROGRESS,
            trucks_out=len({load.truck_id for load in loads}),
            trucks_verified=0,
            started_by=actor.user_id,
            notes=notes,
        )
        db.add(reconciliation)
        # a concurrent start for the same date fails here on the unique date
        await db.flush()

        for load in loads:
            truck = await db.get(Truck, load.truck_id)
            figures = await _truck_day_figures(db, load)
            db.add(ReconciliationItem(
                reconciliation_id=reconciliation.id,
                truck_id=load.truck_id,
                truck_load_id=load.id,
                driver_id=truck.driver_id or load.loaded_by,
                items_returned=0,
                items_discarded=0,
                is_verified=False,
                has_discrepancy=False,
                **figures,
            ))
        await db.flush()

    logger.info(f"Reconciliation started for {reconciliation_date}: {reconciliation.trucks_out} trucks out")
    return await get_reconciliation(db, reconciliation_date)


# === verify ===

async def _loaded_products(db: AsyncSession, truck_load_id: int) -> set:
    result = await db.execute(
        select(TruckLoadItem.product_id).where(TruckLoadItem.truck_load_id == truck_load_id).distinct()
    )
    return set(result.scalars().all())


async def verify_truck(
    db: AsyncSession,
    reconciliation_date: date,
    truck_id: int,
    data: VerifyTruckRequest,
    actor: Actor,
) -> DailyReconciliation:
    """
    Record a truck's declared returns and discards.

    expected = loaded - sold; a truck has a discrepancy when
    |expected - (returned + discarded)| exceeds the tolerance. Verifying
    again while the day is open replaces the earlier declaration.
    """
    require_manager(actor, "verify trucks")
    for line in list(data.items_returned) + list(data.items_discarded):
        if line.quantity < 0:
            raise ValidationFailed("Quantities cannot be negative")
    for line in data.items_discarded:
        if not line.reason or not line.reason.strip():
            raise ValidationFailed("Discarded items need a reason")

    async with atomic(db):
        reconciliation = await _get_for_update(db, reconciliation_date)
        if reconciliation.status != ReconciliationStatus.IN_PROGRESS:
            raise ConflictError("Reconciliation is not in progress")

        item = await db.scalar(
            select(ReconciliationItem)
            .where(
                ReconciliationItem.reconciliation_id == reconciliation.id,
                ReconciliationItem.truck_id == truck_id,
            )
            .execution_options(populate_existing=True)
        )
        if not item:
            raise NotFoundError("Truck not found in this reconciliation")

        on_truck = await _loaded_products(db, item.truck_load_id)
        for line in list(data.items_returned) + list(data.items_discarded):
            if line.product_id not in on_truck:
                raise ValidationFailed(f"Product {line.product_id} was not loaded on this truck")

        total_returned = sum(line.quantity for line in data.items_returned)
        total_discarded = sum(line.quantity for line in data.items_discarded)
        expected = item.items_loaded - item.items_sold
        gap = abs(Decimal(expected - (total_returned + total_discarded)))
        has_discrepancy = gap > settings.DISCREPANCY_TOLERANCE

        result = await db.execute(select(ReconciliationLine).where(ReconciliationLine.item_id == item.id))
        for old_line in result.scalars().all():
            await db.delete(old_line)
        for line in data.items_returned:
            db.add(ReconciliationLine(item_id=item.id, kind=LineKind.RETURNED,
                                      product_id=line.product_id, quantity=line.quantity))
        for line in data.items_discarded:
            db.add(ReconciliationLine(item_id=item.id, kind=LineKind.DISCARDED,
                                      product_id=line.product_id, quantity=line.quantity,
                                      reason=line.reason.strip()))

        item.items_returned = total_returned
        item.items_discarded = total_discarded
        item.has_discrepancy = has_discrepancy
        item.discrepancy_notes = data.notes
        if has_discrepancy and not data.notes:
            item.discrepancy_notes = (
                f"Expected {expected} back, declared {total_returned} returned + {total_discarded} discarded"
            )
        item.is_verified = True
        item.verified_by = actor.user_id
        item.verified_at = datetime.utcnow()
        await db.flush()

        reconciliation.trucks_verified = await db.scalar(
            select(func.count(ReconciliationItem.id)).where(
                ReconciliationItem.reconciliation_id == reconciliation.id,
                ReconciliationItem.is_verified.is_(True),
            )
        )
        await db.flush()

    if has_discrepancy:
        logger.warning(
            f"Truck {truck_id} on {reconciliation_date}: expected {expected} back, "
            f"got {total_returned} returned + {total_discarded} discarded"
        )
    else:
        logger.info(f"Truck {truck_id} verified for {reconciliation_date}")
    return await get_reconciliation(db, reconciliation_date)


# === finalize ===

async def _return_to_batches(
    db: AsyncSession,
    reconciliation: DailyReconciliation,
    load: TruckLoad,
    returned: Dict[int, int],
    actor: Actor,
) -> int:
    """Put declared returns back on the load's unsold batches, earliest expiry first"""
    reference = Reference(ReferenceType.RECONCILIATION, reconciliation.id)
    restored = 0
    for product_id, quantity in returned.items():
        result = await db.execute(
            select(TruckLoadItem)
            .join(Batch, Batch.id == TruckLoadItem.batch_id)
            .where(TruckLoadItem.truck_load_id == load.id, TruckLoadItem.product_id == product_id)
            .order_by(Batch.expiry_date.asc(), Batch.created_at.asc(), Batch.id.asc())
            .execution_options(populate_existing=True)
        )
        remaining = quantity
        for load_item in result.scalars().all():
            take = min(load_item.quantity_available, remaining)
            if take <= 0:
                continue
            load_item.quantity_returned += take
            batch = await db.get(Batch, load_item.batch_id)
            await post_movement(
                db, batch, MovementType.TRUCK_RETURN_IN, take, reference, actor,
                movement_date=reconciliation.reconciliation_date,
                notes=f"Returned at reconciliation {reconciliation.reconciliation_date}",
            )
            restored += take
            remaining -= take
            if remaining == 0:
                break
        if remaining > 0:
            logger.warning(
                f"Truck load {load.id}: {remaining} returned units of product {product_id} "
                f"exceed what was left unsold and were not restored"
            )
    return restored


def _roll_up(reconciliation: DailyReconciliation, items: List[ReconciliationItem]) -> None:
    reconciliation.total_items_loaded = sum(i.items_loaded for i in items)
    reconciliation.total_items_sold = sum(i.items_sold for i in items)
    reconciliation.total_items_returned = sum(i.items_returned for i in items)
    reconciliation.total_items_discarded = sum(i.items_discarded for i in items)
    reconciliation.total_sales_amount = sum((_money(i.sales_amount) for i in items), Decimal("0.00"))
    reconciliation.total_commission_earned = sum((_money(i.commission_earned) for i in items), Decimal("0.00"))
    reconciliation.total_allowance_allocated = sum((_money(i.allowance_received) for i in items), Decimal("0.00"))
    reconciliation.total_payments_collected = sum((_money(i.payments_collected) for i in items), Decimal("0.00"))
    reconciliation.total_pending_payments = sum((_money(i.pending_payments) for i in items), Decimal("0.00"))
    reconciliation.net_profit = reconciliation.total_commission_earned - reconciliation.total_allowance_allocated


async def finalize_reconciliation(db: AsyncSession, reconciliation_date: date, actor: Actor) -> DailyReconciliation:
    require_manager(actor, "finalize reconciliations")

    async with atomic(db):
        reconciliation = await _get_for_update(db, reconciliation_date)
        if reconciliation.status == ReconciliationStatus.FINALIZED:
            raise ConflictError("Reconciliation already finalized")
        ensure_transition(reconciliation.status, ReconciliationStatus.FINALIZED, "Reconciliation")
        if reconciliation.trucks_verified < reconciliation.trucks_out:
            raise ValidationFailed(
                f"Not all trucks verified. {reconciliation.trucks_verified}/{reconciliation.trucks_out} trucks verified"
            )

        # claim the transition first; a concurrent finalize matches no row
        claimed = await db.execute(
            update(DailyReconciliation)
            .where(
                DailyReconciliation.id == reconciliation.id,
                DailyReconciliation.status == ReconciliationStatus.IN_PROGRESS,
            )
            .values(status=ReconciliationStatus.FINALIZED)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            raise ConflictError("Reconciliation already finalized")

        result = await db.execute(
            select(ReconciliationItem)
            .where(ReconciliationItem.reconciliation_id == reconciliation.id)
            .options(selectinload(ReconciliationItem.lines))
            .order_by(ReconciliationItem.id)
            .execution_options(populate_existing=True)
        )
        items = list(result.scalars().all())

        for item in items:
            load = await db.get(TruckLoad, item.truck_load_id, populate_existing=True)
            if load.status != TruckLoadStatus.LOADED:
                # returns were already booked by a truck-level reconcile
                continue
            if item.items_returned > 0:
                returned: Dict[int, int] = OrderedDict()
                for line in item.lines:
                    if line.kind == LineKind.RETURNED and line.quantity > 0:
                        returned[line.product_id] = returned.get(line.product_id, 0) + line.quantity
                restored = await _return_to_batches(db, reconciliation, load, returned, actor)
                logger.info(f"Truck {item.truck_id}: {restored} units returned to stock")
            ensure_transition(load.status, TruckLoadStatus.RECONCILED, "Truck load")
            load.status = TruckLoadStatus.RECONCILED
            await db.flush()

        _roll_up(reconciliation, items)
        reconciliation.status = ReconciliationStatus.FINALIZED
        reconciliation.finalized_by = actor.user_id
        reconciliation.finalized_at = datetime.utcnow()
        await db.flush()

    logger.info(
        f"Reconciliation {reconciliation_date} finalized: commission {reconciliation.total_commission_earned}, "
        f"allowance {reconciliation.total_allowance_allocated}, net {reconciliation.net_profit}"
    )
    return await get_reconciliation(db, reconciliation_date)
