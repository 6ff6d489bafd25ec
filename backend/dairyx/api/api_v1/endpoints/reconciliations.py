"""
Daily reconciliation API
- start a day
- verify one truck's returns / discards
- finalize the day
"""
from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dairyx.core.actor import Actor
from dairyx.core.deps import get_actor, get_db
from dairyx.core.states import ReconciliationStatus
from dairyx.models.reconciliation import DailyReconciliation, ReconciliationItem
from dairyx.schemas.reconciliation import (
    ReconciliationItemResponse,
    ReconciliationLineResponse,
    ReconciliationListResponse,
    ReconciliationResponse,
    ReconciliationStart,
    ReconciliationSummary,
    VerifyTruckRequest,
)
from dairyx.services import reconciliation as engine

router = APIRouter()


def build_item_response(item: ReconciliationItem) -> ReconciliationItemResponse:
    return ReconciliationItemResponse(
        id=item.id,
        truck_id=item.truck_id,
        truck_number=item.truck.truck_number if item.truck else "",
        truck_load_id=item.truck_load_id,
        driver_id=item.driver_id,
        items_loaded=item.items_loaded,
        items_sold=item.items_sold,
        items_returned=item.items_returned,
        items_discarded=item.items_discarded,
        expected_return=item.expected_return,
        sales_amount=item.sales_amount,
        commission_earned=item.commission_earned,
        allowance_received=item.allowance_received,
        payments_collected=item.payments_collected,
        pending_payments=item.pending_payments,
        is_verified=item.is_verified,
        has_discrepancy=item.has_discrepancy,
        discrepancy_notes=item.discrepancy_notes,
        verified_by=item.verified_by,
        verified_at=item.verified_at,
        lines=[ReconciliationLineResponse.model_validate(line) for line in item.lines],
    )


def build_reconciliation_response(rec: DailyReconciliation) -> ReconciliationResponse:
    return ReconciliationResponse(
        id=rec.id,
        reconciliation_date=rec.reconciliation_date,
        status=rec.status,
        trucks_out=rec.trucks_out,
        trucks_verified=rec.trucks_verified,
        total_items_loaded=rec.total_items_loaded,
        total_items_sold=rec.total_items_sold,
        total_items_returned=rec.total_items_returned,
        total_items_discarded=rec.total_items_discarded,
        total_sales_amount=rec.total_sales_amount,
        total_commission_earned=rec.total_commission_earned,
        total_allowance_allocated=rec.total_allowance_allocated,
        total_payments_collected=rec.total_payments_collected,
        total_pending_payments=rec.total_pending_payments,
        net_profit=rec.net_profit,
        profit_status=rec.profit_status,
        started_by=rec.started_by,
        started_at=rec.started_at,
        finalized_by=rec.finalized_by,
        finalized_at=rec.finalized_at,
        notes=rec.notes,
        items=[build_item_response(i) for i in rec.items],
    )


@router.post("/", response_model=ReconciliationResponse, status_code=201)
async def start_reconciliation(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    start_in: ReconciliationStart) -> Any:
    rec = await engine.start_reconciliation(db, start_in.reconciliation_date, actor, notes=start_in.notes)
    return build_reconciliation_response(rec)


@router.get("/", response_model=ReconciliationListResponse)
async def list_reconciliations(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    status: Optional[ReconciliationStatus] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=200)) -> Any:
    rows, total = await engine.list_reconciliations(
        db, status=status, start_date=start_date, end_date=end_date, skip=skip, limit=limit,
    )
    return ReconciliationListResponse(
        data=[ReconciliationSummary.model_validate(r) for r in rows],
        total=total,
    )


@router.get("/{reconciliation_date}", response_model=ReconciliationResponse)
async def get_reconciliation(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    reconciliation_date: date) -> Any:
    rec = await engine.get_reconciliation(db, reconciliation_date)
    return build_reconciliation_response(rec)


@router.post("/{reconciliation_date}/trucks/{truck_id}/verify", response_model=ReconciliationResponse)
async def verify_truck(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    reconciliation_date: date,
    truck_id: int,
    verify_in: VerifyTruckRequest) -> Any:
    rec = await engine.verify_truck(db, reconciliation_date, truck_id, verify_in, actor)
    return build_reconciliation_response(rec)


@router.post("/{reconciliation_date}/finalize", response_model=ReconciliationResponse)
async def finalize_reconciliation(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    reconciliation_date: date) -> Any:
    rec = await engine.finalize_reconciliation(db, reconciliation_date, actor)
    return build_reconciliation_response(rec)
