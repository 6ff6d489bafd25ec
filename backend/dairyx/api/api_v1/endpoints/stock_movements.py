"""
Stock movement API
- daily summary by product and movement type
- movements of one product
- manual adjustments and expiry write-offs
"""
from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dairyx.core.actor import Actor
from dairyx.core.deps import get_actor, get_db
from dairyx.core.states import MovementType
from dairyx.schemas.stock import (
    DailyMovementSummary,
    MovementSummaryItem,
    StockAdjustmentCreate,
    StockMovementListResponse,
    StockMovementResponse,
)
from dairyx.services import ledger

router = APIRouter()


@router.get("/daily/{summary_date}", response_model=DailyMovementSummary)
async def get_daily_summary(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    summary_date: date) -> Any:
    rows = await ledger.daily_movement_summary(db, summary_date)
    return DailyMovementSummary(
        summary_date=summary_date,
        movements=[MovementSummaryItem.model_validate(row) for row in rows],
    )


@router.get("/product/{product_id}", response_model=StockMovementListResponse)
async def get_product_movements(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    product_id: int,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    movement_type: Optional[MovementType] = Query(None),
    limit: int = Query(200, ge=1, le=1000)) -> Any:
    movements = await ledger.product_movements(
        db, product_id, start_date=start_date, end_date=end_date,
        movement_type=movement_type, limit=limit,
    )
    return StockMovementListResponse(
        data=[StockMovementResponse.model_validate(m) for m in movements],
        total=len(movements),
    )


@router.post("/adjustments", response_model=StockMovementResponse, status_code=201)
async def create_adjustment(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    adjustment_in: StockAdjustmentCreate) -> Any:
    """Manual correction (manager only)"""
    movement = await ledger.adjust_stock(
        db,
        batch_id=adjustment_in.batch_id,
        product_id=adjustment_in.product_id,
        movement_type=adjustment_in.movement_type,
        quantity=adjustment_in.quantity,
        reason=adjustment_in.reason,
        notes=adjustment_in.notes,
        movement_date=adjustment_in.movement_date,
        actor=actor,
    )
    return StockMovementResponse.model_validate(movement)
