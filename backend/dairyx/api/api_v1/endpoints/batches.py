"""
Batch API
- batch list / detail
- movement history with running balance
- ledger balance check
"""
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dairyx.core.actor import Actor
from dairyx.core.deps import get_actor, get_db
from dairyx.models.batch import Batch
from dairyx.schemas.stock import (
    BalanceCheckResponse,
    BatchHistoryResponse,
    BatchListResponse,
    BatchResponse,
    MovementWithBalance,
    StockMovementResponse,
)
from dairyx.services import ledger

router = APIRouter()


def build_batch_response(batch: Batch, product_name: str = "") -> BatchResponse:
    return BatchResponse(
        id=batch.id,
        product_id=batch.product_id,
        product_name=product_name,
        batch_number=batch.batch_number,
        initial_quantity=batch.initial_quantity,
        remaining_quantity=batch.remaining_quantity,
        expiry_date=batch.expiry_date,
        delivery_id=batch.delivery_id,
        status=batch.status,
        created_at=batch.created_at,
    )


@router.get("/", response_model=BatchListResponse)
async def list_batches(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    product_id: Optional[int] = Query(None, description="Filter by product"),
    in_stock: Optional[bool] = Query(None, description="Only batches with stock left"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500)) -> Any:
    """Batches, earliest expiry first"""
    query = select(Batch).options(selectinload(Batch.product))
    count_query = select(func.count(Batch.id))

    if product_id:
        query = query.where(Batch.product_id == product_id)
        count_query = count_query.where(Batch.product_id == product_id)
    if in_stock:
        query = query.where(Batch.remaining_quantity > 0)
        count_query = count_query.where(Batch.remaining_quantity > 0)

    query = query.order_by(Batch.expiry_date.asc(), Batch.id.asc()).offset(skip).limit(limit)
    result = await db.execute(query)
    batches = result.scalars().all()
    total = await db.scalar(count_query) or 0

    return BatchListResponse(
        data=[build_batch_response(b, b.product.name if b.product else "") for b in batches],
        total=total,
    )


@router.get("/{batch_id}", response_model=BatchResponse)
async def get_batch(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    batch_id: int) -> Any:
    batch = await ledger.get_batch(db, batch_id)
    return build_batch_response(batch)


@router.get("/{batch_id}/movements", response_model=BatchHistoryResponse)
async def get_batch_movements(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    batch_id: int) -> Any:
    """Every movement of the batch with the balance after it"""
    history = await ledger.batch_movement_history(db, batch_id)
    return BatchHistoryResponse(
        batch=build_batch_response(history.batch),
        movements=[
            MovementWithBalance(
                **StockMovementResponse.model_validate(movement).model_dump(),
                running_balance=balance,
            )
            for movement, balance in history.entries
        ],
    )


@router.get("/{batch_id}/balance-check", response_model=BalanceCheckResponse)
async def check_batch_balance(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    batch_id: int) -> Any:
    check = await ledger.check_batch_balance(db, batch_id)
    return BalanceCheckResponse(
        batch_id=check.batch_id,
        initial_quantity=check.initial_quantity,
        remaining_quantity=check.remaining_quantity,
        intake_total=check.intake_total,
        ledger_total=check.ledger_total,
        is_balanced=check.is_balanced,
    )
