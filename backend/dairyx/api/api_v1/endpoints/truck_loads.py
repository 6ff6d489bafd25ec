"""
Truck load API
- load a truck (manual batch or FIFO lines)
- reconcile returns
- delete a load without sales
"""
from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dairyx.core.actor import Actor
from dairyx.core.deps import get_actor, get_db
from dairyx.core.states import TruckLoadStatus
from dairyx.models.truck_load import TruckLoad
from dairyx.schemas.truck_load import (
    TruckLoadCreate,
    TruckLoadItemResponse,
    TruckLoadListResponse,
    TruckLoadReconcile,
    TruckLoadResponse,
    TruckLoadSummary,
)
from dairyx.services import truck_loads

router = APIRouter()


def build_truck_load_response(load: TruckLoad) -> TruckLoadResponse:
    items = [
        TruckLoadItemResponse(
            id=item.id,
            batch_id=item.batch_id,
            batch_number=item.batch.batch_number if item.batch else "",
            product_id=item.product_id,
            product_name=item.product.name if item.product else "",
            expiry_date=item.batch.expiry_date if item.batch else None,
            quantity_loaded=item.quantity_loaded,
            quantity_sold=item.quantity_sold,
            quantity_returned=item.quantity_returned,
            quantity_lost_damaged=item.lost_damaged(load.status),
        )
        for item in load.items
    ]
    summary = TruckLoadSummary(
        total_loaded=sum(i.quantity_loaded for i in items),
        total_sold=sum(i.quantity_sold for i in items),
        total_returned=sum(i.quantity_returned for i in items),
        total_lost_damaged=sum(i.quantity_lost_damaged for i in items),
        product_count=len({i.product_id for i in items}),
    )
    return TruckLoadResponse(
        id=load.id,
        truck_id=load.truck_id,
        truck_number=load.truck.truck_number if load.truck else "",
        load_date=load.load_date,
        loaded_by=load.loaded_by,
        status=load.status,
        notes=load.notes,
        created_at=load.created_at,
        items=items,
        summary=summary,
    )


@router.post("/", response_model=TruckLoadResponse, status_code=201)
async def create_truck_load(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    load_in: TruckLoadCreate) -> Any:
    load = await truck_loads.create_truck_load(db, load_in, actor)
    return build_truck_load_response(load)


@router.get("/", response_model=TruckLoadListResponse)
async def list_truck_loads(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    truck_id: Optional[int] = Query(None),
    load_date: Optional[date] = Query(None),
    status: Optional[TruckLoadStatus] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=200)) -> Any:
    loads, total = await truck_loads.list_truck_loads(
        db, truck_id=truck_id, load_date=load_date, status=status, skip=skip, limit=limit,
    )
    return TruckLoadListResponse(data=[build_truck_load_response(l) for l in loads], total=total)


@router.get("/{truck_load_id}", response_model=TruckLoadResponse)
async def get_truck_load(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    truck_load_id: int) -> Any:
    load = await truck_loads.get_truck_load(db, truck_load_id)
    return build_truck_load_response(load)


@router.post("/{truck_load_id}/reconcile", response_model=TruckLoadResponse)
async def reconcile_truck_load(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    truck_load_id: int,
    reconcile_in: TruckLoadReconcile) -> Any:
    load = await truck_loads.reconcile_truck_load(
        db, truck_load_id, reconcile_in.items, actor, notes=reconcile_in.notes,
    )
    return build_truck_load_response(load)


@router.delete("/{truck_load_id}")
async def delete_truck_load(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    truck_load_id: int) -> Any:
    await truck_loads.delete_truck_load(db, truck_load_id, actor)
    return {"message": "Truck load deleted"}
