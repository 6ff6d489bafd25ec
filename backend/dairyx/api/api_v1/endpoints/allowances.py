"""
Transport allowance API
"""
from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dairyx.core.actor import Actor
from dairyx.core.deps import get_actor, get_db
from dairyx.core.states import AllowanceStatus
from dairyx.models.allowance import TransportAllowance
from dairyx.schemas.allowance import (
    AllocateRequest,
    AllocationUpdate,
    AllowanceCreate,
    AllowanceListResponse,
    AllowanceResponse,
)
from dairyx.services import allowances

router = APIRouter()


def build_allowance_response(allowance: TransportAllowance) -> AllowanceResponse:
    return AllowanceResponse.model_validate(allowance)


@router.post("/", response_model=AllowanceResponse, status_code=201)
async def create_allowance(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    allowance_in: AllowanceCreate) -> Any:
    allowance = await allowances.create_allowance(db, allowance_in, actor)
    return build_allowance_response(allowance)


@router.get("/", response_model=AllowanceListResponse)
async def list_allowances(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    status: Optional[AllowanceStatus] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=200)) -> Any:
    rows, total = await allowances.list_allowances(
        db, status=status, start_date=start_date, end_date=end_date, skip=skip, limit=limit,
    )
    return AllowanceListResponse(data=[build_allowance_response(a) for a in rows], total=total)


@router.get("/{allowance_id}", response_model=AllowanceResponse)
async def get_allowance(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    allowance_id: int) -> Any:
    allowance = await allowances.get_allowance(db, allowance_id)
    return build_allowance_response(allowance)


@router.post("/{allowance_id}/allocations", response_model=AllowanceResponse)
async def allocate_to_trucks(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    allowance_id: int,
    allocate_in: AllocateRequest) -> Any:
    allowance = await allowances.allocate_to_trucks(db, allowance_id, allocate_in.allocations, actor)
    return build_allowance_response(allowance)


@router.put("/{allowance_id}/allocations/{truck_id}", response_model=AllowanceResponse)
async def update_truck_allocation(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    allowance_id: int,
    truck_id: int,
    allocation_in: AllocationUpdate) -> Any:
    allowance = await allowances.update_truck_allocation(db, allowance_id, truck_id, allocation_in, actor)
    return build_allowance_response(allowance)


@router.post("/{allowance_id}/finalize", response_model=AllowanceResponse)
async def finalize_allowance(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    allowance_id: int) -> Any:
    allowance = await allowances.finalize_allowance(db, allowance_id, actor)
    return build_allowance_response(allowance)


@router.delete("/{allowance_id}")
async def delete_allowance(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    allowance_id: int) -> Any:
    await allowances.delete_allowance(db, allowance_id, actor)
    return {"message": "Allowance deleted"}
