"""
Sales API
"""
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dairyx.core.actor import Actor
from dairyx.core.deps import get_actor, get_db
from dairyx.core.errors import ForbiddenError
from dairyx.core.states import PaymentStatus
from dairyx.models.sale import Sale
from dairyx.schemas.sale import (
    PaymentUpdate,
    SaleCreate,
    SaleItemResponse,
    SaleListResponse,
    SaleResponse,
)
from dairyx.services import sales

router = APIRouter()


def build_sale_response(sale: Sale) -> SaleResponse:
    items = [SaleItemResponse.model_validate(i) for i in sale.items]
    return SaleResponse(
        id=sale.id,
        shop_id=sale.shop_id,
        truck_id=sale.truck_id,
        truck_load_id=sale.truck_load_id,
        user_id=sale.user_id,
        sale_date=sale.sale_date,
        total_amount=sale.total_amount,
        amount_paid=sale.amount_paid,
        balance_due=sale.balance_due,
        payment_status=sale.payment_status,
        notes=sale.notes,
        created_at=sale.created_at,
        items=items,
        total_items=sum(i.quantity for i in items),
        total_commission=sum((i.commission_earned for i in items), Decimal("0.00")),
    )


@router.post("/", response_model=SaleResponse, status_code=201)
async def create_sale(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    sale_in: SaleCreate) -> Any:
    sale = await sales.create_sale(db, sale_in, actor)
    return build_sale_response(sale)


@router.get("/", response_model=SaleListResponse)
async def list_sales(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    shop_id: Optional[int] = Query(None),
    truck_id: Optional[int] = Query(None),
    sale_date: Optional[date] = Query(None),
    payment_status: Optional[PaymentStatus] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=200)) -> Any:
    rows, total = await sales.list_sales(
        db, actor, shop_id=shop_id, truck_id=truck_id, sale_date=sale_date,
        payment_status=payment_status, skip=skip, limit=limit,
    )
    return SaleListResponse(data=[build_sale_response(s) for s in rows], total=total)


@router.get("/{sale_id}", response_model=SaleResponse)
async def get_sale(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    sale_id: int) -> Any:
    sale = await sales.get_sale(db, sale_id)
    if actor.is_driver and sale.user_id != actor.user_id:
        raise ForbiddenError("You can only view your own sales")
    return build_sale_response(sale)


@router.post("/{sale_id}/payments", response_model=SaleResponse)
async def add_payment(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    sale_id: int,
    payment_in: PaymentUpdate) -> Any:
    sale = await sales.add_payment(db, sale_id, payment_in.additional_payment, actor)
    return build_sale_response(sale)
