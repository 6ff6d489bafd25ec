"""
Delivery API
"""
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dairyx.core.actor import Actor
from dairyx.core.deps import get_actor, get_db
from dairyx.models.batch import Delivery
from dairyx.schemas.delivery import (
    DeliveryBatchResponse,
    DeliveryCreate,
    DeliveryItemResponse,
    DeliveryResponse,
)
from dairyx.services import deliveries

router = APIRouter()


async def build_delivery_response(db: AsyncSession, delivery: Delivery) -> DeliveryResponse:
    lines = await deliveries.delivery_batch_lines(db, delivery.id)
    items = []
    total_quantity = 0
    total_value = 0
    for item in delivery.items:
        batches = [
            DeliveryBatchResponse(
                batch_id=batch.id,
                batch_number=batch.batch_number,
                quantity_received=quantity,
                expiry_date=batch.expiry_date,
            )
            for batch, quantity in lines.get(item.product_id, [])
        ]
        received = sum(b.quantity_received for b in batches)
        total_quantity += received
        total_value += item.unit_price * received
        items.append(DeliveryItemResponse(
            id=item.id,
            product_id=item.product_id,
            unit_price=item.unit_price,
            batches=batches,
        ))
    return DeliveryResponse(
        id=delivery.id,
        delivery_date=delivery.delivery_date,
        delivery_note_number=delivery.delivery_note_number,
        received_by=delivery.received_by,
        notes=delivery.notes,
        created_at=delivery.created_at,
        items=items,
        total_quantity=total_quantity,
        total_value=total_value,
    )


@router.post("/", response_model=DeliveryResponse, status_code=201)
async def create_delivery(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    delivery_in: DeliveryCreate) -> Any:
    """Receive a delivery and book its batches (manager only)"""
    delivery = await deliveries.receive_delivery(db, delivery_in, actor)
    return await build_delivery_response(db, delivery)


@router.get("/")
async def list_deliveries(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=200)) -> Any:
    rows, total = await deliveries.list_deliveries(db, skip=skip, limit=limit)
    return {
        "data": [await build_delivery_response(db, d) for d in rows],
        "total": total,
    }


@router.get("/{delivery_id}", response_model=DeliveryResponse)
async def get_delivery(
    *,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_actor),
    delivery_id: int) -> Any:
    delivery = await deliveries.get_delivery(db, delivery_id)
    return await build_delivery_response(db, delivery)
