"""
Delivery intake schemas
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class DeliveryBatchIn(BaseModel):
    batch_number: str = Field(..., min_length=1, max_length=50)
    quantity: int = Field(..., description="Units received, must be positive")
    expiry_date: date


class DeliveryItemIn(BaseModel):
    product_id: int
    unit_price: Decimal = Field(..., description="Supplier price per unit")
    batches: List[DeliveryBatchIn] = Field(default_factory=list)


class DeliveryCreate(BaseModel):
    delivery_date: date
    delivery_note_number: str = Field(..., min_length=1, max_length=50)
    notes: Optional[str] = None
    items: List[DeliveryItemIn]


class DeliveryBatchResponse(BaseModel):
    batch_id: int
    batch_number: str
    quantity_received: int
    expiry_date: date


class DeliveryItemResponse(BaseModel):
    id: int
    product_id: int
    unit_price: Decimal
    batches: List[DeliveryBatchResponse] = []


class DeliveryResponse(BaseModel):
    id: int
    delivery_date: date
    delivery_note_number: str
    received_by: int
    notes: Optional[str] = None
    created_at: datetime
    items: List[DeliveryItemResponse] = []
    total_quantity: int = 0
    total_value: Decimal = Decimal("0.00")
