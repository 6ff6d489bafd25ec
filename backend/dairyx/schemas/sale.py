"""
Sale schemas
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from dairyx.core.states import PaymentStatus


class SaleItemIn(BaseModel):
    product_id: int
    quantity: int
    unit_price: Optional[Decimal] = Field(None, description="Defaults to the product's wholesale price")


class SaleCreate(BaseModel):
    shop_id: int
    sale_date: date
    truck_load_id: Optional[int] = Field(None, description="Empty for a depot sale")
    amount_paid: Decimal = Decimal("0.00")
    notes: Optional[str] = None
    items: List[SaleItemIn]


class PaymentUpdate(BaseModel):
    additional_payment: Decimal


class SaleItemResponse(BaseModel):
    id: int
    product_id: int
    batch_id: int
    truck_load_item_id: Optional[int] = None
    quantity: int
    unit_price: Decimal
    commission_earned: Decimal
    line_total: Decimal

    class Config:
        from_attributes = True


class SaleResponse(BaseModel):
    id: int
    shop_id: int
    truck_id: Optional[int] = None
    truck_load_id: Optional[int] = None
    user_id: int
    sale_date: date
    total_amount: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    payment_status: PaymentStatus
    notes: Optional[str] = None
    created_at: datetime
    items: List[SaleItemResponse] = []
    total_items: int = 0
    total_commission: Decimal = Decimal("0.00")


class SaleListResponse(BaseModel):
    data: List[SaleResponse]
    total: int
