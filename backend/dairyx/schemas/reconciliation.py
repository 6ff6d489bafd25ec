"""
Daily reconciliation schemas
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from dairyx.core.states import LineKind, ReconciliationStatus


class ReconciliationStart(BaseModel):
    reconciliation_date: date
    notes: Optional[str] = None


class ReturnedLine(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=0)


class DiscardedLine(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=0)
    reason: str = Field(..., min_length=1, max_length=200)


class VerifyTruckRequest(BaseModel):
    items_returned: List[ReturnedLine] = Field(default_factory=list)
    items_discarded: List[DiscardedLine] = Field(default_factory=list)
    notes: Optional[str] = None


class ReconciliationLineResponse(BaseModel):
    kind: LineKind
    product_id: int
    quantity: int
    reason: Optional[str] = None

    class Config:
        from_attributes = True


class ReconciliationItemResponse(BaseModel):
    id: int
    truck_id: int
    truck_number: str = ""
    truck_load_id: int
    driver_id: int
    items_loaded: int
    items_sold: int
    items_returned: int
    items_discarded: int
    expected_return: int
    sales_amount: Decimal
    commission_earned: Decimal
    allowance_received: Decimal
    payments_collected: Decimal
    pending_payments: Decimal
    is_verified: bool
    has_discrepancy: bool
    discrepancy_notes: Optional[str] = None
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None
    lines: List[ReconciliationLineResponse] = []


class ReconciliationResponse(BaseModel):
    id: int
    reconciliation_date: date
    status: ReconciliationStatus
    trucks_out: int
    trucks_verified: int
    total_items_loaded: int
    total_items_sold: int
    total_items_returned: int
    total_items_discarded: int
    total_sales_amount: Decimal
    total_commission_earned: Decimal
    total_allowance_allocated: Decimal
    total_payments_collected: Decimal
    total_pending_payments: Decimal
    net_profit: Decimal
    profit_status: str
    started_by: int
    started_at: datetime
    finalized_by: Optional[int] = None
    finalized_at: Optional[datetime] = None
    notes: Optional[str] = None
    items: List[ReconciliationItemResponse] = []


class ReconciliationSummary(BaseModel):
    id: int
    reconciliation_date: date
    status: ReconciliationStatus
    trucks_out: int
    trucks_verified: int
    total_sales_amount: Decimal
    total_commission_earned: Decimal
    total_allowance_allocated: Decimal
    net_profit: Decimal
    profit_status: str

    class Config:
        from_attributes = True


class ReconciliationListResponse(BaseModel):
    data: List[ReconciliationSummary]
    total: int
