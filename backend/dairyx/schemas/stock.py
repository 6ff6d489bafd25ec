"""
Batch and stock movement schemas
"""
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from dairyx.core.states import MovementType, ReferenceType


class BatchResponse(BaseModel):
    """Batch with its derived status"""
    id: int
    product_id: int
    product_name: str = ""
    batch_number: str
    initial_quantity: int
    remaining_quantity: int
    expiry_date: date
    delivery_id: Optional[int] = None
    status: str = Field(..., description="active / expired / depleted")
    created_at: datetime

    class Config:
        from_attributes = True


class BatchListResponse(BaseModel):
    data: List[BatchResponse]
    total: int


class StockMovementResponse(BaseModel):
    id: int
    batch_id: int
    product_id: int
    movement_type: MovementType
    quantity: int
    reference_type: ReferenceType
    reference_id: Optional[int] = None
    notes: Optional[str] = None
    created_by: int
    movement_date: date
    created_at: datetime

    class Config:
        from_attributes = True


class MovementWithBalance(StockMovementResponse):
    running_balance: int = Field(..., description="Batch quantity after this movement")


class BatchHistoryResponse(BaseModel):
    batch: BatchResponse
    movements: List[MovementWithBalance]


class BalanceCheckResponse(BaseModel):
    batch_id: int
    initial_quantity: int
    remaining_quantity: int
    intake_total: int = Field(..., description="delivery_in + adjustments")
    ledger_total: int = Field(..., description="Signed sum of all movements")
    is_balanced: bool


class StockAdjustmentCreate(BaseModel):
    """Manual adjustment or expiry write-off"""
    batch_id: int
    product_id: int
    movement_type: MovementType = Field(..., description="adjustment or expired_out")
    quantity: int = Field(..., description="Signed for adjustment, positive for expired_out")
    reason: str = Field(..., min_length=1, max_length=200)
    notes: Optional[str] = Field(None, max_length=500)
    movement_date: Optional[date] = None


class MovementSummaryItem(BaseModel):
    product_id: int
    product_name: str
    movement_type: MovementType
    transaction_count: int
    total_quantity: int

    class Config:
        from_attributes = True


class DailyMovementSummary(BaseModel):
    summary_date: date
    movements: List[MovementSummaryItem]


class StockMovementListResponse(BaseModel):
    data: List[StockMovementResponse]
    total: int
