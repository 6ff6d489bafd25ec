"""
Truck load schemas
"""
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from dairyx.core.states import TruckLoadStatus


class TruckLoadItemIn(BaseModel):
    """One load line: a named batch, or a product to allocate FIFO"""
    batch_id: Optional[int] = Field(None, description="Manual batch selection")
    product_id: Optional[int] = Field(None, description="FIFO allocation")
    quantity_loaded: int


class TruckLoadCreate(BaseModel):
    truck_id: int
    load_date: date
    notes: Optional[str] = None
    items: List[TruckLoadItemIn]


class TruckReturnLine(BaseModel):
    batch_id: int
    quantity_returned: int = Field(..., ge=0)


class TruckLoadReconcile(BaseModel):
    items: List[TruckReturnLine]
    notes: Optional[str] = None


class TruckLoadItemResponse(BaseModel):
    id: int
    batch_id: int
    batch_number: str = ""
    product_id: int
    product_name: str = ""
    expiry_date: Optional[date] = None
    quantity_loaded: int
    quantity_sold: int
    quantity_returned: int
    quantity_lost_damaged: int = Field(0, description="Known only once reconciled")


class TruckLoadSummary(BaseModel):
    total_loaded: int = 0
    total_sold: int = 0
    total_returned: int = 0
    total_lost_damaged: int = 0
    product_count: int = 0


class TruckLoadResponse(BaseModel):
    id: int
    truck_id: int
    truck_number: str = ""
    load_date: date
    loaded_by: int
    status: TruckLoadStatus
    notes: Optional[str] = None
    created_at: datetime
    items: List[TruckLoadItemResponse] = []
    summary: TruckLoadSummary


class TruckLoadListResponse(BaseModel):
    data: List[TruckLoadResponse]
    total: int
