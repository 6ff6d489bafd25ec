"""
Transport allowance schemas
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from dairyx.core.states import AllowanceStatus


class AllowanceCreate(BaseModel):
    allowance_date: date
    total_allowance: Decimal
    notes: Optional[str] = None


class TruckAllocationIn(BaseModel):
    truck_id: int
    amount: Decimal
    distance_covered: Optional[Decimal] = Field(None, description="km")
    notes: Optional[str] = None


class AllocateRequest(BaseModel):
    allocations: List[TruckAllocationIn]


class AllocationUpdate(BaseModel):
    amount: Decimal
    distance_covered: Optional[Decimal] = None
    notes: Optional[str] = None


class TruckAllowanceResponse(BaseModel):
    id: int
    truck_id: int
    amount: Decimal
    distance_covered: Optional[Decimal] = None
    notes: Optional[str] = None
    allocated_by: int
    created_at: datetime

    class Config:
        from_attributes = True


class AllowanceResponse(BaseModel):
    id: int
    allowance_date: date
    total_allowance: Decimal
    allocated_amount: Decimal
    remaining_amount: Decimal
    status: AllowanceStatus
    notes: Optional[str] = None
    created_by: int
    created_at: datetime
    truck_allowances: List[TruckAllowanceResponse] = []

    class Config:
        from_attributes = True


class AllowanceListResponse(BaseModel):
    data: List[AllowanceResponse]
    total: int
