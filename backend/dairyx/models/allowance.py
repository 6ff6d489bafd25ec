"""
Transport allowances

TransportAllowance is the day's budget; TruckAllowance splits it per truck.
- sum(truck amounts) <= total_allowance
- each truck amount <= truck.max_allowance_limit
- pending -> allocated -> finalized; finalized is read-only
allocated_amount / remaining_amount are computed, never stored.
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, Text, Date, DateTime, ForeignKey, DECIMAL, CheckConstraint, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from dairyx.core.states import AllowanceStatus
from dairyx.db.base import Base, status_type


class TransportAllowance(Base):
    __tablename__ = "transport_allowances"
    __table_args__ = (
        CheckConstraint("total_allowance > 0", name="ck_allowance_total_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    allowance_date = Column(Date, unique=True, nullable=False, index=True)
    total_allowance = Column(DECIMAL(12, 2), nullable=False)
    status = Column(status_type(AllowanceStatus), nullable=False, default=AllowanceStatus.PENDING)
    notes = Column(Text)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    truck_allowances = relationship("TruckAllowance", back_populates="allowance", order_by="TruckAllowance.id")

    @property
    def allocated_amount(self) -> Decimal:
        return sum((ta.amount for ta in self.truck_allowances), Decimal("0.00"))

    @property
    def remaining_amount(self) -> Decimal:
        return self.total_allowance - self.allocated_amount


class TruckAllowance(Base):
    __tablename__ = "truck_allowances"
    __table_args__ = (
        UniqueConstraint("allowance_id", "truck_id", name="uq_truck_allowance_per_truck"),
        CheckConstraint("amount > 0", name="ck_truck_allowance_amount_positive"),
        CheckConstraint("distance_covered IS NULL OR distance_covered >= 0", name="ck_truck_allowance_distance"),
    )

    id = Column(Integer, primary_key=True, index=True)
    allowance_id = Column(Integer, ForeignKey("transport_allowances.id"), nullable=False, index=True)
    truck_id = Column(Integer, ForeignKey("trucks.id"), nullable=False, index=True)
    amount = Column(DECIMAL(12, 2), nullable=False)
    distance_covered = Column(DECIMAL(10, 2), comment="km")
    notes = Column(Text)
    allocated_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    allowance = relationship("TransportAllowance", back_populates="truck_allowances")
    truck = relationship("Truck")
