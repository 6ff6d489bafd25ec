"""
Truck loads

One load per truck per day; one item per batch placed on the truck.
- quantity_sold + quantity_returned <= quantity_loaded
- lost/damaged = loaded - sold - returned, reported only once reconciled
"""
from datetime import datetime

from sqlalchemy import (
    Column, Integer, Text, Date, DateTime, ForeignKey, CheckConstraint, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from dairyx.core.states import TruckLoadStatus
from dairyx.db.base import Base, status_type


class TruckLoad(Base):
    __tablename__ = "truck_loads"
    __table_args__ = (
        UniqueConstraint("truck_id", "load_date", name="uq_truck_load_per_day"),
    )

    id = Column(Integer, primary_key=True, index=True)
    truck_id = Column(Integer, ForeignKey("trucks.id"), nullable=False, index=True)
    load_date = Column(Date, nullable=False, index=True)
    loaded_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(status_type(TruckLoadStatus), nullable=False, default=TruckLoadStatus.LOADED, index=True)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    truck = relationship("Truck")
    items = relationship("TruckLoadItem", back_populates="truck_load", order_by="TruckLoadItem.id")

    @property
    def is_reconciled(self) -> bool:
        return self.status == TruckLoadStatus.RECONCILED


class TruckLoadItem(Base):
    __tablename__ = "truck_load_items"
    __table_args__ = (
        UniqueConstraint("truck_load_id", "batch_id", name="uq_truck_load_item_batch"),
        CheckConstraint("quantity_loaded > 0", name="ck_load_item_loaded_positive"),
        CheckConstraint("quantity_sold >= 0 AND quantity_returned >= 0", name="ck_load_item_non_negative"),
        CheckConstraint("quantity_sold + quantity_returned <= quantity_loaded", name="ck_load_item_balance"),
    )

    id = Column(Integer, primary_key=True, index=True)
    truck_load_id = Column(Integer, ForeignKey("truck_loads.id"), nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey("batches.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    quantity_loaded = Column(Integer, nullable=False)
    quantity_sold = Column(Integer, nullable=False, default=0)
    quantity_returned = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    truck_load = relationship("TruckLoad", back_populates="items")
    batch = relationship("Batch")
    product = relationship("Product")

    @property
    def quantity_available(self) -> int:
        """Still on the truck and unsold"""
        return self.quantity_loaded - self.quantity_sold - self.quantity_returned

    def lost_damaged(self, status: TruckLoadStatus) -> int:
        if status != TruckLoadStatus.RECONCILED:
            return 0
        return self.quantity_available
