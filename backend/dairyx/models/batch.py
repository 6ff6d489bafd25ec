"""
Deliveries and batches

A delivery note brings one or more products, each split into batches.
A batch is a dated lot of a single product and the unit of stock tracking:
- batch_number is unique per product
- 0 <= remaining_quantity <= initial_quantity (enforced here and by the ledger)
- emptied batches are kept for audit
"""
from datetime import date, datetime

from sqlalchemy import (
    Column, Integer, String, Text, Date, DateTime, ForeignKey, DECIMAL,
    CheckConstraint, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from dairyx.db.base import Base


class Delivery(Base):
    __tablename__ = "deliveries"

    id = Column(Integer, primary_key=True, index=True)
    delivery_date = Column(Date, nullable=False, index=True)
    delivery_note_number = Column(String(50), unique=True, nullable=False, comment="Supplier delivery note")
    received_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    items = relationship("DeliveryItem", back_populates="delivery", order_by="DeliveryItem.id")


class DeliveryItem(Base):
    __tablename__ = "delivery_items"
    __table_args__ = (
        UniqueConstraint("delivery_id", "product_id", name="uq_delivery_item_product"),
        CheckConstraint("unit_price >= 0", name="ck_delivery_item_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    delivery_id = Column(Integer, ForeignKey("deliveries.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    unit_price = Column(DECIMAL(12, 2), nullable=False, comment="Supplier price per unit")
    created_at = Column(DateTime, default=datetime.utcnow)

    delivery = relationship("Delivery", back_populates="items")


class Batch(Base):
    __tablename__ = "batches"
    __table_args__ = (
        UniqueConstraint("product_id", "batch_number", name="uq_batch_product_number"),
        CheckConstraint("initial_quantity >= 0", name="ck_batch_initial_non_negative"),
        CheckConstraint("remaining_quantity >= 0", name="ck_batch_remaining_non_negative"),
        CheckConstraint("remaining_quantity <= initial_quantity", name="ck_batch_remaining_le_initial"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    batch_number = Column(String(50), nullable=False, comment="Supplier lot number")
    delivery_id = Column(Integer, ForeignKey("deliveries.id"), index=True, comment="Delivery that created the batch")

    # === quantities (whole units) ===
    initial_quantity = Column(Integer, nullable=False, default=0, comment="Total ever received, adjustments included")
    remaining_quantity = Column(Integer, nullable=False, default=0, comment="On hand")

    expiry_date = Column(Date, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    product = relationship("Product")

    def __repr__(self):
        return f"<Batch {self.batch_number}: {self.remaining_quantity}/{self.initial_quantity}>"

    @property
    def is_depleted(self) -> bool:
        return self.remaining_quantity <= 0

    def is_expired(self, on: date = None) -> bool:
        """Expiry only classifies a batch; it never blocks allocation"""
        return self.expiry_date < (on or date.today())

    @property
    def status(self) -> str:
        if self.is_depleted:
            return "depleted"
        return "expired" if self.is_expired() else "active"
