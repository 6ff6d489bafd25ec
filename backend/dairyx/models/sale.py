"""
Sales to shops

A sale is either a truck sale (drawn from a truck load) or a depot sale
(drawn straight from batches). Each item keeps its own price and
commission snapshot; commission = quantity x commission_per_unit.
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, Text, Date, DateTime, ForeignKey, DECIMAL, CheckConstraint,
)
from sqlalchemy.orm import relationship

from dairyx.core.states import PaymentStatus
from dairyx.db.base import Base


class Sale(Base):
    __tablename__ = "sales"
    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_sale_total_non_negative"),
        CheckConstraint("amount_paid >= 0", name="ck_sale_paid_non_negative"),
        CheckConstraint("amount_paid <= total_amount", name="ck_sale_paid_le_total"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(Integer, ForeignKey("shops.id"), nullable=False, index=True)
    truck_id = Column(Integer, ForeignKey("trucks.id"), index=True, comment="Empty for depot sales")
    truck_load_id = Column(Integer, ForeignKey("truck_loads.id"), index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, comment="Who recorded the sale")
    sale_date = Column(Date, nullable=False, index=True)

    total_amount = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))
    amount_paid = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship("SaleItem", back_populates="sale", order_by="SaleItem.id")
    shop = relationship("Shop")

    @property
    def payment_status(self) -> PaymentStatus:
        return PaymentStatus.PAID if self.amount_paid >= self.total_amount else PaymentStatus.PENDING

    @property
    def balance_due(self) -> Decimal:
        return self.total_amount - self.amount_paid


class SaleItem(Base):
    __tablename__ = "sale_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sale_item_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_sale_item_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey("batches.id"), nullable=False)
    truck_load_item_id = Column(Integer, ForeignKey("truck_load_items.id"), comment="Truck sales only")
    quantity = Column(Integer, nullable=False)
    unit_price = Column(DECIMAL(12, 2), nullable=False)
    commission_earned = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"), comment="quantity x commission_per_unit")

    sale = relationship("Sale", back_populates="items")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity
