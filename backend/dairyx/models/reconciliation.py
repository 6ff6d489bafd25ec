"""
Daily reconciliation

DailyReconciliation (one per date) -> ReconciliationItem (one per truck out
that day) -> ReconciliationLine (returned / discarded quantities per product,
as declared at verification).

Totals on DailyReconciliation are sums over its items and are written at
finalize. profit_status is derived from net_profit.
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Date, DateTime, ForeignKey, DECIMAL,
    CheckConstraint, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from dairyx.core.states import LineKind, ReconciliationStatus
from dairyx.db.base import Base, status_type


def _money():
    return Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"))


class DailyReconciliation(Base):
    __tablename__ = "daily_reconciliations"
    __table_args__ = (
        CheckConstraint("trucks_verified >= 0 AND trucks_verified <= trucks_out", name="ck_recon_verified_le_out"),
    )

    id = Column(Integer, primary_key=True, index=True)
    reconciliation_date = Column(Date, unique=True, nullable=False, index=True)
    status = Column(status_type(ReconciliationStatus), nullable=False, default=ReconciliationStatus.IN_PROGRESS)

    trucks_out = Column(Integer, nullable=False, default=0)
    trucks_verified = Column(Integer, nullable=False, default=0)

    # === stock totals ===
    total_items_loaded = Column(Integer, nullable=False, default=0)
    total_items_sold = Column(Integer, nullable=False, default=0)
    total_items_returned = Column(Integer, nullable=False, default=0)
    total_items_discarded = Column(Integer, nullable=False, default=0)

    # === money totals ===
    total_sales_amount = _money()
    total_commission_earned = _money()
    total_allowance_allocated = _money()
    total_payments_collected = _money()
    total_pending_payments = _money()
    net_profit = _money()

    started_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    started_at = Column(DateTime, default=datetime.utcnow)
    finalized_by = Column(Integer, ForeignKey("users.id"))
    finalized_at = Column(DateTime)
    notes = Column(Text)

    items = relationship("ReconciliationItem", back_populates="reconciliation", order_by="ReconciliationItem.id")

    @property
    def profit_status(self) -> str:
        return "profit" if self.net_profit >= 0 else "loss"

    @property
    def is_finalized(self) -> bool:
        return self.status == ReconciliationStatus.FINALIZED


class ReconciliationItem(Base):
    __tablename__ = "reconciliation_items"
    __table_args__ = (
        UniqueConstraint("reconciliation_id", "truck_id", name="uq_recon_item_truck"),
        CheckConstraint(
            "items_loaded >= 0 AND items_sold >= 0 AND items_returned >= 0 AND items_discarded >= 0",
            name="ck_recon_item_counts_non_negative",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    reconciliation_id = Column(Integer, ForeignKey("daily_reconciliations.id"), nullable=False, index=True)
    truck_id = Column(Integer, ForeignKey("trucks.id"), nullable=False)
    truck_load_id = Column(Integer, ForeignKey("truck_loads.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    items_loaded = Column(Integer, nullable=False, default=0)
    items_sold = Column(Integer, nullable=False, default=0)
    items_returned = Column(Integer, nullable=False, default=0)
    items_discarded = Column(Integer, nullable=False, default=0)

    sales_amount = _money()
    commission_earned = _money()
    allowance_received = _money()
    payments_collected = _money()
    pending_payments = _money()

    is_verified = Column(Boolean, nullable=False, default=False)
    has_discrepancy = Column(Boolean, nullable=False, default=False)
    discrepancy_notes = Column(Text)
    verified_by = Column(Integer, ForeignKey("users.id"))
    verified_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)

    reconciliation = relationship("DailyReconciliation", back_populates="items")
    truck = relationship("Truck")
    lines = relationship("ReconciliationLine", back_populates="item", order_by="ReconciliationLine.id")

    @property
    def expected_return(self) -> int:
        return self.items_loaded - self.items_sold


class ReconciliationLine(Base):
    __tablename__ = "reconciliation_lines"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_recon_line_quantity_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    item_id = Column(Integer, ForeignKey("reconciliation_items.id"), nullable=False, index=True)
    kind = Column(status_type(LineKind), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    reason = Column(String(200), comment="Discard reason")

    item = relationship("ReconciliationItem", back_populates="lines")
