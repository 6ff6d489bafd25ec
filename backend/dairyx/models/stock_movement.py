"""
Stock movement ledger (append-only)

quantity is a positive magnitude whose direction comes from movement_type,
except `adjustment`, which carries its own sign. Rows are never updated;
a correction is a new movement.
"""
from datetime import datetime

from sqlalchemy import Column, Integer, Text, Date, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from dairyx.core.states import MovementType, ReferenceType
from dairyx.db.base import Base, status_type


class StockMovement(Base):
    __tablename__ = "stock_movements"
    __table_args__ = (
        CheckConstraint(
            "(movement_type = 'adjustment' AND quantity <> 0) OR "
            "(movement_type <> 'adjustment' AND quantity > 0)",
            name="ck_movement_quantity_sign",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    batch_id = Column(Integer, ForeignKey("batches.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    movement_type = Column(status_type(MovementType), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, comment="Magnitude; signed only for adjustment")

    reference_type = Column(status_type(ReferenceType), nullable=False)
    reference_id = Column(Integer, comment="Row id in the referenced table")
    notes = Column(Text)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    movement_date = Column(Date, nullable=False, index=True, comment="Business date")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    batch = relationship("Batch")
    product = relationship("Product")

    @property
    def signed_quantity(self) -> int:
        """Effect of this movement on the batch's remaining quantity"""
        if self.movement_type == MovementType.ADJUSTMENT:
            return self.quantity
        return self.movement_type.sign * self.quantity

    def __repr__(self):
        return f"<StockMovement {self.movement_type.value} {self.quantity} batch={self.batch_id}>"
