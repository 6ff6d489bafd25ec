"""
Catalog models (maintained by the CRUD layer, read by the core)

- User: manager or driver
- Product: wholesale price and fixed commission per unit
- Truck: optional assigned driver, allowance ceiling
- Shop: sale destination
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, DECIMAL, CheckConstraint
from sqlalchemy.orm import relationship

from dairyx.core.config import settings
from dairyx.core.states import UserRole
from dairyx.db.base import Base, status_type


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    full_name = Column(String(100))
    role = Column(status_type(UserRole), nullable=False, default=UserRole.DRIVER, comment="manager / driver")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def is_manager(self) -> bool:
        return self.role == UserRole.MANAGER

    def __repr__(self):
        return f"<User {self.username} ({self.role.value if self.role else '?'})>"


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("current_wholesale_price >= 0", name="ck_product_price_non_negative"),
        CheckConstraint("commission_per_unit >= 0", name="ck_product_commission_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    current_wholesale_price = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"), comment="Default unit price for sales")
    commission_per_unit = Column(DECIMAL(12, 2), nullable=False, default=Decimal("0.00"), comment="Fixed commission per unit sold")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Product {self.name}>"


class Truck(Base):
    __tablename__ = "trucks"
    __table_args__ = (
        CheckConstraint("max_allowance_limit >= 0", name="ck_truck_allowance_limit_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    truck_number = Column(String(20), unique=True, nullable=False, comment="Plate / fleet number")
    driver_id = Column(Integer, ForeignKey("users.id"), index=True, comment="Assigned driver")
    is_active = Column(Boolean, default=True, nullable=False)
    max_allowance_limit = Column(DECIMAL(12, 2), nullable=False, default=lambda: settings.DEFAULT_TRUCK_ALLOWANCE_LIMIT, comment="Ceiling for a single day's allowance")
    created_at = Column(DateTime, default=datetime.utcnow)

    driver = relationship("User", foreign_keys=[driver_id])

    def __repr__(self):
        return f"<Truck {self.truck_number}>"


class Shop(Base):
    __tablename__ = "shops"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    location = Column(String(200))
    contact_info = Column(String(100))
    created_at = Column(DateTime, default=datetime.utcnow)
