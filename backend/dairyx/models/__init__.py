# Import every model so Base.metadata knows all tables

from dairyx.models.catalog import User, Product, Truck, Shop
from dairyx.models.batch import Delivery, DeliveryItem, Batch
from dairyx.models.stock_movement import StockMovement
from dairyx.models.truck_load import TruckLoad, TruckLoadItem
from dairyx.models.sale import Sale, SaleItem
from dairyx.models.allowance import TransportAllowance, TruckAllowance
from dairyx.models.reconciliation import DailyReconciliation, ReconciliationItem, ReconciliationLine

__all__ = [
    "User",
    "Product",
    "Truck",
    "Shop",
    "Delivery",
    "DeliveryItem",
    "Batch",
    "StockMovement",
    "TruckLoad",
    "TruckLoadItem",
    "Sale",
    "SaleItem",
    "TransportAllowance",
    "TruckAllowance",
    "DailyReconciliation",
    "ReconciliationItem",
    "ReconciliationLine",
]
