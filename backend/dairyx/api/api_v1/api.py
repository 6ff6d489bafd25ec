"""API v1 router"""
from fastapi import APIRouter

from dairyx.api.api_v1.endpoints import (
    allowances, batches, deliveries, reconciliations, sales, stock_movements, truck_loads,
)

api_router = APIRouter()

# Inventory
api_router.include_router(deliveries.router, prefix="/deliveries", tags=["Deliveries"])
api_router.include_router(batches.router, prefix="/batches", tags=["Batches"])
api_router.include_router(stock_movements.router, prefix="/stock-movements", tags=["Stock movements"])

# Truck operations
api_router.include_router(truck_loads.router, prefix="/truck-loads", tags=["Truck loads"])
api_router.include_router(sales.router, prefix="/sales", tags=["Sales"])
api_router.include_router(allowances.router, prefix="/allowances", tags=["Allowances"])

# End of day
api_router.include_router(reconciliations.router, prefix="/reconciliations", tags=["Reconciliations"])
