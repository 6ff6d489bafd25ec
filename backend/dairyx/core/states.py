"""
Status enums and their allowed transitions
- truck load: loaded -> reconciled
- allowance: pending -> allocated -> finalized
- daily reconciliation: in_progress -> finalized
Terminal states have no outgoing transitions.
"""

import enum
from typing import Dict, FrozenSet

from dairyx.core.errors import ConflictError


class UserRole(str, enum.Enum):
    MANAGER = "manager"
    DRIVER = "driver"


class MovementType(str, enum.Enum):
    DELIVERY_IN = "delivery_in"
    TRUCK_LOAD_OUT = "truck_load_out"
    SALE_OUT = "sale_out"
    TRUCK_RETURN_IN = "truck_return_in"
    ADJUSTMENT = "adjustment"
    EXPIRED_OUT = "expired_out"

    @property
    def sign(self) -> int:
        """+1 for stock entering a batch, -1 for stock leaving it; 0 means signed quantity"""
        if self in (MovementType.DELIVERY_IN, MovementType.TRUCK_RETURN_IN):
            return 1
        if self is MovementType.ADJUSTMENT:
            return 0
        return -1


class ReferenceType(str, enum.Enum):
    DELIVERY = "delivery"
    TRUCK_LOAD = "truck_load"
    SALE = "sale"
    RECONCILIATION = "reconciliation"
    MANUAL = "manual"


class TruckLoadStatus(str, enum.Enum):
    LOADED = "loaded"
    RECONCILED = "reconciled"


class AllowanceStatus(str, enum.Enum):
    PENDING = "pending"
    ALLOCATED = "allocated"
    FINALIZED = "finalized"


class ReconciliationStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    FINALIZED = "finalized"


class PaymentStatus(str, enum.Enum):
    PAID = "paid"
    PENDING = "pending"


class LineKind(str, enum.Enum):
    RETURNED = "returned"
    DISCARDED = "discarded"


TRANSITIONS: Dict[type, Dict[enum.Enum, FrozenSet[enum.Enum]]] = {
    TruckLoadStatus: {
        TruckLoadStatus.LOADED: frozenset({TruckLoadStatus.RECONCILED}),
        TruckLoadStatus.RECONCILED: frozenset(),
    },
    AllowanceStatus: {
        # allocating more trucks keeps the allowance in ALLOCATED
        AllowanceStatus.PENDING: frozenset({AllowanceStatus.ALLOCATED, AllowanceStatus.FINALIZED}),
        AllowanceStatus.ALLOCATED: frozenset({AllowanceStatus.ALLOCATED, AllowanceStatus.FINALIZED}),
        AllowanceStatus.FINALIZED: frozenset(),
    },
    ReconciliationStatus: {
        ReconciliationStatus.IN_PROGRESS: frozenset({ReconciliationStatus.FINALIZED}),
        ReconciliationStatus.FINALIZED: frozenset(),
    },
}


def can_transition(current: enum.Enum, target: enum.Enum) -> bool:
    table = TRANSITIONS[type(current)]
    return target in table.get(current, frozenset())


def ensure_transition(current: enum.Enum, target: enum.Enum, what: str) -> None:
    """Raise ConflictError unless `current -> target` is an allowed move"""
    if not can_transition(current, target):
        raise ConflictError(f"{what} cannot move from '{current.value}' to '{target.value}'")


def is_terminal(status: enum.Enum) -> bool:
    return not TRANSITIONS[type(status)].get(status)
