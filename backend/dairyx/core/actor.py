"""Caller identity passed into every service operation"""
from dataclasses import dataclass

from dairyx.core.errors import ForbiddenError
from dairyx.core.states import UserRole


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: UserRole

    @property
    def is_manager(self) -> bool:
        return self.role == UserRole.MANAGER

    @property
    def is_driver(self) -> bool:
        return self.role == UserRole.DRIVER


def require_manager(actor: Actor, action: str = "perform this action") -> None:
    if not actor.is_manager:
        raise ForbiddenError(f"Only managers can {action}")
