"""
Domain errors
- every service failure is one of these kinds
- each kind carries its HTTP status and a machine-readable code
- storage constraint violations are translated into the same kinds
"""

from typing import Optional

from sqlalchemy.exc import IntegrityError


class DomainError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, msg: str, extra: Optional[dict] = None):
        super().__init__(msg)
        self.msg = msg
        self.extra = extra

    def to_dict(self) -> dict:
        payload = {"error": self.msg, "code": self.code}
        if self.extra:
            payload["details"] = self.extra
        return payload


class ValidationFailed(DomainError):
    status_code = 400
    code = "validation_error"


class InsufficientStock(ValidationFailed):
    code = "insufficient_stock"


class ConflictError(DomainError):
    status_code = 409
    code = "conflict"


class NotFoundError(DomainError):
    status_code = 404
    code = "not_found"


class ForbiddenError(DomainError):
    status_code = 403
    code = "forbidden"


class InternalError(DomainError):
    pass


def translate_integrity_error(exc: IntegrityError) -> DomainError:
    """Map a constraint violation raised by the database to a domain error"""
    message = str(getattr(exc, "orig", exc)).lower()
    if "unique" in message or "duplicate" in message:
        return ConflictError("Record already exists")
    if "check constraint" in message:
        return ValidationFailed("Value violates a data constraint")
    if "not null" in message or "foreign key" in message:
        return ValidationFailed("Missing or invalid reference")
    return InternalError("Database constraint violation")
