"""
Domain errors raised by the Stagehouse core.

Every error carries the HTTP status it maps to; main.py installs a single
handler that renders them as JSON.
"""
from typing import Any, Dict


class StagehouseError(Exception):
    """Base class for all domain errors."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "error": type(self).__name__}


class Unauthenticated(StagehouseError):
    """No resolved identity."""
    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class Unauthorized(StagehouseError):
    """Identity resolved but lacks the required role or ownership."""
    status_code = 403

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message)


class NotFound(StagehouseError):
    status_code = 404


class InsufficientAvailability(StagehouseError):
    """Requested quantity exceeds count - in_use."""
    status_code = 409

    def __init__(self, requested: int, available: int):
        super().__init__(
            f"Insufficient availability: requested {requested}, only {available} available"
        )
        self.requested = requested
        self.available = available

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"requested": self.requested, "available": self.available})
        return data


class InvariantViolation(StagehouseError):
    status_code = 409


class CannotDelete(InvariantViolation):
    pass
