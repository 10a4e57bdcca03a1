"""
Error types raised by services and routers.

Each carries the HTTP status it maps to; main.py registers a single handler
that renders them as ``{"error": ..., "details": ...}``.
"""

from typing import Any


class ERPError(Exception):
    """Base class for expected, client-visible failures."""

    status_code = 500

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(ERPError):
    """Request is well-formed JSON but violates a business rule."""

    status_code = 400


class NotFoundError(ERPError):
    status_code = 404

    def __init__(self, entity: str, identifier: Any = None):
        message = f"{entity} not found" if identifier is None else f"{entity} {identifier} not found"
        super().__init__(message)
        self.entity = entity


class ConflictError(ERPError):
    """State transition not allowed from the current state."""

    status_code = 409


class DeviceConnectionError(ERPError):
    """ESSL device (or its proxy) could not be reached."""

    status_code = 502
