"""Core modules for the ERP service."""

from .logging import configure_logging, get_logger
from .errors import ERPError, ValidationError, NotFoundError, ConflictError, DeviceConnectionError
from .database import Database
from .cache import cache
from .performance import monitor

__all__ = [
    "configure_logging",
    "get_logger",
    "ERPError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "DeviceConnectionError",
    "Database",
    "cache",
    "monitor",
]
