"""Core utilities for the Lunexa rooms backend."""

from .errors import ForbiddenError, InternalError, InvalidOperationError, NotFoundError, RoomServiceError

__all__ = [
    "ForbiddenError",
    "InternalError",
    "InvalidOperationError",
    "NotFoundError",
    "RoomServiceError",
]
