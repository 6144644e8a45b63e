"""Domain errors raised by the room services and rendered by the API layer."""

from __future__ import annotations

from fastapi import status


class RoomServiceError(Exception):
    """Base class for failures that map onto an HTTP status code."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFoundError(RoomServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(RoomServiceError):
    status_code = status.HTTP_403_FORBIDDEN


class InvalidOperationError(RoomServiceError):
    """Seat conflicts, capacity limits and owner immunity violations."""

    status_code = status.HTTP_409_CONFLICT


class InternalError(RoomServiceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


__all__ = [
    "RoomServiceError",
    "NotFoundError",
    "ForbiddenError",
    "InvalidOperationError",
    "InternalError",
]
