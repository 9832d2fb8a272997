"""Utilities for consistent API error responses."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


def api_error(status_code: int, code: str, detail: str, *, headers: dict[str, str] | None = None) -> HTTPException:
    """Create an :class:`HTTPException` with a normalized payload."""

    payload = {"code": code, "detail": detail}
    return HTTPException(status_code=status_code, detail=payload, headers=headers)


class LogisticsError(Exception):
    """Base class for domain failures surfaced directly to the caller."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "logistics.error"

    def __init__(self, detail: str, *, code: str | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if code is not None:
            self.code = code

    def to_payload(self) -> dict[str, Any]:
        return {"detail": self.detail, "code": self.code}


class NotFound(LogisticsError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class Forbidden(LogisticsError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class InvalidInput(LogisticsError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_input"


class Conflict(LogisticsError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class InvalidTransition(LogisticsError):
    """Raised when an entity is not in the status an operation requires."""

    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"

    def __init__(self, detail: str, *, current_status: str) -> None:
        super().__init__(detail)
        self.current_status = current_status

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["current_status"] = self.current_status
        return payload


class InsufficientStock(LogisticsError):
    status_code = status.HTTP_409_CONFLICT
    code = "insufficient_stock"
