from __future__ import annotations

from typing import Any


class ApiError(Exception):
    """Raised by services; rendered as ``{"error": message}`` with ``status_code``."""

    status_code = 400

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ApiError, ValueError):
    status_code = 400


class NotFoundError(ApiError):
    status_code = 404


class ConflictError(ApiError):
    status_code = 409


class ForbiddenError(ApiError):
    status_code = 403
