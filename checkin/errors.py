"""
API error types and their JSON rendering.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class ApiError(Exception):
    """An error response with a message and a correlation timestamp."""

    timestamp_field = "timestamp"

    def __init__(
        self, status_code: int, message: str, extra: Optional[dict] = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.extra = extra or {}

    def body(self) -> dict:
        body = {
            "success": False,
            "message": self.message,
            self.timestamp_field: utc_timestamp(),
        }
        body.update(self.extra)
        return body


class ScanError(ApiError):
    timestamp_field = "scanTime"

    def __init__(
        self, status_code: int, message: str, participant: Optional[dict] = None
    ):
        super().__init__(
            status_code,
            message,
            {"participant": participant} if participant is not None else None,
        )


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.body())


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render malformed or missing request bodies as 400s in our error shape."""
    if request.method == "POST" and request.url.path.endswith("/scan"):
        error: ApiError = ScanError(400, "QR code is required")
    else:
        fields = sorted(
            {
                ".".join(str(part) for part in item.get("loc", ()))
                for item in exc.errors()
            }
        )
        error = ApiError(400, "Invalid request", {"fields": fields})
    return await api_error_handler(request, error)
