from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: list[str] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = list(details) if details else []


class InputError(ApiError):
    """Malformed coordinate, accuracy or enum value. Never retried."""

    def __init__(self, message: str, details: list[str] | None = None, code: str = "VALIDATION_ERROR"):
        super().__init__(status_code=422, code=code, message=message, details=details)


class NotFoundError(ApiError):
    def __init__(self, message: str, code: str = "NOT_FOUND"):
        super().__init__(status_code=404, code=code, message=message)


class ConflictError(ApiError):
    def __init__(self, message: str, code: str = "CONFLICT"):
        super().__init__(status_code=409, code=code, message=message)


class PolicyViolation(ApiError):
    """Geofence or accuracy rejection. ``details`` carries the verdict errors verbatim."""

    def __init__(self, message: str, details: list[str], code: str = "LOCATION_REJECTED"):
        super().__init__(status_code=422, code=code, message=message, details=details)


class DependencyError(ApiError):
    """Storage or external lookup failure. Safe to retry once with backoff."""

    def __init__(self, message: str, code: str = "STORAGE_UNAVAILABLE"):
        super().__init__(status_code=503, code=code, message=message)


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: list[str] | None = None,
) -> JSONResponse:
    error: dict[str, object] = {
        "code": code,
        "message": message,
        "request_id": get_request_id(request),
    }
    if details:
        error["details"] = list(details)
    return JSONResponse(status_code=status_code, content={"error": error})
