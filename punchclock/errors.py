from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        *,
        error: str | None = None,
        data: Any = None,
        warnings: list[str] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.error = error
        self.data = data
        self.warnings = list(warnings or [])


class ValidationError(ApiError):
    def __init__(self, message: str, *, code: str = "VALIDATION_ERROR", **kwargs: Any):
        super().__init__(400, code, message, **kwargs)


class NotFoundError(ApiError):
    def __init__(self, message: str, *, code: str = "NOT_FOUND", **kwargs: Any):
        super().__init__(404, code, message, **kwargs)


class ConflictError(ApiError):
    def __init__(self, message: str, *, code: str = "CONFLICT", **kwargs: Any):
        super().__init__(409, code, message, **kwargs)


class StoreError(ApiError):
    def __init__(self, message: str, *, code: str = "STORE_ERROR", **kwargs: Any):
        super().__init__(500, code, message, **kwargs)


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
    error: str | None = None,
    data: Any = None,
    warnings: list[str] | None = None,
) -> JSONResponse:
    payload: dict[str, Any] = {
        "success": False,
        "message": message,
        "code": code,
        "request_id": get_request_id(request),
    }
    if error is not None:
        payload["error"] = error
    if data is not None:
        payload["data"] = data
    if warnings:
        payload["warnings"] = list(warnings)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))
