from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from premiumcollect.apps.api.response import error_response
from premiumcollect.core.config import get_settings
from premiumcollect.core.errors import DomainError


logger = logging.getLogger(__name__)

_STATUS_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    415: "UNSUPPORTED_MEDIA_TYPE",
    422: "REQUEST_VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
}


def _code_for(status_code: int) -> str:
    return _STATUS_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Auth dependencies raise HTTPException with {"code", "message", ...extra} details.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _code_for(status_code))
        message = str(detail.get("message") or "Request failed")
        extra = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, extra or None
    if isinstance(detail, str):
        return _code_for(status_code), detail, None
    return _code_for(status_code), "Request failed", None


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Covers FastAPI HTTPException as well as Starlette's own 404/405.
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    payload = error_response(
        request=request,
        code=exc.code,
        message=exc.message,
        details=jsonable_encoder(exc.details) if exc.details else None,
    )
    return JSONResponse(content=payload, status_code=exc.status_code)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=422)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_exception path=%s method=%s",
        request.url.path,
        request.method,
        exc_info=exc,
    )
    details = None
    if get_settings().debug_errors:
        details = {"exception": type(exc).__name__, "error": str(exc)}
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
        details=details,
    )
    return JSONResponse(content=payload, status_code=500)
