from __future__ import annotations

from math import ceil
from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel


API_VERSION = "v1"

T = TypeVar("T")


class Meta(BaseModel):
    request_id: str
    api_version: str = API_VERSION


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class Envelope(BaseModel, Generic[T]):
    data: T
    meta: Meta


class ErrorEnvelope(BaseModel):
    error: ErrorBody
    meta: Meta


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


def _meta(request: Request) -> dict[str, Any]:
    # The request middleware stamps every request; handlers reached outside it mint one.
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
    return Meta(request_id=request_id).model_dump()


def success_response(*, request: Request, data: Any) -> dict[str, Any]:
    return {"data": data, "meta": _meta(request)}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error = ErrorBody(code=code, message=message, details=details)
    return {"error": error.model_dump(exclude_none=True), "meta": _meta(request)}


def paginated(items: list[Any], *, page: int, limit: int, total: int) -> dict[str, Any]:
    pagination = Pagination(page=page, limit=limit, total=total, pages=ceil(total / limit) if limit else 0)
    return {"items": items, "pagination": pagination.model_dump()}
