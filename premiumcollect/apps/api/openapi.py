from __future__ import annotations

from typing import Any

from premiumcollect.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    # Build a consistent error envelope example for OpenAPI docs.
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _error_response(description: str, example: dict[str, Any]) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _error_response(
        "Bad request",
        _error_example(code="NO_UPDATE_FIELDS", message="No valid update fields provided"),
    ),
    401: _error_response(
        "Unauthorized",
        _error_example(code="INVALID_API_KEY", message="Invalid API key"),
    ),
    403: _error_response(
        "Forbidden",
        _error_example(
            code="INSUFFICIENT_PERMISSIONS",
            message="API key lacks the required permission",
            details={"required": "collections:write"},
        ),
    ),
    404: _error_response(
        "Not found",
        _error_example(code="COLLECTION_NOT_FOUND", message="Collection not found"),
    ),
    409: _error_response(
        "Conflict",
        _error_example(code="CAPTIVE_CODE_EXISTS", message="Cell captive code already exists"),
    ),
    422: _error_response(
        "Validation error",
        _error_example(code="REQUEST_VALIDATION_ERROR", message="Validation error"),
    ),
    500: _error_response(
        "Internal server error",
        _error_example(code="INTERNAL_ERROR", message="Internal server error"),
    ),
}

BULK_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    **DEFAULT_ERROR_RESPONSES,
    422: _error_response(
        "Batch rolled back",
        _error_example(
            code="BULK_UPDATE_ROLLED_BACK",
            message="Bulk update rolled back: 1 item(s) failed",
            details={
                "committed": False,
                "processed": 0,
                "error_count": 1,
                "results": [],
                "errors": [
                    {
                        "index": 1,
                        "identifier": "COL-MISSING",
                        "code": "COLLECTION_NOT_FOUND",
                        "message": "Collection not found",
                    }
                ],
            },
        ),
    ),
}
