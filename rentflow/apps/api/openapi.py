from __future__ import annotations

from typing import Any

from rentflow.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    # Build a consistent error envelope example for OpenAPI docs.
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, example: dict[str, Any]) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    400: _response(
        "Bad request or state guard violation",
        _error_example(
            code="STATE_GUARD_VIOLATION",
            message="Cannot move subscription from ACTIVE to ACTIVE",
            details={"from_status": "ACTIVE", "to_status": "ACTIVE"},
        ),
    ),
    401: _response(
        "Unauthorized",
        _error_example(code="AUTH_UNAUTHORIZED", message="X-User-Id and X-User-Role headers are required"),
    ),
    403: _response(
        "Forbidden",
        _error_example(code="AUTH_FORBIDDEN", message="Subscription is not in your franchise area"),
    ),
    404: _response("Not found", _error_example(code="NOT_FOUND", message="Subscription not found")),
    409: _response(
        "Conflict",
        _error_example(code="CONFLICT", message="Subscription already exists for this installation request"),
    ),
    422: _response(
        "Validation error",
        _error_example(code="REQUEST_VALIDATION_ERROR", message="Validation error"),
    ),
    500: _response("Internal server error", _error_example(code="INTERNAL_ERROR", message="Internal server error")),
    502: _response("Payment gateway error", _error_example(code="GATEWAY_ERROR", message="Razorpay request failed")),
}
