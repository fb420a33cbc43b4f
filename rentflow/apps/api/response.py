"""Response shapes served by the API.

Client routes under ``/v1`` answer with a ``{data, meta}`` or ``{error, meta}``
envelope. Razorpay callbacks answer with a flat ``{status, message}``
acknowledgement on every path, because the gateway only reads the status code.
"""

from __future__ import annotations

import json
from typing import Any, Generic, Literal, TypeVar
from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel


API_VERSION = "v1"
WEBHOOK_PREFIX = f"/{API_VERSION}/webhooks"
GATEWAY_CALLBACK_PATHS = ("/razorpay",)
ENVELOPE_EXEMPT_PREFIXES = (f"/{API_VERSION}/openapi.json", f"/{API_VERSION}/docs", WEBHOOK_PREFIX)

T = TypeVar("T")


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = API_VERSION


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


class WebhookAck(BaseModel):
    status: Literal["ok", "error"]
    message: str


def request_id_for(request: Request) -> str:
    # The request-context middleware sets this; anything running before it gets a fresh id.
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
    return request_id


def is_webhook_request(request: Request) -> bool:
    path = request.url.path
    return path in GATEWAY_CALLBACK_PATHS or path.startswith(WEBHOOK_PREFIX)


def is_versioned_request(request: Request) -> bool:
    path = request.url.path
    return path.startswith(f"/{API_VERSION}/") and not path.startswith(ENVELOPE_EXEMPT_PREFIXES)


def webhook_ack(status_code: int, status: Literal["ok", "error"], message: str) -> JSONResponse:
    return JSONResponse(content=WebhookAck(status=status, message=message).model_dump(), status_code=status_code)


def success_response(*, request: Request, data: Any) -> Any:
    if not is_versioned_request(request):
        return data
    meta = ResponseMeta(request_id=request_id_for(request))
    return {"data": data, "meta": meta.model_dump()}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    meta = ResponseMeta(request_id=request_id_for(request))
    error = ErrorDetail(code=code, message=message, details=details)
    return {"error": error.model_dump(exclude_none=True), "meta": meta.model_dump()}


def envelope_body(raw_body: bytes, request_id: str) -> dict[str, Any] | None:
    """Wrap a route's raw JSON body in the success envelope.

    Returns None when the body is not JSON or is already enveloped, so the
    middleware can pass the original response through untouched.
    """
    try:
        payload = json.loads(raw_body)
    except (TypeError, ValueError):
        return None
    meta = payload.get("meta") if isinstance(payload, dict) else None
    if isinstance(meta, dict) and "data" in payload and meta.get("api_version") == API_VERSION:
        return None
    return {"data": payload, "meta": ResponseMeta(request_id=request_id).model_dump()}
