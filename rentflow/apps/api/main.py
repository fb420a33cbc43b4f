from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from rentflow.apps.api.errors import (
    http_exception_handler,
    rentflow_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from rentflow.apps.api.response import API_VERSION, envelope_body, is_versioned_request
from rentflow.apps.api.routes.health import router as health_router
from rentflow.apps.api.routes.subscriptions import router as subscriptions_router
from rentflow.apps.api.routes.webhooks import router as webhooks_router
from rentflow.core.config import get_settings
from rentflow.core.errors import RentflowError
from rentflow.core.logging import configure_logging
from rentflow.services.notifications.push import ExpoPushGateway
from rentflow.services.razorpay_client import HttpRazorpayClient


logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    yield
    await app.state.push_gateway.aclose()
    if app.state.razorpay_client is not None:
        await app.state.razorpay_client.aclose()


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="Rentflow API", lifespan=_lifespan)

    app.state.push_gateway = ExpoPushGateway()
    # Without REST credentials subscriptions are billed manually; payment links are unavailable.
    app.state.razorpay_client = (
        HttpRazorpayClient() if settings.razorpay_key_id and settings.razorpay_key_secret else None
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        raw_body = getattr(response, "body", None)
        if (
            raw_body
            and is_versioned_request(request)
            and response.status_code < 400
            and response.media_type == "application/json"
        ):
            content = envelope_body(raw_body, request_id)
            if content is not None:
                wrapped = JSONResponse(content=content, status_code=response.status_code)
                for key, value in response.headers.items():
                    if key.lower() not in {"content-length", "content-type"}:
                        wrapped.headers[key] = value
                response = wrapped

        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(RentflowError)
    async def _rentflow_exception_handler(request: Request, exc: RentflowError):
        return await rentflow_exception_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(subscriptions_router, prefix=f"/{API_VERSION}")
    # Webhook paths are absolute: the gateway is configured with the bare /razorpay URL.
    app.include_router(webhooks_router)

    @app.get("/v1/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/v1/docs", include_in_schema=False)
    async def v1_docs() -> HTMLResponse:
        return get_swagger_ui_html(openapi_url="/v1/openapi.json", title="Rentflow API v1")

    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url="/v1/docs")

    return app


app = create_app()
