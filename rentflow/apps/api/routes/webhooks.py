from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from rentflow.apps.api.deps import get_webhook_dispatcher
from rentflow.apps.api.response import WebhookAck, webhook_ack
from rentflow.core.config import get_settings
from rentflow.core.errors import WebhookPayloadError
from rentflow.domain.events import parse_webhook_event
from rentflow.services.reconciliation import WebhookDispatcher
from rentflow.services.signature import SIGNATURE_HEADER, verify_webhook_signature


logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


async def receive_razorpay_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
) -> JSONResponse:
    secret = get_settings().razorpay_webhook_secret
    if not secret:
        logger.error("webhook_secret_missing path=%s", request.url.path)
        return webhook_ack(500, "error", "Webhook secret is not configured")

    # Hash the bytes exactly as received, before anything parses the body.
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    if not verify_webhook_signature(raw_body, signature, secret):
        logger.warning("webhook_signature_invalid has_signature=%s", bool(signature))
        return webhook_ack(400, "error", "Invalid signature")

    try:
        event = parse_webhook_event(json.loads(raw_body))
    except ValueError as exc:
        logger.warning("webhook_body_invalid error=%s", exc)
        return webhook_ack(400, "error", "Invalid webhook payload")
    except WebhookPayloadError as exc:
        logger.warning("webhook_payload_invalid message=%s", exc.message)
        return webhook_ack(400, "error", exc.message)

    logger.info("webhook_received event=%s", event.event)
    try:
        outcome = await dispatcher.dispatch(event)
    except Exception:
        # Non-2xx makes the gateway redeliver; handlers are idempotent.
        logger.exception("webhook_processing_failed event=%s", event.event)
        return webhook_ack(500, "error", "Webhook processing failed")
    return webhook_ack(200, "ok", outcome.message)


router.add_api_route(
    "/razorpay",
    receive_razorpay_webhook,
    methods=["POST"],
    response_model=WebhookAck,
    include_in_schema=False,
)
router.add_api_route(
    "/v1/webhooks/razorpay",
    receive_razorpay_webhook,
    methods=["POST"],
    response_model=WebhookAck,
)
