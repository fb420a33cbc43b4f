from __future__ import annotations

from typing import Any


class RentflowError(Exception):
    """Base error for rentflow."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ConfigurationError(RentflowError):
    """Required configuration (e.g. the webhook secret) is missing."""

    code = "CONFIGURATION_ERROR"
    status_code = 500


class SignatureVerificationError(RentflowError):
    """Webhook signature missing or not produced with the shared secret."""

    code = "WEBHOOK_SIGNATURE_INVALID"
    status_code = 400


class WebhookPayloadError(RentflowError):
    """Webhook body does not match the shape expected for its event type."""

    code = "WEBHOOK_PAYLOAD_INVALID"
    status_code = 400


class NotFoundError(RentflowError):
    """Referenced ledger record does not exist."""

    code = "NOT_FOUND"
    status_code = 404


class PermissionDeniedError(RentflowError):
    """Caller role or ownership does not allow the operation."""

    code = "AUTH_FORBIDDEN"
    status_code = 403


class ValidationError(RentflowError):
    """Request is well-formed but violates a business precondition."""

    code = "BAD_REQUEST"
    status_code = 400


class StateGuardViolation(RentflowError):
    """Requested transition is not allowed from the current status."""

    code = "STATE_GUARD_VIOLATION"
    status_code = 400


class ConflictError(RentflowError):
    """Record already exists for the given natural key."""

    code = "CONFLICT"
    status_code = 409


class ConcurrentModificationError(RentflowError):
    """Compare-and-set write lost the race after all attempts."""

    code = "CONFLICT"
    status_code = 409


class LedgerStoreError(RentflowError):
    """Persistence layer failure; the whole transition was rolled back."""

    code = "LEDGER_STORE_ERROR"
    status_code = 500


class GatewayError(RentflowError):
    """Payment gateway request failed."""

    code = "GATEWAY_ERROR"
    status_code = 502


class NotificationError(RentflowError):
    """Push notification delivery failed; never escalated past the fan-out."""

    code = "NOTIFICATION_FAILED"
    status_code = 502
