from __future__ import annotations

import hashlib
import hmac


SIGNATURE_HEADER = "X-Razorpay-Signature"


def build_webhook_signature(secret: str, payload: bytes) -> str:
    # Compute the gateway's HMAC SHA256 hex digest over the exact request bytes.
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(raw_body: bytes, signature: str | None, secret: str | None) -> bool:
    """Return True only when ``signature`` was produced from ``raw_body`` with ``secret``.

    Never raises: a missing header, an unconfigured secret or a mismatch all
    return False. Callers must pass the transport bytes as received; hashing a
    re-serialized body is not equivalent.
    """
    if not secret or not signature:
        return False
    expected = build_webhook_signature(secret, raw_body)
    return hmac.compare_digest(expected, signature.strip().lower())
