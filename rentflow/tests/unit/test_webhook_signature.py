from __future__ import annotations

import hashlib
import hmac

from rentflow.services.signature import build_webhook_signature, verify_webhook_signature


SECRET = "whsec_test"
BODY = b'{"event":"subscription.charged","payload":{}}'


def test_build_webhook_signature_matches_hmac() -> None:
    expected = hmac.new(SECRET.encode("utf-8"), BODY, hashlib.sha256).hexdigest()

    assert build_webhook_signature(SECRET, BODY) == expected


def test_verify_accepts_signature_over_raw_body() -> None:
    signature = build_webhook_signature(SECRET, BODY)

    assert verify_webhook_signature(BODY, signature, SECRET) is True
    # Header casing/whitespace from proxies does not matter.
    assert verify_webhook_signature(BODY, f" {signature.upper()} ", SECRET) is True


def test_verify_rejects_wrong_secret_and_tampered_body() -> None:
    signature = build_webhook_signature("other-secret", BODY)

    assert verify_webhook_signature(BODY, signature, SECRET) is False
    good = build_webhook_signature(SECRET, BODY)
    assert verify_webhook_signature(BODY + b" ", good, SECRET) is False


def test_verify_rejects_reserialized_body() -> None:
    # Same JSON, different bytes: the signature covers transport bytes only.
    signature = build_webhook_signature(SECRET, BODY)
    reserialized = b'{"event": "subscription.charged", "payload": {}}'

    assert verify_webhook_signature(reserialized, signature, SECRET) is False


def test_verify_never_raises_on_missing_inputs() -> None:
    signature = build_webhook_signature(SECRET, BODY)

    assert verify_webhook_signature(BODY, None, SECRET) is False
    assert verify_webhook_signature(BODY, "", SECRET) is False
    assert verify_webhook_signature(BODY, signature, None) is False
    assert verify_webhook_signature(BODY, "not-hex", SECRET) is False
