from __future__ import annotations

import logging
from typing import Any

from rentflow.core.config import SYSTEM_ACTOR
from rentflow.domain.models import ActionHistory
from rentflow.domain.state import ActionType, UserRole
from rentflow.persistence.repos.ledger import LedgerStore


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "token", "secret", "password", "signature", "card", "vpa"]
_REDACTED_VALUE = "[REDACTED]"


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


def record_action(
    store: LedgerStore,
    *,
    action_type: ActionType,
    performed_by: str,
    performed_by_role: str,
    subscription_id: str | None = None,
    payment_id: str | None = None,
    from_status: str | None = None,
    to_status: str | None = None,
    comment: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> ActionHistory:
    # Stage the audit row on the caller's transaction; it commits or rolls back with the transition.
    entry = ActionHistory(
        subscription_id=subscription_id,
        payment_id=payment_id,
        action_type=action_type.value,
        from_status=from_status,
        to_status=to_status,
        performed_by=performed_by,
        performed_by_role=performed_by_role,
        comment=comment,
        metadata_json=sanitize_metadata(metadata or {}),
    )
    store.append_action_history(entry)
    logger.info(
        "action_recorded action=%s subscription_id=%s payment_id=%s from=%s to=%s by=%s",
        action_type.value,
        subscription_id,
        payment_id,
        from_status,
        to_status,
        performed_by,
    )
    return entry


def record_system_action(store: LedgerStore, *, action_type: ActionType, **fields: Any) -> ActionHistory:
    # Gateway-driven transitions are attributed to the system actor with admin authority.
    return record_action(
        store,
        action_type=action_type,
        performed_by=SYSTEM_ACTOR,
        performed_by_role=UserRole.ADMIN.value,
        **fields,
    )
