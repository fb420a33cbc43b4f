from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re
from typing import Any, Protocol

import httpx

from rentflow.core.config import get_settings
from rentflow.core.errors import NotificationError


logger = logging.getLogger(__name__)

_EXPO_TOKEN_RE = re.compile(r"^(ExponentPushToken|ExpoPushToken)\[[^\]]+\]$")


def is_expo_push_token(token: str | None) -> bool:
    return bool(token) and bool(_EXPO_TOKEN_RE.match(token or ""))


@dataclass(frozen=True)
class PushMessage:
    push_token: str
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)


class PushGateway(Protocol):
    async def send_single_push_notification(
        self,
        *,
        push_token: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        ...


class ExpoPushGateway:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per gateway for connection pooling.
        self._client = httpx.AsyncClient(timeout=self._settings.notification_timeout_ms / 1000.0)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send_single_push_notification(
        self,
        *,
        push_token: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        if not is_expo_push_token(push_token):
            raise NotificationError("Invalid Expo push token")
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self._settings.expo_access_token:
            headers["Authorization"] = f"Bearer {self._settings.expo_access_token}"
        payload = {
            "to": push_token,
            "title": title,
            "body": message,
            "data": data or {},
            "sound": "default",
            "priority": "high",
            "badge": 1,
        }
        try:
            response = await self._get_client().post(self._settings.expo_push_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise NotificationError("Expo push request failed") from exc
        if response.status_code >= 400:
            raise NotificationError(
                f"Expo push responded with status {response.status_code}",
                details={"status": response.status_code},
            )
        # Expo answers 200 with per-ticket errors; surface them as failures too.
        ticket = (response.json() or {}).get("data") or {}
        if isinstance(ticket, list):
            ticket = ticket[0] if ticket else {}
        if ticket.get("status") == "error":
            raise NotificationError(
                ticket.get("message") or "Expo rejected the push notification",
                details={"expo_error": (ticket.get("details") or {}).get("error")},
            )
