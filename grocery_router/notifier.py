"""Push-notification delivery.

A notifier is anything with ``async send(payload) -> {"ok", "result"}``;
delivery counts as successful only when ``ok`` is true and
``result["status"] == 1`` (the Pushover convention).
"""

import logging
from typing import Any, Optional

import httpx

from grocery_router import config

logger = logging.getLogger(__name__)


class LogNotifier:
    """Logs the payload instead of delivering it; always succeeds."""

    async def send(self, payload: dict[str, Any]) -> dict[str, Any]:
        logger.info("Notification for %s: %s", payload.get("user"), payload.get("message"))
        return {"ok": True, "result": {"status": 1, "request": "logged"}}


class PushoverNotifier:
    """Delivers notifications through the Pushover messages API."""

    def __init__(
        self,
        app_token: str = config.PUSHOVER_APP_TOKEN,
        user_key: str = config.PUSHOVER_USER_KEY,
        api_url: str = config.PUSHOVER_API_URL,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.app_token = app_token
        self.user_key = user_key
        self.api_url = api_url
        self.timeout = timeout
        self._transport = transport

    async def send(self, payload: dict[str, Any]) -> dict[str, Any]:
        form = {
            "token": self.app_token,
            "user": self.user_key or payload.get("user"),
            "message": payload.get("message", ""),
            "title": payload.get("title"),
            "url": payload.get("url"),
            "url_title": payload.get("url_title"),
        }
        if payload.get("timestamp"):
            # Pushover expects seconds
            form["timestamp"] = int(payload["timestamp"]) // 1000
        form = {k: v for k, v in form.items() if v is not None}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(self.api_url, data=form)

        try:
            result = response.json()
        except ValueError:
            result = {"status": 0, "errors": [response.text]}
        if not response.is_success:
            logger.warning("Pushover rejected notification: %s %s", response.status_code, result)
        return {"ok": response.is_success, "result": result}


def build_notifier():
    """Pushover when credentials are configured, otherwise log-only."""
    if config.PUSHOVER_APP_TOKEN:
        return PushoverNotifier()
    logger.info("PUSHOVER_APP_TOKEN is not set; notifications will only be logged")
    return LogNotifier()
