"""Webhook registry for workout session notifications.

Integrations can register URLs to receive POST callbacks when a session
starts, completes, or is closed before finishing.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any
from uuid import uuid4

import httpx

logger = logging.getLogger(__name__)

# In-memory registry, lost on restart
_webhooks: dict[str, dict] = {}

VALID_EVENTS = {
    "session.started",
    "session.completed",
    "session.closed",
}


def register_webhook(url: str, events: list[str], secret: str | None = None) -> dict:
    """Register a new webhook endpoint for specified events."""
    invalid = set(events) - VALID_EVENTS
    if invalid:
        raise ValueError(f"Invalid events: {sorted(invalid)}. Valid: {sorted(VALID_EVENTS)}")
    hook_id = uuid4().hex[:12]
    _webhooks[hook_id] = {"id": hook_id, "url": url, "events": list(events), "secret": secret, "active": True}
    logger.info("Webhook registered: id=%s url=%s events=%s", hook_id, url, events)
    return _webhooks[hook_id]


def unregister_webhook(hook_id: str) -> bool:
    if hook_id in _webhooks:
        del _webhooks[hook_id]
        logger.info("Webhook unregistered: id=%s", hook_id)
        return True
    return False


def list_webhooks() -> list[dict]:
    return list(_webhooks.values())


def clear_webhooks() -> None:
    _webhooks.clear()


def sign_payload(payload: str, secret: str) -> str:
    """HMAC-SHA256 signature for webhook payload verification."""
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


async def dispatch_event(
    event_type: str,
    data: dict[str, Any],
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """Fire webhook callbacks for an event type. Returns count of dispatches sent."""
    subscribers = [h for h in _webhooks.values() if h["active"] and event_type in h["events"]]
    if not subscribers:
        return 0

    payload = json.dumps({"event": event_type, "data": data}, default=str)
    dispatched = 0
    async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
        for hook in subscribers:
            headers = {"Content-Type": "application/json", "X-Webhook-Event": event_type}
            if hook.get("secret"):
                headers["X-Webhook-Signature"] = sign_payload(payload, hook["secret"])
            try:
                resp = await client.post(hook["url"], content=payload, headers=headers)
                logger.info("Webhook dispatched: id=%s event=%s status=%d", hook["id"], event_type, resp.status_code)
                dispatched += 1
            except httpx.HTTPError as e:
                logger.warning("Webhook delivery failed: id=%s url=%s error=%s", hook["id"], hook["url"], e)
    return dispatched
