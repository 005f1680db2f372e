"""
Real-time transport - best-effort fan-out of notification events.

Uses Redis pub/sub in production (via REDIS_URL): one channel per recipient,
``{REALTIME_CHANNEL_PREFIX}:user:{id}``, carrying a JSON envelope
``{"event": ..., "payload": ...}``. The socket gateway that relays those
channels to browsers is an external collaborator.

``REDIS_URL=memory://`` selects an in-process transport that records every
event; development and tests use it.

Delivery is at-least-once at best. ``push`` raises
``TransientIntegrationError`` on failure and callers log and swallow it.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Iterable

import redis

from docflow.core.exceptions import TransientIntegrationError

logger = logging.getLogger(__name__)

CHANNEL = "realtime"
DEFAULT_PREFIX = "docflow:notify"


def channel_for(prefix: str, user_id: int) -> str:
    return f"{prefix}:user:{user_id}"


class InMemoryTransport:
    """Records pushed events in-process. Dev/testing backend."""

    def __init__(self, prefix: str = DEFAULT_PREFIX):
        self.prefix = prefix
        self.events: list[dict] = []
        self._lock = threading.Lock()

    def push(self, user_ids: Iterable[int], event_name: str, payload: dict) -> int:
        with self._lock:
            for uid in user_ids:
                self.events.append({
                    "channel": channel_for(self.prefix, uid),
                    "user_id": uid,
                    "event": event_name,
                    "payload": payload,
                })
        return len(self.events)

    def events_for(self, user_id: int) -> list[dict]:
        return [e for e in self.events if e["user_id"] == user_id]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()

    def ping(self) -> bool:
        return True


class RedisPubSubTransport:
    """Publishes each event on the recipient's Redis channel."""

    def __init__(self, url: str, prefix: str = DEFAULT_PREFIX):
        self.prefix = prefix
        self._client = redis.from_url(url, socket_timeout=2, decode_responses=True)

    def push(self, user_ids: Iterable[int], event_name: str, payload: dict) -> int:
        message = json.dumps({"event": event_name, "payload": payload}, default=str)
        delivered = 0
        try:
            for uid in user_ids:
                delivered += self._client.publish(channel_for(self.prefix, uid), message)
        except redis.RedisError as exc:
            raise TransientIntegrationError(CHANNEL, str(exc)) from exc
        return delivered

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False


# ── Singleton transport ──────────────────────────────────────────────────

_transport = None


def init_app(app) -> None:
    """Build the transport from app config and register it on the app."""
    global _transport
    url = app.config.get("REDIS_URL", "memory://")
    prefix = app.config.get("REALTIME_CHANNEL_PREFIX", DEFAULT_PREFIX)
    if url.startswith("memory://"):
        _transport = InMemoryTransport(prefix)
        logger.info("Realtime: using in-memory transport")
    else:
        _transport = RedisPubSubTransport(url, prefix)
        logger.info("Realtime: using Redis pub/sub at %s", url.split("@")[-1])
    app.extensions["realtime"] = _transport


def get_transport():
    global _transport
    if _transport is None:
        _transport = InMemoryTransport()
    return _transport


def set_transport(transport) -> None:
    """Swap the active transport (tests inject failing/recording doubles)."""
    global _transport
    _transport = transport
