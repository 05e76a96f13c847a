"""Chat message publishers: WebSocket broadcast and a circuit-breaker wrapper."""

from __future__ import annotations

import json
import logging
from typing import Callable

from seedingbot.circuitbreaker import Breaker
from seedingbot.model import ChatMessage
from seedingbot.ports import PublisherService

logger = logging.getLogger(__name__)

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _encode(msg: ChatMessage) -> bytes:
    text = json.dumps(msg.to_dict(), ensure_ascii=False, separators=(",", ":"))
    for char, escaped in _HTML_ESCAPES.items():
        text = text.replace(char, escaped)
    return text.encode("utf-8")


class WebSocketPublisher:
    """Serialises messages to JSON and hands them to a broadcast function."""

    def __init__(self, gateway_url: str) -> None:
        self.gateway_url = gateway_url
        self._broadcaster: Callable[[bytes], None] | None = None

    def set_broadcaster(self, broadcaster: Callable[[bytes], None] | None) -> None:
        self._broadcaster = broadcaster

    def publish(self, msg: ChatMessage) -> None:
        payload = _encode(msg)
        if self._broadcaster is not None:
            self._broadcaster(payload)
        else:
            logger.warning(
                "[WEBSOCKET] No broadcaster set, message not sent: %d bytes", len(payload)
            )


class CircuitBreakerPublisher:
    """Publishes through another publisher under a circuit breaker."""

    def __init__(self, base_publisher: PublisherService, breaker: Breaker) -> None:
        self._base = base_publisher
        self._breaker = breaker

    def publish(self, msg: ChatMessage) -> None:
        self._breaker.execute(lambda: self._base.publish(msg))