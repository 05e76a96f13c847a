"""MQTT chat bus: publishing room messages and bridging room topics to a router."""

from __future__ import annotations

import dataclasses
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)

ROOM_TOPIC_PREFIX = "room/"
ROOM_WILDCARD = "room/+"

_CONNECT_TIMEOUT = 10.0
_PUBLISH_TIMEOUT = 5.0
_KEEPALIVE = 30
_DEFAULT_PORT = 1883
_TLS_SCHEMES = {"ssl", "tls", "mqtts"}

Route = Callable[[str, bytes], None]


class MqttError(Exception):
    """Raised when connecting, subscribing or publishing fails."""


def _str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{key}: expected a string")
    return value


def _int(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key}: expected an integer")
    return value


def _bool(data: Mapping[str, Any], key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValueError(f"{key}: expected a boolean")
    return value


@dataclass
class MqttChatMessage:
    """Chat message shared by users and bots; ``is_bot`` tells them apart."""

    id: str = ""
    match_id: str = ""
    room_id: str = ""
    user_id: str = ""
    content: str = ""
    timestamp: int = 0
    is_bot: bool = False
    persona_id: str = ""
    event_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.id:
            out["id"] = self.id
        if self.match_id:
            out["match_id"] = self.match_id
        out["room_id"] = self.room_id
        if self.user_id:
            out["user_id"] = self.user_id
        out["content"] = self.content
        out["timestamp"] = self.timestamp
        out["is_bot"] = self.is_bot
        if self.persona_id:
            out["persona_id"] = self.persona_id
        if self.event_type:
            out["event_type"] = self.event_type
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MqttChatMessage":
        if not isinstance(data, Mapping):
            raise ValueError("chat message must be a JSON object")
        return cls(
            id=_str(data, "id"),
            match_id=_str(data, "match_id"),
            room_id=_str(data, "room_id"),
            user_id=_str(data, "user_id"),
            content=_str(data, "content"),
            timestamp=_int(data, "timestamp"),
            is_bot=_bool(data, "is_bot"),
            persona_id=_str(data, "persona_id"),
            event_type=_str(data, "event_type"),
        )


def _encode(msg: MqttChatMessage) -> bytes:
    return json.dumps(msg.to_dict(), ensure_ascii=False, separators=(",", ":")).encode("utf-8")


class MqttPublisher:
    """Publishes chat messages to ``room/<room_id>`` with QoS 1."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def publish(self, room_id: str, msg: MqttChatMessage) -> MqttChatMessage:
        """Publish ``msg`` to the room; returns the message as it was sent."""
        if not room_id:
            raise MqttError("roomID is required")
        topic = f"{ROOM_TOPIC_PREFIX}{room_id}"
        sent = dataclasses.replace(
            msg, room_id=room_id, timestamp=msg.timestamp or int(time.time())
        )
        data = _encode(sent)
        try:
            info = self._client.publish(topic, payload=data, qos=1, retain=False)
            if int(info.rc) != 0:
                raise MqttError(f"MQTT publish to {topic}: error code {info.rc}")
            info.wait_for_publish(timeout=_PUBLISH_TIMEOUT)
        except (RuntimeError, ValueError, OSError) as exc:
            raise MqttError(f"MQTT publish to {topic}: {exc}") from exc
        logger.info("[MQTT] Published to %s: %.80s", topic, data.decode("utf-8", "replace"))
        return sent

    def publish_bot_message(self, room_id: str, msg: MqttChatMessage) -> MqttChatMessage:
        return self.publish(room_id, dataclasses.replace(msg, is_bot=True))

    def publish_user_message(self, room_id: str, msg: MqttChatMessage) -> MqttChatMessage:
        return self.publish(room_id, dataclasses.replace(msg, is_bot=False))


class ConsumerBridge:
    """Forwards messages from every ``room/<id>`` topic to a router callback."""

    def __init__(self, client: Any, route: Route | None) -> None:
        self._client = client
        self._route = route

    def start(self, stop_event: threading.Event) -> None:
        """Subscribe to all rooms and forward messages until ``stop_event`` is set."""
        self._client.on_message = self._on_message
        result = self._client.subscribe(ROOM_WILDCARD, qos=1)
        rc = result[0] if isinstance(result, tuple) else result
        if int(rc) != 0:
            raise MqttError(f"MQTT subscribe failed: error code {rc}")
        logger.info("[Bridge] Subscribed to %s", ROOM_WILDCARD)
        stop_event.wait()
        self._client.disconnect()

    def _on_message(self, _client: Any, _userdata: Any, message: Any) -> None:
        self.handle_message(message.topic, message.payload)

    def handle_message(self, topic: str, payload: bytes | str) -> bytes | None:
        """Normalise one message and route it; returns what was routed, or None if dropped."""
        room_id = topic.removeprefix(ROOM_TOPIC_PREFIX)
        if not room_id:
            logger.warning("[Bridge] empty room from topic=%s", topic)
            return None
        try:
            doc = json.loads(payload)
            msg = MqttChatMessage() if doc is None else MqttChatMessage.from_dict(doc)
        except (ValueError, TypeError, UnicodeDecodeError) as exc:
            logger.warning("[Bridge] Unmarshal failed topic=%s: %s", topic, exc)
            return None
        if not msg.room_id:
            msg.room_id = room_id
        if not msg.match_id:
            msg.match_id = room_id.removeprefix("room-")
        normalized = _encode(msg)
        if self._route is not None:
            self._route(room_id, normalized)
        logger.info("[Bridge] Routed to room=%s is_bot=%s", room_id, msg.is_bot)
        return normalized


def _parse_broker_url(broker_url: str) -> tuple[str, int, bool]:
    text = broker_url.strip()
    if "://" not in text:
        text = f"tcp://{text}"
    parts = urlsplit(text)
    if not parts.hostname:
        raise MqttError(f"invalid broker URL {broker_url!r}")
    try:
        port = parts.port or _DEFAULT_PORT
    except ValueError as exc:
        raise MqttError(f"invalid broker URL {broker_url!r}") from exc
    return parts.hostname, port, parts.scheme.lower() in _TLS_SCHEMES


def _new_client(client_id: str) -> Any:
    api_version = getattr(mqtt, "CallbackAPIVersion", None)
    if api_version is not None:
        return mqtt.Client(callback_api_version=api_version.VERSION2, client_id=client_id)
    return mqtt.Client(client_id=client_id)


def _is_failure(reason: Any) -> bool:
    flag = getattr(reason, "is_failure", None)
    if flag is not None:
        return bool(flag)
    return int(reason) != 0


def _connect_client(broker_url: str, client_id: str) -> Any:
    host, port, use_tls = _parse_broker_url(broker_url)
    client = _new_client(client_id)
    if use_tls:
        client.tls_set()
    client.reconnect_delay_set(min_delay=1, max_delay=60)

    connected = threading.Event()
    outcome: dict[str, Any] = {}

    def on_connect(_client: Any, _userdata: Any, _flags: Any, reason: Any, *_rest: Any) -> None:
        outcome["reason"] = reason
        connected.set()

    def on_disconnect(_client: Any, _userdata: Any, *args: Any) -> None:
        logger.warning("[MQTT] Connection lost: %s", args)

    client.on_connect = on_connect
    client.on_disconnect = on_disconnect
    try:
        client.connect(host, port, keepalive=_KEEPALIVE)
    except (OSError, ValueError) as exc:
        raise MqttError(f"MQTT connect failed: {exc}") from exc
    client.loop_start()
    if not connected.wait(_CONNECT_TIMEOUT):
        client.loop_stop()
        raise MqttError(f"MQTT connect failed: no answer from {broker_url}")
    if _is_failure(outcome["reason"]):
        client.loop_stop()
        raise MqttError(f"MQTT connect failed: {outcome['reason']}")
    return client


def connect_publisher(broker_url: str, client_id: str) -> MqttPublisher:
    """Connect to the broker and return a publisher."""
    client = _connect_client(broker_url, client_id)
    logger.info("[MQTT] Connected to %s as %s", broker_url, client_id)
    return MqttPublisher(client)


def connect_bridge(broker_url: str, client_id: str, route: Route | None) -> ConsumerBridge:
    """Connect to the broker and return a bridge forwarding room messages to ``route``."""
    return ConsumerBridge(_connect_client(broker_url, client_id), route)