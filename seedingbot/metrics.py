"""In-process counters rendered in the Prometheus text exposition format."""

from __future__ import annotations

import math
import threading
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping

_HEADER = (
    "# TYPE seeding_events_total counter\n"
    "# TYPE seeding_quality_filter_rejected_total counter\n"
    "# TYPE seeding_messages_published_total counter\n"
    "# TYPE llm_requests_total counter\n"
    "# TYPE seeding_shadowban_skipped_total counter\n"
)


def _sanitize(text: str) -> str:
    text = text.strip()
    if not text:
        return "unknown"
    return text.replace("\\", "\\\\").replace('"', '\\"')


def _metric_key(name: str, labels: Mapping[str, str] | None) -> str:
    if not labels:
        return name
    parts = sorted(f'{_sanitize(k)}="{_sanitize(v)}"' for k, v in labels.items())
    return f"{_sanitize(name)}{{{','.join(parts)}}}"


def _format_value(value: float) -> str:
    """Shortest representation, switching to exponent form outside 1e-4 .. 1e6."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"
    sign, digit_tuple, exponent = Decimal(repr(value)).normalize().as_tuple()
    digits = "".join(map(str, digit_tuple))
    prefix = "-" if sign else ""
    point = len(digits) + exponent  # position of the decimal point
    exp10 = point - 1
    if exp10 < -4 or exp10 >= 6:
        mantissa = digits[0] + ("." + digits[1:] if len(digits) > 1 else "")
        exp_sign = "-" if exp10 < 0 else "+"
        return f"{prefix}{mantissa}e{exp_sign}{abs(exp10):02d}"
    if point <= 0:
        return f"{prefix}0.{'0' * -point}{digits}"
    if point >= len(digits):
        return prefix + digits + "0" * (point - len(digits))
    return f"{prefix}{digits[:point]}.{digits[point:]}"


class MetricsRegistry:
    """Thread-safe set of named, labelled counters."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, float] = {}

    def inc(self, name: str, labels: Mapping[str, str] | None = None) -> None:
        self.add(name, labels, 1.0)

    def add(self, name: str, labels: Mapping[str, str] | None, value: float) -> None:
        key = _metric_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0.0) + value

    def snapshot(self) -> str:
        with self._lock:
            items = sorted(self._counters.items())
        lines = [f"{key} {_format_value(value)}\n" for key, value in items]
        return _HEADER + "".join(lines)


_registry = MetricsRegistry()


def inc(name: str, labels: Mapping[str, str] | None = None) -> None:
    _registry.inc(name, labels)


def add(name: str, labels: Mapping[str, str] | None, value: float) -> None:
    _registry.add(name, labels, value)


def snapshot() -> str:
    return _registry.snapshot()


def wsgi_app(environ: Mapping[str, Any], start_response: Callable[..., Any]) -> Iterable[bytes]:
    """WSGI endpoint serving the default registry."""
    body = snapshot().encode("utf-8")
    start_response(
        "200 OK",
        [
            ("Content-Type", "text/plain; version=0.0.4; charset=utf-8"),
            ("Content-Length", str(len(body))),
        ],
    )
    return [body]