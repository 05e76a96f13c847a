"""Application configuration: YAML loading, seeding policy and bot scaling settings."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from fractions import Fraction
from pathlib import Path
from typing import Any, Mapping

import yaml

from seedingbot.model import QualityCheckConfig

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration is missing, malformed or invalid."""


class ScalerState(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    PEAK = "peak"


@dataclass
class MaxBotsConfig:
    min_bots: int = 0
    max_bots: int = 0
    state: ScalerState = ScalerState.LOW

    def bot_count_for(self) -> int:
        """Number of bots to run for this configuration (the lower bound)."""
        return self.min_bots


@dataclass
class KafkaConfig:
    brokers: list[str] = field(default_factory=list)
    username: str = ""
    password: str = ""
    topic: str = ""
    retries: int = 0
    producer_return_success: bool = False


@dataclass
class LogConfig:
    rotation_size: int = 0
    rotation_count: int = 0


@dataclass
class LLMConfig:
    api_url: str = ""
    model: str = ""
    timeout: timedelta = timedelta(0)


@dataclass
class VLLMConfig:
    api_url: str = ""
    model: str = ""
    timeout: timedelta = timedelta(0)


@dataclass
class RedisConfig:
    addr: str = ""
    username: str = ""
    password: str = ""
    db: int = 0


@dataclass
class DatabaseConfig:
    url: str = ""


@dataclass
class SeedingPolicy:
    """Tunable seeding parameters."""

    max_messages_bot: int = 0
    bot_ratio: float = 0.0
    cooldown: timedelta = timedelta(0)
    max_events_per_hour: int = 0
    depup_window: timedelta = timedelta(0)
    enable_kill_switch: bool = False

    def validate(self) -> None:
        if self.max_messages_bot <= 0:
            raise ConfigError("max_messages_bot must be > 0")
        if self.bot_ratio < 0 or self.bot_ratio > 1:
            raise ConfigError("bot_ratio must be between 0 and 1")
        if self.cooldown <= timedelta(0):
            raise ConfigError("cooldown must be > 0")


@dataclass
class KafkaConfigStruct:
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    log: LogConfig = field(default_factory=LogConfig)
    seeding_policy: SeedingPolicy = field(default_factory=SeedingPolicy)


def default_seeding_policy() -> SeedingPolicy:
    return SeedingPolicy(
        max_messages_bot=100,
        bot_ratio=0.3,
        cooldown=timedelta(seconds=60),
        max_events_per_hour=1000,
        depup_window=timedelta(hours=24),
        enable_kill_switch=True,
    )


def max_messages_bot_event_type(event_type: str) -> int:
    """Per-event cap on bot messages."""
    if event_type == "goal":
        return 5
    if event_type == "red_card":
        return 3
    return 2


# ---------------------------------------------------------------------------
# durations

_NANOS_PER_UNIT = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_COMPONENT = re.compile(r"(\d*)(?:\.(\d*))?([^\d.]+)")


def parse_duration(value: Any) -> timedelta:
    """Parse a duration such as ``"1h30m"``, ``"300ms"`` or an integer count of nanoseconds."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration {value!r}")
    if isinstance(value, int):
        return timedelta(microseconds=round(Fraction(value, 1000)))
    if not isinstance(value, str):
        raise ConfigError(f"invalid duration {value!r}")

    text = value
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text:
        raise ConfigError(f"invalid duration {value!r}")

    total = Fraction(0)
    pos = 0
    while pos < len(text):
        match = _COMPONENT.match(text, pos)
        if match is None:
            raise ConfigError(f"invalid duration {value!r}: missing unit")
        whole, frac, unit = match.groups()
        if not whole and not frac:
            raise ConfigError(f"invalid duration {value!r}")
        if unit not in _NANOS_PER_UNIT:
            raise ConfigError(f"invalid duration {value!r}: unknown unit {unit!r}")
        amount = Fraction(int(whole or "0"))
        if frac:
            amount += Fraction(int(frac), 10 ** len(frac))
        total += amount * _NANOS_PER_UNIT[unit]
        pos = match.end()

    try:
        return timedelta(microseconds=round(sign * total / 1000))
    except OverflowError as exc:
        raise ConfigError(f"invalid duration {value!r}: out of range") from exc


# ---------------------------------------------------------------------------
# decoding


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"{key}: expected a mapping, got {type(value).__name__}")
    return value


def _str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ConfigError(f"{key}: expected a string, got {type(value).__name__}")
    return value


def _int(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key}: expected an integer, got {type(value).__name__}")
    return value


def _float(data: Mapping[str, Any], key: str) -> float:
    value = data.get(key)
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{key}: expected a number, got {type(value).__name__}")
    return float(value)


def _bool(data: Mapping[str, Any], key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ConfigError(f"{key}: expected a boolean, got {type(value).__name__}")
    return value


def _str_list(data: Mapping[str, Any], key: str) -> list[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"{key}: expected a list of strings")
    return list(value)


def _duration(data: Mapping[str, Any], key: str) -> timedelta:
    value = data.get(key)
    if value is None:
        return timedelta(0)
    try:
        return parse_duration(value)
    except ConfigError as exc:
        raise ConfigError(f"{key}: {exc}") from exc


def _kafka(data: Mapping[str, Any]) -> KafkaConfig:
    return KafkaConfig(
        brokers=_str_list(data, "brokers"),
        username=_str(data, "username"),
        password=_str(data, "password"),
        topic=_str(data, "topic"),
        retries=_int(data, "retries"),
        producer_return_success=_bool(data, "producer_return_success"),
    )


def _redis(data: Mapping[str, Any]) -> RedisConfig:
    return RedisConfig(
        addr=_str(data, "addr"),
        username=_str(data, "username"),
        password=_str(data, "password"),
        db=_int(data, "db"),
    )


def _vllm(data: Mapping[str, Any]) -> VLLMConfig:
    return VLLMConfig(
        api_url=_str(data, "api_url"),
        model=_str(data, "model"),
        timeout=_duration(data, "timeout"),
    )


def _policy(data: Mapping[str, Any]) -> SeedingPolicy:
    return SeedingPolicy(
        max_messages_bot=_int(data, "max_messages_bot"),
        bot_ratio=_float(data, "bot_ratio"),
        cooldown=_duration(data, "cooldown"),
        max_events_per_hour=_int(data, "max_events_per_hour"),
        depup_window=_duration(data, "depup_window"),
        enable_kill_switch=_bool(data, "enable_kill_switch"),
    )


def _quality(data: Mapping[str, Any]) -> QualityCheckConfig:
    return QualityCheckConfig(
        min_length=_int(data, "min_length"),
        max_length=_int(data, "max_length"),
        banned_words=_str_list(data, "banned_words"),
        dedup_ttl=_int(data, "dedup_ttl"),
    )


@dataclass
class Config:
    """Top-level application configuration."""

    service_name: str = ""
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    vllm: VLLMConfig = field(default_factory=VLLMConfig)
    seeding_policy: SeedingPolicy = field(default_factory=SeedingPolicy)
    quality: QualityCheckConfig = field(default_factory=QualityCheckConfig)
    redis_matches: RedisConfig = field(default_factory=RedisConfig)

    def validate(self) -> None:
        if not self.service_name:
            raise ConfigError("service name required")

    @classmethod
    def from_dict(cls, data: Any) -> "Config":
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ConfigError(f"config must be a mapping, got {type(data).__name__}")
        return cls(
            service_name=_str(data, "service_name"),
            kafka=_kafka(_section(data, "kafka")),
            redis=_redis(_section(data, "redis")),
            database=DatabaseConfig(url=_str(_section(data, "database"), "url")),
            vllm=_vllm(_section(data, "vllm")),
            seeding_policy=_policy(_section(data, "seeding_policy")),
            quality=_quality(_section(data, "quality")),
            redis_matches=_redis(_section(data, "redis_matches")),
        )


def load(path: str | Path) -> Config:
    """Load configuration from a YAML file."""
    file = Path(path)
    if not file.exists():
        raise ConfigError(f"config file does not exist: {path}")
    try:
        text = file.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"read config file failed: {exc}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"unmarshal config failed: {exc}") from exc
    cfg = Config.from_dict(data)

    logger.info("Config loaded from %s", path)
    logger.info("   ServiceName: %s", cfg.service_name)
    logger.info("   Kafka Topic: %s", cfg.kafka.topic)
    if cfg.redis_matches.addr:
        logger.info("   Redis Matches: %s", cfg.redis_matches.addr)
    else:
        logger.info("   Redis: %s", cfg.redis.addr)
    logger.info("   Database: %s", cfg.database.url)
    logger.info("   VLLM API URL: %s", cfg.vllm.api_url)
    logger.info("   VLLM Model: %s", cfg.vllm.model)
    logger.info("   VLLM Timeout: %s", cfg.vllm.timeout)
    logger.info("   MaxMessagesBot: %d", cfg.seeding_policy.max_messages_bot)
    logger.info("   BotRatio: %.2f", cfg.seeding_policy.bot_ratio)
    logger.info("   Cooldown: %s", cfg.seeding_policy.cooldown)
    logger.info("   Quality MinLength: %d", cfg.quality.min_length)
    logger.info("   Quality MaxLength: %d", cfg.quality.max_length)
    logger.info("   Banned Words: %d items", len(cfg.quality.banned_words))
    return cfg