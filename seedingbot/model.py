"""Domain model: match events, chat messages, personas, LLM payloads and templates."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import Any, Mapping

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


class EventType(str, Enum):
    """Incident types produced by the live-match feed."""

    GOAL = "GOAL"
    CORNER = "CORNER"
    YELLOW_CARD = "YELLOW_CARD"
    RED_CARD = "RED_CARD"
    OFFSIDE = "OFFSIDE"
    FREE_KICK = "FREE_KICK"
    GOAL_KICK = "GOAL_KICK"
    PENALTY = "PENALTY"
    SUBSTITUTION = "SUBSTITUTION"
    START = "START"
    MIDFIELD = "MIDFIELD"
    END = "END"
    HALFTIME_SCORE = "HALFTIME_SCORE"
    CARD_UPGRADE_CONFIRMED = "CARD_UPGRADE_CONFIRMED"
    PENALTY_MISSED = "PENALTY_MISSED"
    OWN_GOAL = "OWN_GOAL"
    INJURY_TIME = "INJURY_TIME"


class ReplyType(str, Enum):
    QUICK = "quick"
    QUALITY = "quality"
    SKIP = "skip"


class ReplyPriority(IntEnum):
    LOW = 1
    MEDIUM = 5
    HIGH = 8
    URGENT = 10


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class MatchPhase(str, Enum):
    WAITING = "waiting"
    PREMATCH = "prematch"
    LIVE = "live"
    ENDED = "ended"


_KINDS: dict[str, Any] = {"str": str, "int": int, "bool": bool, "float": (int, float)}


def _mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise TypeError(f"{what} must be a mapping, got {type(data).__name__}")
    return data


def _sub(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"field {key!r}: expected object, got {type(value).__name__}")
    return value


def _items(data: Mapping[str, Any], key: str) -> list[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"field {key!r}: expected list, got {type(value).__name__}")
    return value


def _get(data: Mapping[str, Any], key: str, type_name: str) -> Any:
    """Return the typed value under ``key``, or None when it is absent."""
    value = data.get(key)
    if value is None:
        return None
    if type_name == "list[str]":
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ValueError(f"field {key!r}: expected list of strings")
        return list(value)
    if (isinstance(value, bool) and type_name != "bool") or not isinstance(
        value, _KINDS[type_name]
    ):
        raise ValueError(f"field {key!r}: expected {type_name}, got {type(value).__name__}")
    return float(value) if type_name == "float" else value


def _flat(cls: type, data: Any, what: str, **overrides: Any) -> Any:
    """Decode the scalar and string-list fields of ``cls``; ``overrides`` supply the rest."""
    data = _mapping(data, what)
    kwargs = dict(overrides)
    for f in fields(cls):
        if f.name in overrides:
            continue
        value = _get(data, f.name, f.type)
        if value is not None:
            kwargs[f.name] = value
    return cls(**kwargs)


_TIME_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(\.\d+)?(Z|[+-]\d{2}:\d{2})$"
)


def _parse_time(text: str) -> datetime:
    match = _TIME_RE.match(text)
    if not match:
        raise ValueError(f"invalid RFC 3339 time: {text!r}")
    *parts, fraction, zone = match.groups()
    micro = int((fraction[1:] + "000000")[:6]) if fraction else 0
    tz = timezone.utc
    if zone != "Z":
        sign = 1 if zone[0] == "+" else -1
        tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))
    return datetime(*map(int, parts), micro, tzinfo=tz)


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset() or timedelta(0)
    if not offset:
        return text + "Z"
    sign = "+" if offset > timedelta(0) else "-"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _time(data: Mapping[str, Any], key: str) -> datetime:
    value = _get(data, key, "str")
    return ZERO_TIME if value is None else _parse_time(value)


@dataclass
class UserMessage:
    user_id: str = ""
    user_name: str = ""
    content: str = ""


@dataclass
class DetectIntent:
    sentiment: str = ""
    language: str = ""
    team_bias: str = ""
    main_topic: list[str] = field(default_factory=list)
    requires_reply: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> "DetectIntent":
        return _flat(cls, data, "intent")


@dataclass
class BotReply:
    text: str = ""
    persona_id: str = ""
    reply_type: str = ""
    priority: int = 0
    confidence: float = 0.0
    intent: DetectIntent | None = None
    meta: dict[str, str] = field(default_factory=dict)
    generated_at: datetime = ZERO_TIME
    latency_ms: int = 0


@dataclass
class UserSentimentHistory:
    user_id: str = ""
    match_id: str = ""
    recent_messages: list[str] = field(default_factory=list)
    sentiment: str = ""
    team_bias: str = ""
    toxicity_score: float = 0.0
    last_updated: datetime = ZERO_TIME


@dataclass
class ReplyTemplate:
    id: str = ""
    intent_pattern: str = ""
    persona: str = ""
    templates: list[str] = field(default_factory=list)
    conditions: dict[str, str] = field(default_factory=dict)
    priority: int = 0


@dataclass
class MatchEvent:
    """A single in-game incident."""

    match_id: str = ""
    league_id: str = ""
    type: str = ""
    position: int = 0
    minute: int = 0
    add_time: int = 0
    home_score: int = 0
    away_score: int = 0
    player_name: str = ""
    in_player_name: str = ""
    out_player_name: str = ""
    reason_type: int = 0
    home_team: str = ""
    away_team: str = ""
    team_side: str = ""
    timestamp: int = 0

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        if not self.team_side:
            del out["team_side"]
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "MatchEvent":
        return _flat(cls, data, "match event")


@dataclass
class CompactEvent:
    type: str = ""
    minute: int = 0
    add_time: int = 0
    team_side: str = ""
    player_name: str = ""
    home_score: int = 0
    away_score: int = 0
    summary: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> "CompactEvent":
        return _flat(cls, data, "compact event")


@dataclass
class EventsBundle:
    match_events: list[MatchEvent] = field(default_factory=list)


@dataclass
class LLMMessage:
    role: str = ""
    content: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class LLMRequest:
    """OpenAI-compatible chat completion request."""

    model: str = ""
    messages: list[LLMMessage] = field(default_factory=list)
    temperature: float = 0.0
    max_tokens: int = 0
    stream: bool = False

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        for key in ("temperature", "max_tokens", "stream"):
            if not out[key]:
                del out[key]
        return out


@dataclass
class LLMResponse:
    text: str = ""
    language: str = ""
    style_tags: list[str] = field(default_factory=list)
    risk_flags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        for key in ("style_tags", "risk_flags"):
            if not out[key]:
                del out[key]
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "LLMResponse":
        return _flat(cls, data, "LLM response")


@dataclass
class VLLMChoice:
    message: LLMMessage = field(default_factory=LLMMessage)
    finish_reason: str = ""


@dataclass
class VLLMRawResponse:
    """Raw chat completion envelope returned by the model server."""

    choices: list[VLLMChoice] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "VLLMRawResponse":
        data = _mapping(data, "completion response")
        return cls(
            choices=[
                _flat(
                    VLLMChoice,
                    item,
                    "choice",
                    message=_flat(LLMMessage, _sub(_mapping(item, "choice"), "message"), "message"),
                )
                for item in _items(data, "choices")
            ]
        )


@dataclass
class Team:
    id: str = ""
    name: str = ""
    short_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> "Team":
        return _flat(cls, data, "team")


@dataclass
class Country:
    id: str = ""
    name: str = ""


@dataclass
class Category:
    id: str = ""
    name: str = ""


@dataclass
class Competition:
    id: str = ""
    name: str = ""
    tier: int = 0
    country: Country = field(default_factory=Country)
    category: Category = field(default_factory=Category)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> "Competition":
        data = _mapping(data, "competition")
        return _flat(
            cls,
            data,
            "competition",
            country=_flat(Country, _sub(data, "country"), "country"),
            category=_flat(Category, _sub(data, "category"), "category"),
        )


@dataclass
class MatchDailyCatchFromRedis:
    """Entry of the daily match schedule cached in Redis."""

    match_id: str = ""
    home_team: Team = field(default_factory=Team)
    away_team: Team = field(default_factory=Team)
    competition: Competition = field(default_factory=Competition)
    match_time: int = 0
    date: str = ""

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        return {"id": out.pop("match_id"), **out}

    @classmethod
    def from_dict(cls, data: Any) -> "MatchDailyCatchFromRedis":
        data = _mapping(data, "daily match")
        return _flat(
            cls,
            data,
            "daily match",
            match_id=_get(data, "id", "str") or "",
            home_team=Team.from_dict(_sub(data, "home_team")),
            away_team=Team.from_dict(_sub(data, "away_team")),
            competition=Competition.from_dict(_sub(data, "competition")),
        )


@dataclass
class MatchState:
    """Current snapshot of a match: teams, competition, phase, score and events."""

    match_id: str = ""
    room_id: str = ""
    home_team: Team = field(default_factory=Team)
    away_team: Team = field(default_factory=Team)
    competition: Competition = field(default_factory=Competition)
    match_time: int = 0
    date: str = ""
    phase: str = ""
    minute: int = 0
    home_score: int = 0
    away_score: int = 0
    events: list[MatchEvent] = field(default_factory=list)
    updated_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["events"] = [e.to_dict() for e in self.events]
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "MatchState":
        data = _mapping(data, "match state")
        return _flat(
            cls,
            data,
            "match state",
            home_team=Team.from_dict(_sub(data, "home_team")),
            away_team=Team.from_dict(_sub(data, "away_team")),
            competition=Competition.from_dict(_sub(data, "competition")),
            events=[MatchEvent.from_dict(e) for e in _items(data, "events")],
        )


@dataclass
class DraftMessage:
    text: str = ""
    match_id: str = ""
    event_type: str = ""
    persona_id: str = ""
    meta: dict[str, str] = field(default_factory=dict)
    created_at: datetime = ZERO_TIME


@dataclass
class ChatMessage:
    """A chat line in a match room, from a user or a bot persona."""

    id: str = ""
    content: str = ""
    timestamp: int = 0
    is_bot: bool = False
    persona: str = ""
    match_id: str = ""
    room_id: str = ""
    event_type: str = ""
    created_at: datetime = ZERO_TIME

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        if not self.event_type:
            del out["event_type"]
        out["created_at"] = _format_time(self.created_at)
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "ChatMessage":
        data = _mapping(data, "chat message")
        return _flat(cls, data, "chat message", created_at=_time(data, "created_at"))


@dataclass
class ChatContext:
    room_id: str = ""
    last_bot_messages: list[str] = field(default_factory=list)
    last_message_hashes: list[str] = field(default_factory=list)
    last_message_time: int = 0
    last_persona_used: str = ""
    raw_messages: list[ChatMessage] = field(default_factory=list)


@dataclass
class AudienceSignal:
    sentiment: str = ""
    chat_velocity: float = 0.0
    dominant_team: str = ""
    hot_topics: list[str] = field(default_factory=list)


@dataclass
class ContextBundle:
    match: MatchState = field(default_factory=MatchState)
    recent_events: list[CompactEvent] = field(default_factory=list)
    chat: ChatContext = field(default_factory=ChatContext)
    audience: AudienceSignal = field(default_factory=AudienceSignal)
    current_event: MatchEvent = field(default_factory=MatchEvent)


@dataclass
class PersonaProfile:
    name: str = ""
    language: list[str] = field(default_factory=list)
    tone: str = ""
    emoji_rate: float = 0.0
    sentence_length: str = ""
    slang_level: str = ""
    sarcasm_level: str = ""
    team_bias: str = ""
    seed_phrases: list[str] = field(default_factory=list)
    description: str = ""


@dataclass
class PersonaPolicy:
    weight_base: int = 0
    allowed_event_types: list[str] = field(default_factory=list)
    blocked_event_types: list[str] = field(default_factory=list)
    cooldown_seconds: int = 0
    event_weight: dict[str, int] = field(default_factory=dict)


@dataclass
class Persona:
    id: str = ""
    enabled: bool = False
    profile: PersonaProfile = field(default_factory=PersonaProfile)
    policy: PersonaPolicy = field(default_factory=PersonaPolicy)

    @classmethod
    def from_dict(cls, data: Any) -> "Persona":
        """Build a persona from its YAML document; the policy lives under ``rules``."""
        data = _mapping(data, "persona")
        rules = _sub(data, "rules")
        weights = _sub(rules, "event_weight")
        return _flat(
            cls,
            data,
            "persona",
            profile=_flat(PersonaProfile, _sub(data, "profile"), "profile"),
            policy=_flat(
                PersonaPolicy,
                rules,
                "rules",
                event_weight={str(k): _get(weights, k, "int") or 0 for k in weights},
            ),
        )


@dataclass
class PersonaScore:
    persona: Persona = field(default_factory=Persona)
    score: int = 0


@dataclass
class QualityResult:
    is_pass: bool = False
    reason: list[str] = field(default_factory=list)
    action: list[str] = field(default_factory=list)


@dataclass
class QualityCheckConfig:
    min_length: int = 0
    max_length: int = 0
    banned_words: list[str] = field(default_factory=list)
    dedup_ttl: int = 0


@dataclass
class Template:
    id: str = ""
    phase: str = ""
    event_type: str = ""
    lang: str = ""
    persona_id: str = ""
    text: str = ""
    priority: int = 0
    enabled: bool = False
    conditions: dict[str, Any] = field(default_factory=dict)
    created_at: int = 0
    updated_at: int = 0


@dataclass
class TemplateCondition:
    minute_range: list[int] = field(default_factory=list)
    score_diff: list[int] = field(default_factory=list)