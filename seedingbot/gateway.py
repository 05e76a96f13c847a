"""LLM gateway: prompt building, response parsing and intent/sentiment detection."""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any, Mapping, Protocol

from seedingbot.model import (
    ContextBundle,
    DetectIntent,
    LLMMessage,
    LLMRequest,
    LLMResponse,
    MatchState,
    Persona,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:11434"
DEFAULT_MODEL = "qwen2.5:7b"

_ALLOWED_TOPICS = frozenset(
    {"score", "stats", "lineup", "goal", "card", "substitution", "time", "greeting", "other"}
)
_SENTIMENT_ALIASES = {
    "positive": "positive",
    "neutral": "neutral",
    "negative": "negative",
    "excited": "positive",
    "happy": "positive",
    "sad": "negative",
    "angry": "negative",
    "frustrated": "negative",
}

_INTENT_INSTRUCTION = """You are an intent analyzer for a football match chat.
Return ONLY valid JSON, no markdown, no code fences:

{
  "sentiment": "positive|neutral|negative",
  "team_bias": "<team_name or none>",
  "main_topic": "score|stats|lineup|goal|card|substitution|time|greeting|other",
  "requires_reply": true|false
}

Rules:
- sentiment: positive (happy/excited), negative (sad/angry), neutral
- team_bias: team the user supports/mentions, or "none"
- requires_reply: false only for random noise or very short messages"""

_SENTIMENT_INSTRUCTION = (
    "Classify the overall sentiment of these football chat messages. "
    "Return exactly one word: positive, neutral, or negative."
)

_SYSTEM_PROMPT = """You are a football fan chatting in a live match room.

Persona:
- ID: {id}
- Tone: {tone}
- Language: {language}
- Slang level: {slang}

Output rules:
- Write in {language} language only
- Max 100 characters
- Sound like a real fan, NOT a bot
- Use emojis naturally (not excessively)
- No hate speech, no personal attacks

Return ONLY valid JSON, no markdown:
{{"text":"<your message>","language":"{language}","style_tags":["<tag>"],"risk_flags":[]}}"""

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


class LLMError(Exception):
    """Raised when the model call fails or its output cannot be used."""


class _CompletionClient(Protocol):
    def complete(self, request: LLMRequest) -> str: ...


# ---------------------------------------------------------------------------
# JSON helpers


def _text(value: Any) -> str:
    return "" if value is None else str(getattr(value, "value", value))


def _json_default(value: Any) -> Any:
    if hasattr(value, "value"):
        return value.value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    raise TypeError(f"cannot encode {type(value).__name__}")


def _dumps(value: Any, sort_keys: bool = False) -> str:
    text = json.dumps(
        value,
        ensure_ascii=False,
        separators=(",", ":"),
        sort_keys=sort_keys,
        default=_json_default,
    )
    for char, escaped in _HTML_ESCAPES.items():
        text = text.replace(char, escaped)
    return text


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


def _loads(raw: str) -> Any:
    return json.loads(raw, parse_constant=_reject_constant)


class _Mismatch(Exception):
    """A JSON value has the wrong type for its field."""


def _as_str(value: Any) -> str:
    if not isinstance(value, str):
        raise _Mismatch
    return value


def _as_str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        raise _Mismatch
    return ["" if item is None else _as_str(item) for item in value]


def _as_bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise _Mismatch
    return value


def _as_any(value: Any) -> Any:
    return value


_RESPONSE_FIELDS = {
    "text": _as_str,
    "language": _as_str,
    "style_tags": _as_str_list,
    "risk_flags": _as_str_list,
}
_INTENT_FIELDS = {
    "sentiment": _as_str,
    "language": _as_str,
    "team_bias": _as_str,
    "main_topic": _as_str_list,
    "requires_reply": _as_bool,
}
_COMPAT_INTENT_FIELDS = {**_INTENT_FIELDS, "main_topic": _as_any}


def _field_for(key: str, schema: Mapping[str, Any]) -> str | None:
    if key in schema:
        return key
    folded = key.casefold()
    return next((name for name in schema if name.casefold() == folded), None)


def _decode_object(raw: str, schema: Mapping[str, Any]) -> tuple[dict[str, Any], bool]:
    """Decode a JSON object into the schema's fields.

    Returns the decoded values and whether decoding fully succeeded; values whose
    types match are kept even when another field fails.
    """
    try:
        doc = _loads(raw)
    except ValueError:
        return {}, False
    if doc is None:
        return {}, True
    if not isinstance(doc, dict):
        return {}, False
    values: dict[str, Any] = {}
    ok = True
    for key, value in doc.items():
        name = _field_for(key, schema)
        if name is None or value is None:
            continue
        try:
            values[name] = schema[name](value)
        except _Mismatch:
            ok = False
    return values, ok


def _response_from(fields: Mapping[str, Any]) -> LLMResponse:
    return LLMResponse(
        text=fields.get("text", ""),
        language=fields.get("language", ""),
        style_tags=list(fields.get("style_tags", [])),
        risk_flags=list(fields.get("risk_flags", [])),
    )


# ---------------------------------------------------------------------------
# output cleaning and parsing


def normalize_llm_json(s: str) -> str:
    """Strip code fences and surrounding text, keeping the outermost ``{...}``."""
    s = s.strip()
    if s.startswith("```"):
        s = s[3:].strip()
        if s.lower().startswith("json"):
            s = s[4:]
        s = s.strip()
        idx = s.rfind("```")
        if idx >= 0:
            s = s[:idx]
        s = s.strip()
    start = s.find("{")
    end = s.rfind("}")
    if start >= 0 and end > start:
        s = s[start : end + 1]
    return s.strip()


def try_repair_llm_json(raw: str) -> tuple[str, bool]:
    """Close unbalanced braces; returns the text and whether it changed."""
    s = raw.strip()
    if not s or "{" not in s:
        return raw, False
    missing = s.count("{") - s.count("}")
    if missing > 0:
        s += "}" * missing
    if s != raw:
        return s, True
    return raw, False


def extract_text_field(s: str) -> str:
    """Best-effort value of a ``"text"`` (or ``"content"``) field in malformed JSON."""
    lower = s.lower()
    idx = lower.find('"text"')
    if idx < 0:
        idx = lower.find('"content"')
    if idx < 0:
        return ""
    segment = s[idx:]
    colon = segment.find(":")
    if colon < 0:
        return ""
    segment = segment[colon + 1 :].strip()
    if not segment:
        return ""
    if segment[0] == '"':
        segment = segment[1:]
        end = segment.find('"')
        if end >= 0:
            segment = segment[:end]
        return segment.replace("\\n", " ")
    ends = [pos for pos in (segment.find(","), segment.find("}")) if pos >= 0]
    if ends:
        return segment[: min(ends)].strip()
    return segment.strip()


def parse_llm_generate_output(raw: str) -> LLMResponse:
    """Parse a generation reply; plain text is accepted as a fallback."""
    raw = raw.strip()
    if not raw:
        raise LLMError("empty response")

    fields: dict[str, Any] = {}
    values, ok = _decode_object(raw, _RESPONSE_FIELDS)
    fields.update(values)
    if ok and fields.get("text", "").strip():
        return _response_from(fields)

    clean = normalize_llm_json(raw)
    repaired, changed = try_repair_llm_json(clean)
    if changed:
        clean = repaired
    values, ok = _decode_object(clean, _RESPONSE_FIELDS)
    fields.update(values)
    if ok and fields.get("text", "").strip():
        return _response_from(fields)

    text = (extract_text_field(clean) or raw).strip()
    if not text:
        raise LLMError("no usable text in response")
    return LLMResponse(text=text, language="vi", style_tags=["llm_fallback"], risk_flags=[])


def sanitize_detect_intent(intent: DetectIntent) -> DetectIntent:
    """Normalise sentiment, team bias and topic to the supported vocabulary."""
    sentiment = _SENTIMENT_ALIASES.get((intent.sentiment or "").strip().lower(), "neutral")
    team_bias = (intent.team_bias or "").strip() or "none"
    topics = list(intent.main_topic or [])
    if not topics:
        main_topic = ["other"]
    else:
        first = topics[0].strip().lower()
        main_topic = [first if first in _ALLOWED_TOPICS else "other"]
    return DetectIntent(
        sentiment=sentiment,
        language=intent.language,
        team_bias=team_bias,
        main_topic=main_topic,
        requires_reply=intent.requires_reply,
    )


def parse_detect_intent_json(raw: str) -> DetectIntent:
    """Parse intent JSON, accepting ``main_topic`` as a string or a list."""
    values, ok = _decode_object(raw, _INTENT_FIELDS)
    if ok:
        return sanitize_detect_intent(
            DetectIntent(
                sentiment=values.get("sentiment", ""),
                language=values.get("language", ""),
                team_bias=values.get("team_bias", ""),
                main_topic=values.get("main_topic", []),
                requires_reply=values.get("requires_reply", False),
            )
        )

    values, ok = _decode_object(raw, _COMPAT_INTENT_FIELDS)
    if not ok:
        raise LLMError(f"invalid intent JSON: {raw[:100]!r}")
    topic = values.get("main_topic")
    topics: list[str] = []
    if isinstance(topic, str):
        if topic.strip():
            topics = [topic]
    elif isinstance(topic, list):
        topics = [item for item in topic if isinstance(item, str) and item.strip()]
    return sanitize_detect_intent(
        DetectIntent(
            sentiment=values.get("sentiment", ""),
            language=values.get("language", ""),
            team_bias=values.get("team_bias", ""),
            main_topic=topics,
            requires_reply=values.get("requires_reply", False),
        )
    )


def _first_choice_content(raw: str) -> str | None:
    """Content of the first choice of a chat-completion reply, or None if not one."""
    try:
        doc = _loads(raw)
    except ValueError:
        return None
    if doc is None:
        return None
    if not isinstance(doc, dict):
        return None
    try:
        choices = doc.get("choices")
        choices = [] if choices is None else choices
        if not isinstance(choices, list):
            raise _Mismatch
        contents = []
        for choice in choices:
            choice = {} if choice is None else choice
            if not isinstance(choice, dict):
                raise _Mismatch
            if choice.get("finish_reason") is not None:
                _as_str(choice["finish_reason"])
            message = choice.get("message")
            message = {} if message is None else message
            if not isinstance(message, dict):
                raise _Mismatch
            if message.get("role") is not None:
                _as_str(message["role"])
            content = message.get("content")
            contents.append("" if content is None else _as_str(content))
    except _Mismatch:
        return None
    return contents[0] if contents else None


def try_parse_from_vllm_response(raw: str) -> DetectIntent | None:
    """Intent carried in a chat-completion wrapper, or None if ``raw`` is not one."""
    content = _first_choice_content(raw)
    if content is None:
        return None
    try:
        return parse_detect_intent_json(normalize_llm_json(content))
    except LLMError as exc:
        raise LLMError(
            f"failed to parse DetectIntent from vLLM choice content: {exc}, content={content!r}"
        ) from exc


# ---------------------------------------------------------------------------
# gateway


class VLLMGateway:
    """Generates fan chat messages and classifies user intent through a chat model."""

    def __init__(
        self,
        client: _CompletionClient,
        api_url: str = "",
        model: str = "",
        timeout: float | timedelta | None = None,
    ) -> None:
        self.base_url = api_url.strip() or DEFAULT_API_URL
        self.model = model.strip() or DEFAULT_MODEL
        self.timeout = timeout
        self._client = client
        logger.info("[VLLMGateway] model=%s endpoint=%s", self.model, self.base_url)

    def _complete(self, request: LLMRequest, what: str) -> str:
        try:
            return self._client.complete(request) or ""
        except Exception as exc:
            raise LLMError(f"{what}: {exc}") from exc

    def generate(self, bundle: ContextBundle, persona: Persona) -> LLMResponse:
        """Produce one chat message for the moment described by ``bundle``."""
        system_prompt = self.build_system_prompt(persona)
        user_prompt = self.build_user_prompt(bundle)
        event_type = bundle.current_event.type
        logger.info("[LLM] model=%s persona=%s event=%s", self.model, persona.id, event_type)
        request = LLMRequest(
            model=self.model,
            messages=[
                LLMMessage(role="system", content=system_prompt),
                LLMMessage(role="user", content=user_prompt),
            ],
            temperature=0.8,
            max_tokens=180,
            stream=False,
        )

        raw = ""
        for attempt in (1, 2):
            raw = self._complete(request, "VLLM API call failed")
            if raw.strip():
                break
            logger.warning(
                "[LLM] empty response attempt=%d persona=%s event=%s",
                attempt,
                persona.id,
                event_type,
            )
        if not raw.strip():
            raise LLMError("vLLM returned empty response")

        logger.info("[LLM] Raw response: %.200s", raw)
        try:
            out = parse_llm_generate_output(raw)
        except LLMError as exc:
            raise LLMError(f"parse LLM response failed: {exc} (raw={raw[:100]})") from exc

        if not out.text.strip():
            raise LLMError("vLLM parsed empty text")
        language = out.language if (out.language or "").strip() else "vi"
        if out.risk_flags:
            logger.warning("[LLM] Risk flags detected: %s", out.risk_flags)
            raise LLMError(f"unsafe content detected: {out.risk_flags}")
        logger.info("[LLM] Generated: %s", out.text)
        return LLMResponse(
            text=out.text,
            language=language,
            style_tags=list(out.style_tags or []),
            risk_flags=list(out.risk_flags or []),
        )

    def build_system_prompt(self, persona: Persona) -> str:
        languages = persona.profile.language or []
        language = languages[0] if languages else "vi"
        return _SYSTEM_PROMPT.format(
            id=persona.id,
            tone=persona.profile.tone,
            language=language,
            slang=persona.profile.slang_level,
        )

    def build_user_prompt(self, bundle: ContextBundle) -> str:
        event = bundle.current_event
        current_event = None
        if event.type:
            current_event = {
                "type": event.type,
                "minute": event.minute,
                "player": event.player_name,
                "team": event.team_side,
                "score": f"{event.home_score}-{event.away_score}",
            }
        recent_chat = [msg.content for msg in (bundle.chat.raw_messages or [])[:3]]
        match = bundle.match
        payload = _dumps(
            {
                "match": {
                    "home_team": match.home_team.short_name,
                    "away_team": match.away_team.short_name,
                    "score": f"{match.home_score}-{match.away_score}",
                    "minute": match.minute,
                    "phase": _text(match.phase),
                },
                "current_event": current_event,
                "recent_chat": recent_chat,
                "audience_sentiment": _text(bundle.audience.sentiment),
            },
            sort_keys=True,
        )
        return f"Generate a fan chat message for this football moment:\n\n{payload}"

    def detect_user_intent(
        self, system_prompt: str, user_msg: str, match_state: MatchState
    ) -> DetectIntent:
        """Classify a user's chat message in the context of the match."""
        try:
            match_json = _dumps(match_state.to_dict())
        except (TypeError, ValueError):
            match_json = "null"
        request = LLMRequest(
            model=self.model,
            messages=[
                LLMMessage(
                    role="system",
                    content=f"{system_prompt.strip()}\n\n{_INTENT_INSTRUCTION}",
                ),
                LLMMessage(role="user", content=f"User message: {user_msg}\nMatch: {match_json}"),
            ],
            temperature=0.0,
            max_tokens=150,
            stream=False,
        )
        raw = self._complete(request, "vLLM intent call failed")

        intent = try_parse_from_vllm_response(raw)
        if intent is None:
            try:
                intent = parse_detect_intent_json(normalize_llm_json(raw))
            except LLMError as exc:
                raise LLMError(f"parse intent JSON failed: {exc} (raw={raw[:100]})") from exc
        logger.info(
            "[Intent] sentiment=%s topic=%s bias=%s",
            intent.sentiment,
            intent.main_topic,
            intent.team_bias,
        )
        return intent

    def analyze_sentiment(self, bundle: ContextBundle) -> str:
        """Overall sentiment of the recent chat: positive, neutral or negative."""
        messages = (bundle.chat.raw_messages or [])[:8]
        if not messages:
            return "neutral"
        listing = "".join(f"- {msg.content}\n" for msg in messages)
        request = LLMRequest(
            model=self.model,
            messages=[
                LLMMessage(role="system", content=_SENTIMENT_INSTRUCTION),
                LLMMessage(role="user", content=listing),
            ],
            temperature=0.0,
            max_tokens=8,
            stream=False,
        )
        out = self._complete(request, "vLLM sentiment call").strip().lower()
        if "positive" in out:
            return "positive"
        if "negative" in out:
            return "negative"
        return "neutral"