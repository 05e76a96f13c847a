"""Interfaces the seeding pipeline depends on; adapters implement them."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from seedingbot.config import MaxBotsConfig, ScalerState
from seedingbot.model import (
    ChatContext,
    ChatMessage,
    CompactEvent,
    ContextBundle,
    DetectIntent,
    LLMResponse,
    MatchDailyCatchFromRedis,
    MatchEvent,
    MatchState,
    Persona,
    Template,
)


@runtime_checkable
class AutoScalerService(Protocol):
    def get_state_bot_per_room(self, room_id: str) -> tuple[ScalerState, int]: ...

    def get_bot_config(self, room_id: str) -> MaxBotsConfig: ...


@runtime_checkable
class ContextStore(Protocol):
    def get_match_state(self, match_id: str) -> MatchState: ...

    def set_match_state(self, match_id: str, state: MatchState) -> None: ...

    def get_recent_events(self, match_id: str, limit: int) -> list[CompactEvent]: ...

    def get_recent_chat_window(self, room_id: str, limit: int) -> ChatContext: ...

    def get_match_by_id(self, match_id: str) -> MatchDailyCatchFromRedis | None: ...

    def get_all_today_matches(self) -> list[MatchDailyCatchFromRedis]: ...

    def has_sent_prematch(self, match_id: str) -> bool: ...

    def push_event(self, match_id: str, event: MatchEvent) -> None: ...

    def push_chat_message(self, room_id: str, msg: ChatMessage) -> None: ...

    def mark_sent_prematch(self, match_id: str) -> None: ...

    def get_bot_count(self, room_id: str) -> int: ...


@runtime_checkable
class DedupService(Protocol):
    def is_duplicate_event(self, match_id: str, minute: str, event_type: str) -> bool: ...

    def is_duplicate_message(self, match_id: str, msg_hash: str) -> bool: ...


@runtime_checkable
class KillSwitchService(Protocol):
    def set_kill_switch(self, scope: str, id: str, is_killed: bool) -> None: ...

    def is_killed(self, scope: str, id: str) -> bool: ...


@runtime_checkable
class LLMGatewayService(Protocol):
    def generate(self, bundle: ContextBundle, persona: Persona) -> LLMResponse: ...

    def detect_user_intent(
        self, system_prompt: str, user_msg: str, match_state: MatchState
    ) -> DetectIntent: ...

    def analyze_sentiment(self, bundle: ContextBundle) -> str: ...


@runtime_checkable
class PersonaStateService(Protocol):
    def is_on_cooldown(self, persona_id: str) -> bool: ...

    def set_cooldown(self, persona_id: str, duration_seconds: int) -> None: ...

    def is_anti_repeat(self, match_id: str, persona_id: str, msg_hash: str) -> bool: ...

    def set_last_message_hash(
        self, match_id: str, persona_id: str, msg_hash: str, ttl_seconds: int
    ) -> None: ...

    def save_last_persona(self, match_id: str, persona_id: str) -> None: ...

    def get_last_persona(self, match_id: str) -> str: ...


@runtime_checkable
class PublisherService(Protocol):
    def publish(self, msg: ChatMessage) -> None: ...


@runtime_checkable
class QualityStateService(Protocol):
    def is_message_duplicated(self, match_id: str, msg_hash: str) -> bool: ...

    def save_message_hash(self, match_id: str, msg_hash: str, ttl_seconds: int) -> None: ...


@runtime_checkable
class RateLimitService(Protocol):
    """Per-match rate limits."""

    def check_event_type_limit(self, match_id: str, event_type: str) -> bool: ...

    def check_persona_cooldown(self, persona_id: str, cooldown_seconds: int) -> bool: ...

    def check_match_limit(self, match_id: str, max_bots: int) -> bool: ...

    def incr_total_messages(self, match_id: str) -> None: ...


@runtime_checkable
class MessageRepository(Protocol):
    def save_message(self, msg: ChatMessage) -> None: ...

    def get_message_history(self, match_id: str, limit: int) -> list[ChatMessage]: ...


@runtime_checkable
class TemplateRepository(Protocol):
    def get_all_templates(self) -> list[Template]: ...

    def find_matching_templates(
        self, event_type: str, lang: str, persona_id: str
    ) -> list[Template]: ...

    def get_template_by_id(self, template_id: str) -> Template: ...