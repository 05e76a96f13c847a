"""SQL repositories for published chat messages and message templates."""

from __future__ import annotations

import json
import logging
from contextlib import closing
from datetime import datetime, timezone
from typing import Any, Sequence

from seedingbot.model import ChatMessage, MatchPhase, Template

logger = logging.getLogger(__name__)

_PARAMSTYLES = {"format": "%s", "pyformat": "%s", "qmark": "?"}

_INSERT_MESSAGE = """
INSERT INTO published_messages (id, match_id, room_id, content, persona_id, event_type, is_bot, created_at)
VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
ON CONFLICT (id) DO NOTHING"""

_MESSAGE_HISTORY = """
SELECT id, match_id, room_id, content, persona_id, event_type, is_bot, created_at
FROM (
    SELECT id, match_id, room_id, content, persona_id, event_type, is_bot, created_at
    FROM published_messages
    WHERE match_id = %s
    ORDER BY created_at DESC
    LIMIT %s
) m
ORDER BY created_at ASC"""

_ALL_TEMPLATES = """
SELECT id, phase, event_type, lang, persona_id, text, priority, enabled, conditions, created_at, updated_at
FROM templates
WHERE enabled = true
ORDER BY priority DESC"""

_MATCHING_TEMPLATES = """
SELECT id, event_type, lang, persona_id, text, priority, enabled, conditions, created_at, updated_at
FROM templates
WHERE enabled = true
  AND event_type = %s
  AND lang = %s
  AND (persona_id = %s OR persona_id IS NULL)
ORDER BY priority DESC"""

_TEMPLATE_BY_ID = """
SELECT id, event_type, lang, persona_id, text, priority, enabled, conditions, created_at, updated_at
FROM templates
WHERE id = %s AND enabled = true"""


class RepositoryError(Exception):
    """Raised when a query fails or a row cannot be decoded."""


class _SqlRepo:
    """Shared plumbing over a DB-API 2.0 connection."""

    def __init__(self, connection: Any, paramstyle: str = "format") -> None:
        if paramstyle not in _PARAMSTYLES:
            raise ValueError(f"unsupported paramstyle {paramstyle!r}")
        self._conn = connection
        self._placeholder = _PARAMSTYLES[paramstyle]
        self._db_error: type[BaseException] = getattr(connection, "Error", Exception)

    def _sql(self, query: str) -> str:
        return query.replace("%s", self._placeholder)

    def _fetch_all(self, query: str, params: Sequence[Any], what: str) -> list[Sequence[Any]]:
        try:
            with closing(self._conn.cursor()) as cursor:
                cursor.execute(self._sql(query), tuple(params))
                return list(cursor.fetchall())
        except self._db_error as exc:
            raise RepositoryError(f"{what} failed: {exc}") from exc


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as exc:
            raise RepositoryError(f"scan row failed: bad timestamp {value!r}") from exc
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    raise RepositoryError(f"scan row failed: bad timestamp {value!r}")


def _phase(value: Any) -> Any:
    if value is None:
        return ""
    try:
        return MatchPhase(value)
    except ValueError:
        return value


def _conditions(value: Any) -> dict[str, Any]:
    if value is None or value == b"" or value == "":
        return {}
    if isinstance(value, dict):
        return dict(value)
    if isinstance(value, memoryview):
        value = value.tobytes()
    try:
        decoded = json.loads(value)
    except (ValueError, TypeError) as exc:
        raise RepositoryError(f"unmarshal conditions failed: {exc}") from exc
    if decoded is None:
        return {}
    if not isinstance(decoded, dict):
        raise RepositoryError("unmarshal conditions failed: not a JSON object")
    return decoded


class MessageRepo(_SqlRepo):
    """Stores and reads published chat messages."""

    def save_message(self, msg: ChatMessage) -> None:
        """Insert a message; a message with an id already stored is ignored."""
        params = (
            msg.id,
            msg.match_id,
            msg.room_id,
            msg.content,
            msg.persona,
            msg.event_type,
            msg.is_bot,
            msg.created_at,
        )
        try:
            with closing(self._conn.cursor()) as cursor:
                cursor.execute(self._sql(_INSERT_MESSAGE), params)
            self._conn.commit()
        except self._db_error as exc:
            try:
                self._conn.rollback()
            except self._db_error:
                logger.warning("rollback after failed insert also failed")
            raise RepositoryError(f"insert published message failed: {exc}") from exc

    def get_message_history(self, match_id: str, limit: int) -> list[ChatMessage]:
        """The latest ``limit`` messages of a match, oldest first."""
        rows = self._fetch_all(
            _MESSAGE_HISTORY, (match_id, limit), "query published_messages"
        )
        messages = []
        for row in rows:
            msg_id, row_match, room_id, content, persona, event_type, is_bot, created = row
            created_at = _to_datetime(created)
            messages.append(
                ChatMessage(
                    id=msg_id,
                    content=content or "",
                    timestamp=int(created_at.timestamp()),
                    is_bot=bool(is_bot),
                    persona=persona or "",
                    match_id=row_match or "",
                    room_id=room_id or "",
                    event_type=event_type or "",
                    created_at=created_at,
                )
            )
        return messages


class TemplateRepo(_SqlRepo):
    """Reads enabled message templates."""

    @staticmethod
    def _template(row: Sequence[Any], phase: Any = None) -> Template:
        (
            template_id,
            event_type,
            lang,
            persona_id,
            text,
            priority,
            enabled,
            conditions,
            created_at,
            updated_at,
        ) = row
        return Template(
            id=template_id,
            phase=_phase(phase),
            event_type=event_type or "",
            lang=lang or "",
            persona_id=persona_id or "",
            text=text or "",
            priority=int(priority or 0),
            enabled=bool(enabled),
            conditions=_conditions(conditions),
            created_at=int(created_at or 0),
            updated_at=int(updated_at or 0),
        )

    def get_all_templates(self) -> list[Template]:
        """Every enabled template, highest priority first."""
        rows = self._fetch_all(_ALL_TEMPLATES, (), "query templates")
        return [self._template((row[0], *row[2:]), phase=row[1]) for row in rows]

    def find_matching_templates(
        self, event_type: str, lang: str, persona_id: str
    ) -> list[Template]:
        """Enabled templates for the event and language, for this persona or for anyone."""
        rows = self._fetch_all(
            _MATCHING_TEMPLATES, (event_type, lang, persona_id), "query templates"
        )
        return [self._template(row) for row in rows]

    def get_template_by_id(self, template_id: str) -> Template:
        """The enabled template with this id."""
        rows = self._fetch_all(_TEMPLATE_BY_ID, (template_id,), "query template by ID")
        if not rows:
            raise RepositoryError(f"query template by ID failed: no template {template_id!r}")
        return self._template(rows[0])