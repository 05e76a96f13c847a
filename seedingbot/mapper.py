"""Decoding of live-match feed payloads into match events."""

from __future__ import annotations

import json
import logging
import math
import time
from typing import Any, Mapping

from seedingbot.model import EventsBundle, MatchEvent

logger = logging.getLogger(__name__)

_ENDED_STATUS = 8
_END_INCIDENT = 12

_INCIDENT_TYPES = {
    1: "GOAL",
    2: "CORNER",
    3: "YELLOW_CARD",
    4: "RED_CARD",
    5: "OFFSIDE",
    6: "FREE_KICK",
    7: "GOAL_KICK",
    8: "PENALTY",
    9: "SUBSTITUTION",
    10: "START",
    11: "MIDFIELD",
    12: "END",
    13: "HALFTIME_SCORE",
    15: "CARD_UPGRADE_CONFIRMED",
    16: "PENALTY_MISSED",
    17: "OWN_GOAL",
    19: "INJURY_TIME",
}

_INCIDENT_INT_FIELDS = (
    "type",
    "position",
    "time",
    "add_time",
    "reason_type",
    "var_reason",
    "var_result",
)
_INCIDENT_STR_FIELDS = (
    "player_id",
    "player_name",
    "in_player_id",
    "in_player_name",
    "out_player_id",
    "out_player_name",
    "assist1_id",
    "assist1_name",
)


class MappingError(ValueError):
    """Raised when a payload matches none of the known feed formats."""


class _Mismatch(Exception):
    """A value does not have the type the feed format requires."""


def _int(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise _Mismatch
    return value


def _optional_int(value: Any) -> int | None:
    return None if value is None else _int(value)


def _str(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise _Mismatch
    return value


def _list(value: Any) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise _Mismatch
    return value


def _object(value: Any) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise _Mismatch
    return value


def _decode_incident(value: Any) -> dict[str, Any]:
    obj = _object(value)
    out: dict[str, Any] = {key: _int(obj.get(key)) for key in _INCIDENT_INT_FIELDS}
    out.update({key: _str(obj.get(key)) for key in _INCIDENT_STR_FIELDS})
    out["home_score"] = _optional_int(obj.get("home_score"))
    out["away_score"] = _optional_int(obj.get("away_score"))
    return out


def _decode_match(value: Any) -> dict[str, Any]:
    obj = _object(value)
    return {
        "id": _str(obj.get("id")),
        "score": list(_list(obj.get("score"))),
        "stats": list(_list(obj.get("stats"))),
        "incidents": [_decode_incident(item) for item in _list(obj.get("incidents"))],
        "tlive": list(_list(obj.get("tlive"))),
    }


def _decode_match_list(doc: Mapping[str, Any], key: str) -> list[dict[str, Any]]:
    try:
        _int(doc.get("code"))
        return [_decode_match(item) for item in _list(doc.get(key))]
    except _Mismatch:
        return []


def _decode_single(doc: Mapping[str, Any]) -> dict[str, Any] | None:
    try:
        _int(doc.get("code"))
        return _decode_match(doc.get("results"))
    except _Mismatch:
        return None


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


def map_bytes_to_events_bundle(data: bytes | str) -> EventsBundle:
    """Decode a feed payload (list of matches or one wrapped match) into events."""
    try:
        doc = json.loads(data, parse_constant=_reject_constant)
    except (ValueError, UnicodeDecodeError):
        doc = None

    if isinstance(doc, dict):
        for key in ("result", "results"):
            matches = _decode_match_list(doc, key)
            if matches:
                return _map_multiple_matches(matches)
        single = _decode_single(doc)
        if single is not None and single["id"]:
            return _map_single_match(single)

    text = data.decode("utf-8", "replace") if isinstance(data, bytes) else data
    logger.error("[MAPPER] payload matches no known format. Raw JSON: %s", text)
    raise MappingError("Unknown JSON format - not API response or single match")


def map_bytes_to_events(data: bytes | str) -> list[MatchEvent]:
    return map_bytes_to_events_bundle(data).match_events


def _map_multiple_matches(matches: list[Mapping[str, Any]]) -> EventsBundle:
    bundle = EventsBundle()
    for match in matches:
        status = extract_score_status(match)
        logger.info(
            "[MAPPER] match=%s score_status=%s incidents=%d",
            match.get("id", ""),
            "unknown" if status is None else status,
            len(match.get("incidents") or []),
        )
        if is_ended_match(match):
            logger.info("[MAPPER] Skip ended match: match=%s", match.get("id", ""))
            continue
        bundle.match_events.extend(_map_single_match(match).match_events)
    return bundle


def _map_single_match(match: Mapping[str, Any]) -> EventsBundle:
    bundle = EventsBundle()
    match_id = match.get("id") or ""
    if is_ended_match(match):
        logger.info("[MAPPER] Skip ended match: match=%s", match_id)
        return bundle

    league_id = derive_league_id(match_id)
    incidents = match.get("incidents") or []
    if not incidents:
        logger.warning("[MAPPER] Match %s has 0 incidents", match_id)
    logger.info("Match = %s incident = %d ->processing...", match_id, len(incidents))
    for incident in incidents:
        bundle.match_events.append(
            MatchEvent(
                match_id=match_id,
                league_id=league_id,
                type=map_incident_type(incident.get("type") or 0),
                position=incident.get("position") or 0,
                minute=incident.get("time") or 0,
                add_time=incident.get("add_time") or 0,
                home_score=incident.get("home_score") or 0,
                away_score=incident.get("away_score") or 0,
                player_name=incident.get("player_name") or "",
                in_player_name=incident.get("in_player_name") or "",
                out_player_name=incident.get("out_player_name") or "",
                reason_type=incident.get("reason_type") or 0,
                timestamp=int(time.time()),
            )
        )
    return bundle


def extract_score_status(match: Mapping[str, Any]) -> int | None:
    """Return the match status carried as the second element of ``score``, if numeric."""
    score = match.get("score") or []
    if len(score) < 2:
        return None
    status = score[1]
    if isinstance(status, bool) or not isinstance(status, (int, float)):
        return None
    if isinstance(status, float) and not math.isfinite(status):
        return None
    return int(status)


def is_ended_match(match: Mapping[str, Any]) -> bool:
    """A match is over when its status says so or it already carries an END incident."""
    if extract_score_status(match) == _ENDED_STATUS:
        return True
    return any(
        incident.get("type") == _END_INCIDENT for incident in match.get("incidents") or []
    )


def derive_league_id(match_id: str) -> str:
    """League identifier: upper-cased prefix of the match id before the first underscore."""
    prefix = match_id.strip().split("_", 1)[0]
    return prefix.upper() if prefix else "UNKNOWN"


def map_incident_type(incident_type: int) -> str:
    return _INCIDENT_TYPES.get(incident_type, "UNKNOWN")