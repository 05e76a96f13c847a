import json
from datetime import datetime, timedelta, timezone

import pytest

from seedingbot.model import (
    ChatMessage,
    CompactEvent,
    Competition,
    ContextBundle,
    DetectIntent,
    EventType,
    LLMMessage,
    LLMRequest,
    LLMResponse,
    MatchDailyCatchFromRedis,
    MatchEvent,
    MatchPhase,
    MatchState,
    Persona,
    ReplyPriority,
    ReplyType,
    Sentiment,
    Team,
    VLLMRawResponse,
)


def test_event_type_values_match_feed_names():
    assert EventType("OWN_GOAL") is EventType.OWN_GOAL
    assert EventType.CARD_UPGRADE_CONFIRMED.value == "CARD_UPGRADE_CONFIRMED"
    assert EventType.GOAL == "GOAL"


def test_reply_enums():
    assert ReplyPriority.LOW == 1
    assert ReplyPriority.MEDIUM == 5
    assert ReplyPriority.HIGH == 8
    assert ReplyPriority.URGENT == 10
    assert ReplyType("skip") is ReplyType.SKIP
    assert Sentiment("positive") is Sentiment.POSITIVE
    assert MatchPhase("prematch") is MatchPhase.PREMATCH


def test_match_event_round_trip():
    event = MatchEvent(
        match_id="epl_1",
        league_id="EPL",
        type="GOAL",
        position=1,
        minute=23,
        add_time=2,
        home_score=1,
        away_score=0,
        player_name="Striker",
        team_side="home",
        timestamp=1700000000,
    )
    data = json.loads(json.dumps(event.to_dict()))
    assert MatchEvent.from_dict(data) == event


def test_match_event_team_side_omitted_when_empty():
    assert "team_side" not in MatchEvent(type="GOAL").to_dict()
    assert MatchEvent(team_side="away").to_dict()["team_side"] == "away"


def test_match_event_enum_type_serialises_as_plain_string():
    data = MatchEvent(type=EventType.RED_CARD).to_dict()
    assert data["type"] == "RED_CARD"
    assert type(data["type"]) is str


def test_from_dict_rejects_wrong_types():
    with pytest.raises(ValueError):
        MatchEvent.from_dict({"minute": "23"})
    with pytest.raises(ValueError):
        MatchEvent.from_dict({"minute": 1.5})
    with pytest.raises(TypeError):
        MatchEvent.from_dict([1, 2])


def test_from_dict_null_fields_take_zero_values():
    event = MatchEvent.from_dict({"match_id": None, "minute": None})
    assert event == MatchEvent()


def test_compact_event_round_trip():
    event = CompactEvent(type="CORNER", minute=40, team_side="away", summary="corner")
    assert CompactEvent.from_dict(event.to_dict()) == event


def test_detect_intent_round_trip_and_strict_topic():
    intent = DetectIntent(
        sentiment="negative", team_bias="none", main_topic=["score"], requires_reply=True
    )
    assert DetectIntent.from_dict(intent.to_dict()) == intent
    with pytest.raises(ValueError):
        DetectIntent.from_dict({"main_topic": "score"})


def test_llm_request_omits_zero_fields():
    req = LLMRequest(model="m", messages=[LLMMessage(role="user", content="hi")])
    data = req.to_dict()
    assert data == {"model": "m", "messages": [{"role": "user", "content": "hi"}]}


def test_llm_request_includes_set_fields():
    req = LLMRequest(model="m", temperature=0.8, max_tokens=180, stream=True)
    data = req.to_dict()
    assert data["temperature"] == 0.8
    assert data["max_tokens"] == 180
    assert data["stream"] is True


def test_llm_response_serialisation():
    resp = LLMResponse(text="hello", language="vi")
    assert resp.to_dict() == {"text": "hello", "language": "vi"}
    full = LLMResponse(text="t", language="en", style_tags=["hype"], risk_flags=["x"])
    assert LLMResponse.from_dict(full.to_dict()) == full


def test_vllm_raw_response_parses_choices():
    raw = {
        "choices": [
            {"message": {"role": "assistant", "content": "{}"}, "finish_reason": "stop"}
        ]
    }
    parsed = VLLMRawResponse.from_dict(raw)
    assert len(parsed.choices) == 1
    assert parsed.choices[0].message.content == "{}"
    assert parsed.choices[0].finish_reason == "stop"
    assert VLLMRawResponse.from_dict({"sentiment": "neutral"}).choices == []


def test_team_and_competition_round_trip():
    team = Team(id="t1", name="Home FC", short_name="HFC")
    assert Team.from_dict(team.to_dict()) == team
    comp = Competition.from_dict(
        {"id": "c", "name": "League", "tier": 1, "country": {"id": "vn", "name": "VN"}}
    )
    assert comp.country.name == "VN"
    assert comp.category.id == ""
    assert Competition.from_dict(comp.to_dict()) == comp


def test_daily_match_uses_id_key():
    match = MatchDailyCatchFromRedis.from_dict(
        {"id": "m1", "home_team": {"name": "A"}, "match_time": 100, "date": "2026-03-11"}
    )
    assert match.match_id == "m1"
    assert match.home_team.name == "A"
    assert match.to_dict()["id"] == "m1"
    assert MatchDailyCatchFromRedis.from_dict(match.to_dict()) == match


def test_match_state_round_trip_with_events_and_phase():
    state = MatchState(
        match_id="m1",
        room_id="room-m1",
        phase=MatchPhase.LIVE,
        minute=55,
        home_score=2,
        away_score=1,
        events=[MatchEvent(match_id="m1", type="GOAL", minute=10)],
    )
    data = json.loads(json.dumps(state.to_dict()))
    assert data["phase"] == "live"
    restored = MatchState.from_dict(data)
    assert restored.events == state.events
    assert restored.phase == MatchPhase.LIVE
    assert restored.minute == 55


def test_chat_message_zero_time_and_omitted_event_type():
    data = ChatMessage(id="x", content="hi").to_dict()
    assert data["created_at"] == "0001-01-01T00:00:00Z"
    assert "event_type" not in data
    assert ChatMessage.from_dict(data) == ChatMessage(id="x", content="hi")


def test_chat_message_time_round_trip_with_offset():
    created = datetime(2026, 3, 11, 20, 15, 30, 250000, tzinfo=timezone(timedelta(hours=7)))
    msg = ChatMessage(id="u1", content="goal!", is_bot=True, event_type="GOAL", created_at=created)
    restored = ChatMessage.from_dict(json.loads(json.dumps(msg.to_dict())))
    assert restored == msg
    assert restored.created_at.utcoffset() == timedelta(hours=7)


def test_chat_message_parses_nanosecond_time():
    msg = ChatMessage.from_dict({"created_at": "2026-03-11T10:20:30.123456789Z"})
    assert msg.created_at == datetime(2026, 3, 11, 10, 20, 30, 123456, tzinfo=timezone.utc)
    with pytest.raises(ValueError):
        ChatMessage.from_dict({"created_at": "yesterday"})


def test_persona_from_yaml_document():
    persona = Persona.from_dict(
        {
            "id": "hype_fan",
            "enabled": True,
            "profile": {"name": "Hype", "language": ["vi", "en"], "tone": "hype", "emoji_rate": 1},
            "rules": {
                "weight_base": 10,
                "allowed_event_types": ["GOAL"],
                "cooldown_seconds": 30,
                "event_weight": {"GOAL": 5},
            },
        }
    )
    assert persona.enabled is True
    assert persona.profile.language == ["vi", "en"]
    assert persona.profile.emoji_rate == 1.0
    assert persona.policy.weight_base == 10
    assert persona.policy.event_weight == {"GOAL": 5}
    assert persona.policy.blocked_event_types == []


def test_context_bundle_defaults_are_independent():
    first = ContextBundle()
    second = ContextBundle()
    first.chat.raw_messages.append(ChatMessage(id="a"))
    assert second.chat.raw_messages == []
    assert len(first.chat.raw_messages) == 1