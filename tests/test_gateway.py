import json

import pytest

from seedingbot.gateway import (
    DEFAULT_API_URL,
    DEFAULT_MODEL,
    LLMError,
    VLLMGateway,
    extract_text_field,
    normalize_llm_json,
    parse_detect_intent_json,
    parse_llm_generate_output,
    sanitize_detect_intent,
    try_parse_from_vllm_response,
    try_repair_llm_json,
)
from seedingbot.model import (
    AudienceSignal,
    ChatContext,
    ChatMessage,
    ContextBundle,
    DetectIntent,
    MatchEvent,
    MatchPhase,
    MatchState,
    Persona,
    PersonaProfile,
    Sentiment,
    Team,
)


class FakeClient:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def complete(self, request):
        self.requests.append(request)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def make_gateway(*responses):
    client = FakeClient(*responses)
    return VLLMGateway(client, "http://localhost:8000", "test-model"), client


def make_bundle(messages=("a", "b", "c", "d"), with_event=True):
    event = (
        MatchEvent(type="GOAL", minute=10, player_name="Saka", team_side="home",
                   home_score=1, away_score=0)
        if with_event
        else MatchEvent()
    )
    return ContextBundle(
        match=MatchState(
            match_id="m1",
            home_team=Team(short_name="ARS"),
            away_team=Team(short_name="CHE"),
            home_score=1,
            away_score=0,
            minute=10,
            phase=MatchPhase("live"),
        ),
        chat=ChatContext(raw_messages=[ChatMessage(content=c) for c in messages]),
        audience=AudienceSignal(sentiment=Sentiment("positive")),
        current_event=event,
    )


def make_persona():
    return Persona(
        id="p1",
        profile=PersonaProfile(language=["en"], tone="hype", slang_level="high"),
    )


# --- cases carried over from the source's cloud intent check ---


def test_normalize_fenced_json():
    raw = '```json\n{"sentiment":"neutral","main_topic":"other","requires_reply":true}\n```'
    assert normalize_llm_json(raw) == (
        '{"sentiment":"neutral","main_topic":"other","requires_reply":true}'
    )


def test_normalize_strips_surrounding_text():
    assert normalize_llm_json('Here you go: {"a":1} thanks') == '{"a":1}'


def test_normalize_plain_fence():
    assert normalize_llm_json('```\n{"a":1}\n```') == '{"a":1}'


def test_normalize_without_braces_is_trimmed_text():
    assert normalize_llm_json("  hello  ") == "hello"


def test_repair_closes_braces():
    assert try_repair_llm_json('{"sentiment":"neutral"') == ('{"sentiment":"neutral"}', True)


def test_repair_nested():
    assert try_repair_llm_json('{"a":{"b":1') == ('{"a":{"b":1}}', True)


def test_repair_balanced_unchanged():
    assert try_repair_llm_json('{"a":1}') == ('{"a":1}', False)


def test_repair_without_brace():
    assert try_repair_llm_json("plain") == ("plain", False)


def test_parse_intent_from_fenced_cloud_output():
    raw = '```json\n{"sentiment":"Neutral","main_topic":"other","requires_reply":true}\n```'
    intent = parse_detect_intent_json(normalize_llm_json(raw))
    assert intent.sentiment == "neutral"
    assert intent.main_topic == ["other"]
    assert intent.requires_reply is True
    assert intent.team_bias == "none"


# --- text field extraction and generation parsing ---


def test_extract_quoted_text():
    assert extract_text_field('{"text": "hello\\nworld", "language":') == "hello world"


def test_extract_unquoted_content():
    assert extract_text_field('{"content": 42, "x": 1}') == "42"


def test_extract_unterminated():
    assert extract_text_field('{"Text": "abc') == "abc"


def test_extract_missing():
    assert extract_text_field('{"other": 1}') == ""


def test_parse_generate_valid_json():
    out = parse_llm_generate_output('{"text":"Goal!","language":"en","style_tags":["hype"]}')
    assert out.text == "Goal!"
    assert out.language == "en"
    assert out.style_tags == ["hype"]


def test_parse_generate_truncated_json_repaired():
    out = parse_llm_generate_output('```json\n{"text":"What a goal","language":"en"')
    assert out.text == "What a goal"
    assert out.language == "en"


def test_parse_generate_plain_text_fallback():
    out = parse_llm_generate_output("  What a strike!  ")
    assert out.text == "What a strike!"
    assert out.language == "vi"
    assert out.style_tags == ["llm_fallback"]


def test_parse_generate_empty():
    with pytest.raises(LLMError):
        parse_llm_generate_output("   ")


# --- intent sanitising and parsing ---


def test_sanitize_maps_aliases_and_topic():
    intent = sanitize_detect_intent(
        DetectIntent(sentiment=" Happy ", team_bias="", main_topic=["GOAL", "card"],
                     requires_reply=True)
    )
    assert intent.sentiment == "positive"
    assert intent.team_bias == "none"
    assert intent.main_topic == ["goal"]


@pytest.mark.parametrize(
    "sentiment,expected",
    [("angry", "negative"), ("frustrated", "negative"), ("excited", "positive"),
     ("weird", "neutral"), ("NEGATIVE", "negative")],
)
def test_sanitize_sentiment(sentiment, expected):
    assert sanitize_detect_intent(DetectIntent(sentiment=sentiment)).sentiment == expected


def test_sanitize_unknown_topic():
    assert sanitize_detect_intent(DetectIntent(main_topic=["weather"])).main_topic == ["other"]


def test_parse_intent_topic_as_string():
    intent = parse_detect_intent_json(
        '{"sentiment":"sad","team_bias":" Arsenal ","main_topic":"Score","requires_reply":false}'
    )
    assert intent.sentiment == "negative"
    assert intent.team_bias == "Arsenal"
    assert intent.main_topic == ["score"]
    assert intent.requires_reply is False


def test_parse_intent_topic_list_with_junk():
    intent = parse_detect_intent_json('{"main_topic":[1,"lineup"]}')
    assert intent.main_topic == ["lineup"]


def test_parse_intent_invalid():
    with pytest.raises(LLMError):
        parse_detect_intent_json("not json")


def test_try_parse_plain_json_is_not_wrapper():
    assert try_parse_from_vllm_response('{"sentiment":"positive"}') is None


def test_try_parse_wrapper():
    content = '```json\n{"sentiment":"positive","main_topic":"goal","requires_reply":true}\n```'
    raw = json.dumps({"choices": [{"message": {"role": "assistant", "content": content}}]})
    intent = try_parse_from_vllm_response(raw)
    assert intent.sentiment == "positive"
    assert intent.main_topic == ["goal"]


def test_try_parse_wrapper_bad_content():
    raw = json.dumps({"choices": [{"message": {"role": "assistant", "content": "nope"}}]})
    with pytest.raises(LLMError):
        try_parse_from_vllm_response(raw)


# --- gateway ---


def test_defaults_when_blank():
    gateway = VLLMGateway(FakeClient(), "  ", "")
    assert gateway.base_url == DEFAULT_API_URL
    assert gateway.model == DEFAULT_MODEL


def test_system_prompt_uses_first_language():
    gateway, _ = make_gateway()
    prompt = gateway.build_system_prompt(make_persona())
    assert "- ID: p1\n- Tone: hype\n- Language: en\n- Slang level: high" in prompt
    assert "- Write in en language only" in prompt
    assert prompt.endswith(
        '{"text":"<your message>","language":"en","style_tags":["<tag>"],"risk_flags":[]}'
    )


def test_system_prompt_defaults_to_vi():
    gateway, _ = make_gateway()
    prompt = gateway.build_system_prompt(Persona(id="x", profile=PersonaProfile()))
    assert "- Language: vi" in prompt


def test_user_prompt_payload():
    gateway, _ = make_gateway()
    prompt = gateway.build_user_prompt(make_bundle())
    assert prompt == (
        "Generate a fan chat message for this football moment:\n\n"
        '{"audience_sentiment":"positive",'
        '"current_event":{"minute":10,"player":"Saka","score":"1-0","team":"home","type":"GOAL"},'
        '"match":{"away_team":"CHE","home_team":"ARS","minute":10,"phase":"live","score":"1-0"},'
        '"recent_chat":["a","b","c"]}'
    )


def test_user_prompt_without_event_and_html_escape():
    gateway, _ = make_gateway()
    prompt = gateway.build_user_prompt(make_bundle(messages=("A&B <3",), with_event=False))
    assert '"current_event":null' in prompt
    assert '"recent_chat":["A\\u0026B \\u003c3"]' in prompt


def test_generate_success():
    gateway, client = make_gateway('{"text":"Goal!! ⚽","style_tags":["hype"]}')
    out = gateway.generate(make_bundle(), make_persona())
    assert out.text == "Goal!! ⚽"
    assert out.language == "vi"
    request = client.requests[0]
    assert request.model == "test-model"
    assert request.temperature == 0.8
    assert request.max_tokens == 180
    assert [m.role for m in request.messages] == ["system", "user"]


def test_generate_retries_once_on_empty():
    gateway, client = make_gateway("  ", '{"text":"ok","language":"en"}')
    out = gateway.generate(make_bundle(), make_persona())
    assert out.text == "ok"
    assert len(client.requests) == 2


def test_generate_empty_twice():
    gateway, client = make_gateway("", "")
    with pytest.raises(LLMError):
        gateway.generate(make_bundle(), make_persona())
    assert len(client.requests) == 2


def test_generate_risk_flags_rejected():
    gateway, _ = make_gateway('{"text":"bad","risk_flags":["hate"]}')
    with pytest.raises(LLMError):
        gateway.generate(make_bundle(), make_persona())


def test_generate_client_error_wrapped():
    gateway, _ = make_gateway(ConnectionError("refused"))
    with pytest.raises(LLMError, match="refused"):
        gateway.generate(make_bundle(), make_persona())


def test_detect_intent_plain():
    gateway, client = make_gateway(
        '{"sentiment":"negative","team_bias":"ARS","main_topic":"card","requires_reply":true}'
    )
    intent = gateway.detect_user_intent("Be brief.", "hello", MatchState(match_id="m1"))
    assert intent.sentiment == "negative"
    assert intent.team_bias == "ARS"
    assert intent.main_topic == ["card"]
    request = client.requests[0]
    assert request.temperature == 0.0
    assert request.max_tokens == 150
    assert request.messages[0].content.startswith(
        "Be brief.\n\nYou are an intent analyzer for a football match chat."
    )
    assert request.messages[1].content.startswith("User message: hello\nMatch: {")


def test_detect_intent_wrapper():
    raw = json.dumps(
        {"choices": [{"message": {"role": "assistant",
                                  "content": '{"sentiment":"happy","main_topic":"greeting"}'}}]}
    )
    gateway, _ = make_gateway(raw)
    intent = gateway.detect_user_intent("", "hi", MatchState(match_id="m1"))
    assert intent.sentiment == "positive"
    assert intent.main_topic == ["greeting"]


def test_detect_intent_unparseable():
    gateway, _ = make_gateway("no json here")
    with pytest.raises(LLMError):
        gateway.detect_user_intent("", "hi", MatchState(match_id="m1"))


def test_analyze_sentiment_empty_chat_skips_call():
    gateway, client = make_gateway()
    assert gateway.analyze_sentiment(make_bundle(messages=())) == "neutral"
    assert client.requests == []


@pytest.mark.parametrize(
    "reply,expected",
    [("Positive.", "positive"), ("NEGATIVE", "negative"), ("mixed", "neutral")],
)
def test_analyze_sentiment(reply, expected):
    gateway, _ = make_gateway(reply)
    assert gateway.analyze_sentiment(make_bundle()) == expected


def test_analyze_sentiment_uses_eight_messages():
    gateway, client = make_gateway("neutral")
    gateway.analyze_sentiment(make_bundle(messages=[str(i) for i in range(10)]))
    content = client.requests[0].messages[1].content
    assert content == "".join(f"- {i}\n" for i in range(8))
    assert client.requests[0].max_tokens == 8