import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from seedingbot.model import ChatMessage
from seedingbot.repositories import MessageRepo, RepositoryError, TemplateRepo

sqlite3.register_adapter(datetime, lambda value: value.isoformat())

BASE = datetime(2026, 3, 11, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    connection.execute(
        "CREATE TABLE published_messages (id TEXT PRIMARY KEY, match_id TEXT, room_id TEXT, "
        "content TEXT, persona_id TEXT, event_type TEXT, is_bot INTEGER, created_at TEXT)"
    )
    connection.execute(
        "CREATE TABLE templates (id TEXT PRIMARY KEY, phase TEXT, event_type TEXT, lang TEXT, "
        "persona_id TEXT, text TEXT, priority INTEGER, enabled INTEGER, conditions TEXT, "
        "created_at INTEGER, updated_at INTEGER)"
    )
    yield connection
    connection.close()


def _msg(index, match_id="m1", is_bot=True):
    return ChatMessage(
        id=f"msg-{index}",
        content=f"hello {index}",
        timestamp=0,
        is_bot=is_bot,
        persona="hype",
        match_id=match_id,
        room_id=f"room-{match_id}",
        event_type="GOAL",
        created_at=BASE + timedelta(minutes=index),
    )


def _add_template(conn, tid, priority, persona=None, enabled=1, conditions=None, phase="live"):
    conn.execute(
        "INSERT INTO templates VALUES (?,?,?,?,?,?,?,?,?,?,?)",
        (tid, phase, "GOAL", "vi", persona, f"text {tid}", priority, enabled, conditions, 10, 20),
    )


def test_history_returns_latest_in_ascending_order(conn):
    repo = MessageRepo(conn, paramstyle="qmark")
    for i in range(5):
        repo.save_message(_msg(i))
    repo.save_message(_msg(9, match_id="other"))

    history = repo.get_message_history("m1", 3)

    assert [m.id for m in history] == ["msg-2", "msg-3", "msg-4"]
    assert all(m.match_id == "m1" for m in history)


def test_history_fields_round_trip(conn):
    repo = MessageRepo(conn, paramstyle="qmark")
    original = _msg(1, is_bot=False)
    repo.save_message(original)

    (loaded,) = repo.get_message_history("m1", 10)

    assert loaded.content == original.content
    assert loaded.persona == "hype"
    assert loaded.room_id == "room-m1"
    assert loaded.event_type == "GOAL"
    assert loaded.is_bot is False
    assert loaded.created_at == original.created_at
    assert loaded.timestamp == int(original.created_at.timestamp())


def test_duplicate_id_is_ignored(conn):
    repo = MessageRepo(conn, paramstyle="qmark")
    repo.save_message(_msg(1))
    repo.save_message(_msg(1))

    assert len(repo.get_message_history("m1", 10)) == 1


def test_history_of_unknown_match_is_empty(conn):
    repo = MessageRepo(conn, paramstyle="qmark")
    assert repo.get_message_history("nobody", 5) == []


def test_save_without_table_raises():
    connection = sqlite3.connect(":memory:")
    repo = MessageRepo(connection, paramstyle="qmark")
    with pytest.raises(RepositoryError):
        repo.save_message(_msg(1))


def test_unknown_paramstyle_rejected(conn):
    with pytest.raises(ValueError):
        MessageRepo(conn, paramstyle="numeric")


def test_all_templates_enabled_by_priority(conn):
    _add_template(conn, "a", 1)
    _add_template(conn, "b", 5, conditions='{"minute_range": [0, 45]}')
    _add_template(conn, "c", 9, enabled=0)
    repo = TemplateRepo(conn, paramstyle="qmark")

    templates = repo.get_all_templates()

    assert [t.id for t in templates] == ["b", "a"]
    assert templates[0].conditions == {"minute_range": [0, 45]}
    assert templates[1].conditions == {}
    assert getattr(templates[0].phase, "value", templates[0].phase) == "live"
    assert templates[0].created_at == 10
    assert templates[0].updated_at == 20


def test_find_matching_includes_generic_templates(conn):
    _add_template(conn, "mine", 3, persona="hype")
    _add_template(conn, "generic", 7)
    _add_template(conn, "theirs", 9, persona="calm")
    repo = TemplateRepo(conn, paramstyle="qmark")

    templates = repo.find_matching_templates("GOAL", "vi", "hype")

    assert [t.id for t in templates] == ["generic", "mine"]
    assert templates[1].persona_id == "hype"
    assert templates[0].persona_id == ""


def test_find_matching_filters_language(conn):
    _add_template(conn, "a", 1)
    repo = TemplateRepo(conn, paramstyle="qmark")
    assert repo.find_matching_templates("GOAL", "en", "hype") == []


def test_get_template_by_id(conn):
    _add_template(conn, "a", 4, persona="hype")
    repo = TemplateRepo(conn, paramstyle="qmark")

    template = repo.get_template_by_id("a")

    assert template.id == "a"
    assert template.text == "text a"
    assert template.priority == 4
    assert template.enabled is True


def test_get_missing_template_raises(conn):
    _add_template(conn, "off", 4, enabled=0)
    repo = TemplateRepo(conn, paramstyle="qmark")
    with pytest.raises(RepositoryError):
        repo.get_template_by_id("off")


def test_bad_conditions_json_raises(conn):
    _add_template(conn, "bad", 1, conditions="{not json")
    repo = TemplateRepo(conn, paramstyle="qmark")
    with pytest.raises(RepositoryError):
        repo.get_all_templates()