"""Tests for the sqlite chat session store."""

from __future__ import annotations

import pytest

from explainy.database import SessionStore
from explainy.errors import PersistenceError


@pytest.fixture
def sessions(tmp_path) -> SessionStore:
    db = SessionStore(str(tmp_path / "nested" / "chat.db"))
    db.init_schema()
    return db


def test_init_schema_is_idempotent(sessions: SessionStore) -> None:
    sessions.init_schema()
    assert sessions.list_sessions() == []


def test_create_and_append(sessions: SessionStore) -> None:
    chat_id = sessions.create_session()
    assert sessions.session_exists(chat_id)
    sessions.append_exchange(chat_id, "first question", "first answer")
    sessions.append_exchange(chat_id, "second question", "second answer")

    history = sessions.get_history(chat_id)
    assert [h["user_message"] for h in history] == ["first question", "second question"]
    assert history[0]["assistant_message"] == "first answer"
    assert history[0]["chat_id"] == chat_id


def test_session_titles(sessions: SessionStore) -> None:
    short = sessions.create_session()
    long = sessions.create_session()
    untitled = sessions.create_session()
    sessions.append_exchange(short, "hello", "hi")
    sessions.append_exchange(long, "x" * 40, "y")

    by_id = {s["id"]: s for s in sessions.list_sessions()}
    assert set(by_id) == {short, long, untitled}
    assert by_id[short]["title"] == "hello"
    assert by_id[long]["title"] == "x" * 30 + "..."
    assert "title" not in by_id[untitled]


def test_delete_session(sessions: SessionStore) -> None:
    keep = sessions.create_session()
    drop = sessions.create_session()
    sessions.append_exchange(drop, "q", "a")
    sessions.append_exchange(keep, "q", "a")

    sessions.delete_session(drop)

    assert not sessions.session_exists(drop)
    assert sessions.get_history(drop) == []
    assert len(sessions.get_history(keep)) == 1


def test_unknown_session_exists(sessions: SessionStore) -> None:
    assert not sessions.session_exists("missing")
    assert sessions.get_history("missing") == []


def test_append_to_missing_session_fails(sessions: SessionStore) -> None:
    with pytest.raises(PersistenceError):
        sessions.append_exchange("missing", "q", "a")


def test_errors_are_wrapped(tmp_path) -> None:
    db = SessionStore(str(tmp_path / "chat.db"))
    # Schema never created.
    with pytest.raises(PersistenceError):
        db.create_session()
