import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from explainy.errors import PersistenceError


TITLE_CHARS = 30


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SessionStore:
    """sqlite-backed chat sessions and their question/answer history."""

    def __init__(self, db_path: str) -> None:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise PersistenceError(f"cannot open session store {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise PersistenceError(str(exc)) from exc
        finally:
            conn.close()

    def init_schema(self) -> None:
        with self.connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS chats (
                    id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS chat_history (
                    id TEXT PRIMARY KEY,
                    chat_id TEXT NOT NULL,
                    user_message TEXT NOT NULL,
                    assistant_message TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    FOREIGN KEY (chat_id) REFERENCES chats(id) ON DELETE CASCADE
                );

                CREATE INDEX IF NOT EXISTS idx_chat_history_chat_id ON chat_history(chat_id);
                """
            )

    def create_session(self) -> str:
        chat_id = str(uuid.uuid4())
        with self.connect() as conn:
            conn.execute("INSERT INTO chats(id, created_at) VALUES (?, ?)", (chat_id, _now()))
        return chat_id

    def session_exists(self, chat_id: str) -> bool:
        with self.connect() as conn:
            row = conn.execute("SELECT 1 FROM chats WHERE id = ?", (chat_id,)).fetchone()
            return row is not None

    def append_exchange(self, chat_id: str, question: str, answer: str) -> str:
        msg_id = str(uuid.uuid4())
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO chat_history(id, chat_id, user_message, assistant_message, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (msg_id, chat_id, question, answer, _now()),
            )
        return msg_id

    def list_sessions(self) -> list[dict[str, Any]]:
        with self.connect() as conn:
            chats = conn.execute("SELECT * FROM chats ORDER BY created_at DESC, rowid DESC").fetchall()
            sessions: list[dict[str, Any]] = []
            for chat in chats:
                item = dict(chat)
                first = conn.execute(
                    """
                    SELECT user_message FROM chat_history
                    WHERE chat_id = ?
                    ORDER BY timestamp ASC, rowid ASC
                    LIMIT 1
                    """,
                    (chat["id"],),
                ).fetchone()
                if first is not None:
                    item["title"] = self._title(first["user_message"])
                sessions.append(item)
            return sessions

    def get_history(self, chat_id: str) -> list[dict[str, Any]]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM chat_history
                WHERE chat_id = ?
                ORDER BY timestamp ASC, rowid ASC
                """,
                (chat_id,),
            ).fetchall()
            return [dict(r) for r in rows]

    def delete_session(self, chat_id: str) -> None:
        with self.connect() as conn:
            conn.execute("DELETE FROM chat_history WHERE chat_id = ?", (chat_id,))
            conn.execute("DELETE FROM chats WHERE id = ?", (chat_id,))

    @staticmethod
    def _title(message: str) -> str:
        message = message or ""
        if len(message) > TITLE_CHARS:
            return message[:TITLE_CHARS] + "..."
        return message
