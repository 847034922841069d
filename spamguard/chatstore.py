"""SQLite storage for the messages of a simple chat."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from os import PathLike

_SCHEMA = """
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    content TEXT NOT NULL,
    username TEXT NOT NULL,
    timestamp DATETIME DEFAULT CURRENT_TIMESTAMP
)
"""


@dataclass(frozen=True)
class StoredMessage:
    """A chat message as stored."""

    content: str
    username: str
    timestamp: str


class ChatStoreError(Exception):
    """Raised when the message store fails."""


class Messages:
    """Chat messages kept in an SQLite database, created on first use."""

    def __init__(self, path: str | PathLike[str]) -> None:
        try:
            self._db = sqlite3.connect(str(path))
            with self._db:
                self._db.execute(_SCHEMA)
        except sqlite3.Error as err:
            raise ChatStoreError(f"failed to init db: {err}") from err

    def __enter__(self) -> Messages:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def add(self, content: str, username: str) -> None:
        """Store a new message."""
        try:
            with self._db:
                self._db.execute(
                    "INSERT INTO messages (content, username) VALUES (?, ?)", (content, username)
                )
        except sqlite3.Error as err:
            raise ChatStoreError(f"failed to insert message: {err}") from err

    def last(self, count: int) -> list[StoredMessage]:
        """Return up to count messages, newest first."""
        try:
            rows = self._db.execute(
                "SELECT content, username, timestamp FROM messages "
                "ORDER BY timestamp DESC, id DESC LIMIT ?",
                (count,),
            ).fetchall()
        except sqlite3.Error as err:
            raise ChatStoreError(f"failed to query messages: {err}") from err
        return [StoredMessage(content, username, str(ts)) for content, username, ts in rows]

    def count(self) -> int:
        """Return the number of stored messages."""
        try:
            (total,) = self._db.execute("SELECT COUNT(*) FROM messages").fetchone()
        except sqlite3.Error as err:
            raise ChatStoreError(f"failed to count messages: {err}") from err
        return total

    def close(self) -> None:
        self._db.close()