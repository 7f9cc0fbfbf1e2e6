"""Durable key-value storage for client-side state (guest cart, buy-now cart, session)."""
from __future__ import annotations

import json
import sqlite3
import time
from typing import Any, Dict, Optional, Protocol

from rich import print as rprint

from .config import Settings, settings as default_settings

CART_KEY = "cart"
DIRECT_CART_KEY = "direct-cart"
TOKEN_KEY = "auth-token"
USER_KEY = "user"


class KeyValueStorage(Protocol):
    """The subset of the browser ``localStorage`` API the engine relies on."""

    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


class MemoryStorage:
    """Process-local storage; used by tests and short-lived sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._data


class SqliteStorage:
    """Key-value storage persisted in a single SQLite table."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self.init_db()

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> "SqliteStorage":
        return cls((cfg or default_settings).storage_path)

    def init_db(self) -> None:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store(
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_ts REAL
                )
                """
            )
            conn.commit()

    def get_item(self, key: str) -> Optional[str]:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT value FROM kv_store WHERE key=?", (key,))
            row = cursor.fetchone()
            return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """INSERT INTO kv_store(key, value, updated_ts) VALUES (?,?,?)
                   ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_ts=excluded.updated_ts""",
                (key, value, time.time()),
            )
            conn.commit()

    def remove_item(self, key: str) -> None:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM kv_store WHERE key=?", (key,))
            conn.commit()


def read_json(storage: KeyValueStorage, key: str, default: Any = None) -> Any:
    """Decode a stored JSON value. Corrupt data is reported and treated as absent."""

    raw = storage.get_item(key)
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        rprint(f"[yellow]⚠ Ignoring corrupt '{key}' snapshot:[/yellow] {exc}")
        return default


def write_json(storage: KeyValueStorage, key: str, value: Any) -> None:
    storage.set_item(key, json.dumps(value))
