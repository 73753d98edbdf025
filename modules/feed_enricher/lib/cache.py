"""
Durable key/value cache for the last captured payload.

Contract: get(key) -> value | None, set(key, value). Values are JSON-safe
objects. Callers treat every failure here as best-effort.
"""

from __future__ import annotations

import contextlib
import json
import os
import sqlite3
from abc import ABC, abstractmethod
from typing import Any

from .utils import now_iso


class CacheError(Exception):
    """Stored value could not be decoded."""


class Cache(ABC):
    @abstractmethod
    def get(self, key: str) -> Any | None:
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryCache(Cache):
    """Process-local cache; values round-trip through JSON like the sqlite one."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise CacheError(f"corrupt cache entry {key!r}") from e

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value, ensure_ascii=False)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class SqliteCache(Cache):
    """Single-table sqlite store: (key TEXT PRIMARY KEY, value JSON text)."""

    def __init__(self, sqlite_path: str) -> None:
        self.sqlite_path = sqlite_path
        self._ready = False

    # ---- Public API ---------------------------------------------------------

    def get(self, key: str) -> Any | None:
        self._init()
        with contextlib.closing(_connect(self.sqlite_path)) as conn:
            _apply_pragmas(conn)
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except (TypeError, ValueError) as e:
            raise CacheError(f"corrupt cache entry {key!r}") from e

    def set(self, key: str, value: Any) -> None:
        data = json.dumps(value, ensure_ascii=False)
        self._init()
        with contextlib.closing(_connect(self.sqlite_path)) as conn:
            _apply_pragmas(conn)
            conn.execute(
                """
                INSERT INTO kv (key, value, updated_utc) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_utc = excluded.updated_utc
                """,
                (key, data, now_iso()),
            )

    def delete(self, key: str) -> None:
        self._init()
        with contextlib.closing(_connect(self.sqlite_path)) as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    def keys(self) -> list[str]:
        if not os.path.exists(self.sqlite_path):
            return []
        self._init()
        with contextlib.closing(_connect(self.sqlite_path)) as conn:
            return [r[0] for r in conn.execute("SELECT key FROM kv ORDER BY key")]

    # ---- Internal utilities -------------------------------------------------

    def _init(self) -> None:
        if self._ready:
            return
        _ensure_dir(self.sqlite_path)
        with contextlib.closing(_connect(self.sqlite_path)) as conn:
            _apply_pragmas(conn)
            _ensure_schema(conn)
        self._ready = True


def open_cache(sqlite_path: str | None) -> Cache:
    """sqlite-backed cache for a path, in-memory otherwise."""
    return SqliteCache(sqlite_path) if sqlite_path else MemoryCache()


def _ensure_dir(sqlite_path: str) -> None:
    d = os.path.dirname(os.path.abspath(sqlite_path)) or "."
    os.makedirs(d, exist_ok=True)


def _connect(sqlite_path: str) -> sqlite3.Connection:
    # autocommit; every statement here is a single write
    return sqlite3.connect(sqlite_path, timeout=30.0, isolation_level=None)


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA temp_store=MEMORY;")


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS kv (
          key   TEXT PRIMARY KEY,
          value TEXT NOT NULL,
          updated_utc TEXT NOT NULL
        );
        """
    )
