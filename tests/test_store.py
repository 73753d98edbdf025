# tests/test_store.py
import sqlite3

import pytest

from modules.feed_enricher.lib.cache import CacheError, MemoryCache, SqliteCache, open_cache
from modules.feed_enricher.lib.store import PayloadStore

KEY = "workmarket_firehose_last"


class BrokenCache(MemoryCache):
    def get(self, key):
        raise CacheError("unreadable")

    def set(self, key, value):
        raise OSError("disk full")


def test_hydrate_empty_cache():
    store = PayloadStore(MemoryCache(), KEY)
    assert store.latest is None
    assert store.latest_url is None


def test_hydrate_from_cache_record():
    cache = MemoryCache()
    cache.set(KEY, {"timestamp": 1735689600000, "url": "https://x/feed/firehose", "payload": {"results": []}})
    store = PayloadStore(cache, KEY)
    assert store.latest.body == {"results": []}
    assert store.latest.source_url == "https://x/feed/firehose"
    assert store.latest.captured_at == 1735689600000


def test_hydrate_corrupt_entry_starts_empty():
    cache = MemoryCache()
    cache._data[KEY] = "{not json"
    assert PayloadStore(cache, KEY).latest is None
    assert PayloadStore(BrokenCache(), KEY).latest is None


def test_hydrate_record_without_payload_starts_empty():
    cache = MemoryCache()
    cache.set(KEY, {"timestamp": 1, "url": "u"})
    assert PayloadStore(cache, KEY).latest is None


def test_capture_replaces_latest_and_persists(frozen_utc):
    cache = MemoryCache()
    store = PayloadStore(cache, KEY)
    first = store.capture("u1", [1])
    second = store.capture("u2", [2])
    assert store.latest is second
    assert first.body == [1]  # earlier payload untouched
    assert second.captured_at == 1735689600000
    assert cache.get(KEY) == {"timestamp": 1735689600000, "url": "u2", "payload": [2]}


def test_capture_survives_cache_write_failure():
    store = PayloadStore(BrokenCache(), KEY)
    p = store.capture("u", {"items": []})
    assert store.latest is p


def test_subscribers_in_order_and_isolated():
    store = PayloadStore(MemoryCache(), KEY)
    calls = []

    def boom(payload):
        calls.append("boom")
        raise RuntimeError("subscriber failed")

    store.subscribe(lambda p: calls.append(("a", p.source_url)))
    store.subscribe(boom)
    unsubscribe = store.subscribe(lambda p: calls.append(("c", p.source_url)))

    store.capture("u1", [])
    assert calls == [("a", "u1"), "boom", ("c", "u1")]

    unsubscribe()
    calls.clear()
    store.capture("u2", [])
    assert calls == [("a", "u2"), "boom"]


def test_sqlite_cache_roundtrip_and_rehydrate(tmp_path):
    path = tmp_path / "nested" / "cache.sqlite"
    store = PayloadStore(SqliteCache(str(path)), KEY)
    store.capture("https://x/feed/firehose", {"results": [{"id": 1}]})

    again = PayloadStore(SqliteCache(str(path)), KEY)
    assert again.latest.body == {"results": [{"id": 1}]}
    assert SqliteCache(str(path)).keys() == [KEY]


def test_sqlite_cache_delete_and_corrupt_row(tmp_path):
    path = str(tmp_path / "c.sqlite")
    cache = SqliteCache(path)
    cache.set("k", {"v": 1})
    cache.delete("k")
    assert cache.get("k") is None

    with sqlite3.connect(path) as conn:
        conn.execute("INSERT INTO kv (key, value, updated_utc) VALUES ('bad', '{oops', 'x')")
    with pytest.raises(CacheError):
        cache.get("bad")


def test_open_cache_picks_backend(tmp_path):
    assert isinstance(open_cache(""), MemoryCache)
    assert isinstance(open_cache(str(tmp_path / "a.sqlite")), SqliteCache)
    assert SqliteCache(str(tmp_path / "missing.sqlite")).keys() == []
