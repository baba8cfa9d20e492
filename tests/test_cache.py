"""Tests for the content-addressed AI result cache."""

import asyncio
import json
from pathlib import Path

import pytest

from docfusion.cache.result_cache import ResultCache, hash_text, normalize_text
from docfusion.cache.snapshot import (
    SNAPSHOT_VERSION,
    JsonSnapshotStore,
    MemorySnapshotStore,
)
from docfusion.errors import CacheError, CacheNotInitializedError


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _cache(
    store: MemorySnapshotStore | JsonSnapshotStore | None = None,
    max_entries: int = 10,
    ttl: float = 100.0,
    clock: FakeClock | None = None,
) -> ResultCache:
    return ResultCache(
        store or MemorySnapshotStore(),
        max_entries=max_entries,
        ttl_seconds=ttl,
        clock=clock or FakeClock(),
    )


class TestHashText:
    """Tests for cache key derivation."""

    def test_deterministic(self) -> None:
        assert hash_text("Invoice 42") == hash_text("Invoice 42")

    def test_whitespace_insensitive(self) -> None:
        assert hash_text("  Invoice\n\n42\t") == hash_text("Invoice 42")

    def test_different_text_different_key(self) -> None:
        assert hash_text("Invoice 42") != hash_text("Invoice 43")

    def test_hex_sha256(self) -> None:
        key = hash_text("x")
        assert len(key) == 64
        int(key, 16)

    def test_normalize_text(self) -> None:
        assert normalize_text(" a \n b ") == "a b"


class TestResultCache:
    """Tests for lookups, expiry, eviction and counters."""

    def test_round_trip(self) -> None:
        async def run() -> tuple[dict | None, dict]:
            cache = _cache()
            await cache.initialize()
            await cache.set("k", {"clientName": "Acme"})
            return await cache.get("k"), cache.get_stats()

        payload, stats = asyncio.run(run())
        assert payload == {"clientName": "Acme"}
        assert stats["hits"] == 1
        assert stats["sets"] == 1
        assert stats["misses"] == 0

    def test_miss_counted(self) -> None:
        async def run() -> tuple[dict | None, dict]:
            cache = _cache()
            await cache.initialize()
            return await cache.get("absent"), cache.get_stats()

        payload, stats = asyncio.run(run())
        assert payload is None
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.0

    def test_expired_entry_is_an_eviction(self) -> None:
        clock = FakeClock()

        async def run() -> tuple[dict | None, dict, int]:
            cache = _cache(ttl=10, clock=clock)
            await cache.initialize()
            await cache.set("k", {"v": 1})
            clock.now += 11
            return await cache.get("k"), cache.get_stats(), len(cache)

        payload, stats, size = asyncio.run(run())
        assert payload is None
        assert stats["evictions"] == 1
        assert stats["misses"] == 0
        assert size == 0

    def test_entry_alive_until_ttl(self) -> None:
        clock = FakeClock()

        async def run() -> dict | None:
            cache = _cache(ttl=10, clock=clock)
            await cache.initialize()
            await cache.set("k", {"v": 1})
            clock.now += 10
            return await cache.get("k")

        assert asyncio.run(run()) == {"v": 1}

    def test_capacity_is_exact(self) -> None:
        async def run() -> tuple[ResultCache, list[bool]]:
            cache = _cache(max_entries=3)
            await cache.initialize()
            for i in range(5):
                await cache.set(f"k{i}", {"i": i})
            present = [await cache.has(f"k{i}") for i in range(5)]
            return cache, present

        cache, present = asyncio.run(run())
        assert len(cache) == 3
        assert present == [False, False, True, True, True]
        assert cache.stats.evictions == 2

    def test_get_refreshes_recency(self) -> None:
        async def run() -> list[bool]:
            cache = _cache(max_entries=2)
            await cache.initialize()
            await cache.set("a", {})
            await cache.set("b", {})
            await cache.get("a")
            await cache.set("c", {})
            return [await cache.has(k) for k in ("a", "b", "c")]

        assert asyncio.run(run()) == [True, False, True]

    def test_has_does_not_touch_counters(self) -> None:
        async def run() -> dict:
            cache = _cache()
            await cache.initialize()
            await cache.set("k", {})
            await cache.has("k")
            await cache.has("missing")
            return cache.get_stats()

        stats = asyncio.run(run())
        assert stats["hits"] == 0
        assert stats["misses"] == 0

    def test_cleanup_removes_expired(self) -> None:
        clock = FakeClock()

        async def run() -> tuple[int, int]:
            cache = _cache(ttl=10, clock=clock)
            await cache.initialize()
            await cache.set("old", {})
            clock.now += 5
            await cache.set("new", {})
            clock.now += 6
            return await cache.cleanup(), len(cache)

        assert asyncio.run(run()) == (1, 1)

    def test_clear_resets(self) -> None:
        async def run() -> dict:
            cache = _cache()
            await cache.initialize()
            await cache.set("k", {})
            await cache.get("k")
            await cache.clear()
            return cache.get_stats()

        stats = asyncio.run(run())
        assert stats["size"] == 0
        assert stats["hits"] == 0
        assert stats["sets"] == 0

    def test_use_before_initialize_raises(self) -> None:
        cache = _cache()
        with pytest.raises(CacheNotInitializedError):
            asyncio.run(cache.get("k"))
        with pytest.raises(CacheNotInitializedError):
            asyncio.run(cache.set("k", {}))

    def test_close_persists_and_uninitializes(self) -> None:
        store = MemorySnapshotStore()

        async def run() -> ResultCache:
            cache = _cache(store)
            await cache.initialize()
            await cache.set("k", {"v": 1})
            await cache.close()
            return cache

        cache = asyncio.run(run())
        assert store.saves == 1
        assert "k" in store.snapshot["entries"]
        assert cache.initialized is False
        with pytest.raises(CacheNotInitializedError):
            asyncio.run(cache.get("k"))

    def test_close_uninitialized_is_noop(self) -> None:
        store = MemorySnapshotStore()
        asyncio.run(_cache(store).close())
        assert store.saves == 0

    def test_invalid_capacity(self) -> None:
        with pytest.raises(ValueError):
            _cache(max_entries=0)


class TestSnapshotPersistence:
    """Tests for loading and saving snapshots."""

    def test_survives_restart(self, tmp_path: Path) -> None:
        path = tmp_path / "cache" / "ai_results.json"
        clock = FakeClock()

        async def first_run() -> None:
            cache = _cache(JsonSnapshotStore(path), clock=clock)
            await cache.initialize()
            await cache.set("k", {"clientName": "Acme"})
            await cache.get("k")
            await cache.close()

        async def second_run() -> tuple[dict | None, dict]:
            cache = _cache(JsonSnapshotStore(path), clock=clock)
            await cache.initialize()
            return await cache.get("k"), cache.get_stats()

        asyncio.run(first_run())
        payload, stats = asyncio.run(second_run())

        assert payload == {"clientName": "Acme"}
        assert stats["hits"] == 2
        assert stats["sets"] == 1

        saved = json.loads(path.read_text())
        assert saved["version"] == SNAPSHOT_VERSION
        assert "saved_at" in saved

    def test_expired_entries_dropped_on_load(self, tmp_path: Path) -> None:
        path = tmp_path / "snapshot.json"
        clock = FakeClock()

        async def run() -> tuple[int, dict]:
            cache = _cache(JsonSnapshotStore(path), ttl=10, clock=clock)
            await cache.initialize()
            await cache.set("k", {})
            await cache.close()
            clock.now += 60
            reloaded = _cache(JsonSnapshotStore(path), ttl=10, clock=clock)
            await reloaded.initialize()
            return len(reloaded), reloaded.get_stats()

        size, stats = asyncio.run(run())
        assert size == 0
        assert stats["evictions"] == 1

    def test_overflow_trimmed_on_load(self) -> None:
        snapshot = {
            "version": SNAPSHOT_VERSION,
            "entries": {
                f"k{i}": {
                    "payload": {},
                    "created_at": 1_000_000.0,
                    "last_accessed": 1_000_000.0 + i,
                }
                for i in range(5)
            },
            "stats": {},
        }

        async def run() -> list[bool]:
            cache = _cache(MemorySnapshotStore(snapshot), max_entries=2)
            await cache.initialize()
            return [await cache.has(f"k{i}") for i in range(5)]

        assert asyncio.run(run()) == [False, False, False, True, True]

    @pytest.mark.parametrize(
        "content", ["not json", "[1, 2]", json.dumps({"version": 99, "entries": {}})]
    )
    def test_bad_snapshot_ignored(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "snapshot.json"
        path.write_text(content)
        assert JsonSnapshotStore(path).load() is None

    @pytest.mark.parametrize(
        ("entries", "stats"),
        [
            ({"bad": "not-a-dict"}, {}),
            ({"bad": {"payload": {}, "created_at": "soon"}}, {}),
            ({"bad": {"created_at": 1_000_000.0}}, {"hits": "many"}),
            (["not", "a", "dict"], ["nor", "this"]),
        ],
    )
    def test_malformed_records_skipped_on_load(
        self, entries: object, stats: object
    ) -> None:
        good = {"payload": {"a": 1}, "created_at": 1_000_000.0}
        if isinstance(entries, dict):
            entries = {**entries, "good": good}
        snapshot = {"version": SNAPSHOT_VERSION, "entries": entries, "stats": stats}

        async def run() -> tuple[dict | None, int]:
            cache = _cache(MemorySnapshotStore(snapshot))
            await cache.initialize()
            return await cache.get("good"), cache.stats.hits

        payload, hits = asyncio.run(run())
        assert payload == ({"a": 1} if isinstance(entries, dict) else None)
        assert hits == (1 if payload else 0)

    def test_save_failure_raises_cache_error(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        store = JsonSnapshotStore(blocker / "snapshot.json")
        with pytest.raises(CacheError):
            store.save({"entries": {}, "stats": {}})
