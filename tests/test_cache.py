from __future__ import annotations

import json
import os
from pathlib import Path
import stat

import pytest

from src.cache import InMemoryTtlCache, JsonFileCache


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_in_memory_cache_expires_entries() -> None:
    clock = FakeClock()
    cache = InMemoryTtlCache(now_fn=clock)
    cache.put("k", "v", ttl_sec=10)

    clock.now += 9
    assert cache.get("k") == "v"
    clock.now += 1
    assert cache.get("k") is None


def test_in_memory_cache_last_write_wins() -> None:
    cache = InMemoryTtlCache()
    cache.put("k", "first", ttl_sec=60)
    cache.put("k", "second", ttl_sec=60)
    assert cache.get("k") == "second"


def test_in_memory_cache_ignores_non_positive_ttl() -> None:
    cache = InMemoryTtlCache()
    cache.put("k", "v", ttl_sec=0)
    assert cache.get("k") is None


def test_json_file_cache_persists_between_instances(tmp_path: Path) -> None:
    clock = FakeClock()
    path = tmp_path / "nested" / "cache.json"
    JsonFileCache(path, now_fn=clock).put("drive_sa_token", "tok", ttl_sec=100)

    reopened = JsonFileCache(path, now_fn=clock)
    assert reopened.get("drive_sa_token") == "tok"

    clock.now += 100
    assert reopened.get("drive_sa_token") is None


def test_json_file_cache_drops_expired_entries_on_write(tmp_path: Path) -> None:
    clock = FakeClock()
    path = tmp_path / "cache.json"
    cache = JsonFileCache(path, now_fn=clock)
    cache.put("old", "1", ttl_sec=5)
    clock.now += 10
    cache.put("new", "2", ttl_sec=5)

    stored = json.loads(path.read_text(encoding="utf-8"))
    assert set(stored) == {"new"}


def test_json_file_cache_treats_corrupt_file_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    path.write_text("{not json", encoding="utf-8")
    cache = JsonFileCache(path)

    assert cache.get("k") is None
    cache.put("k", "v", ttl_sec=60)
    assert cache.get("k") == "v"


def test_json_file_cache_write_failure_is_not_fatal(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("regular file", encoding="utf-8")
    cache = JsonFileCache(blocker / "cache.json")

    cache.put("k", "v", ttl_sec=60)
    assert cache.get("k") is None


@pytest.mark.skipif(os.name == "nt", reason="POSIX file modes")
def test_json_file_cache_file_is_owner_only(tmp_path: Path) -> None:
    path = tmp_path / "cache.json"
    path.write_text("{}", encoding="utf-8")
    path.chmod(0o644)

    JsonFileCache(path).put("drive_sa_token", "secret", ttl_sec=60)

    assert stat.S_IMODE(path.stat().st_mode) == 0o600
