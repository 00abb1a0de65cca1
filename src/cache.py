"""TTL key-value caches for access tokens and resolved Drive filenames."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import threading
import time
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

CACHE_FILE_MODE = 0o600


class CacheProtocol(Protocol):
    def get(self, key: str) -> str | None:
        """Return the live value for key, or None when missing/expired."""

    def put(self, key: str, value: str, ttl_sec: int) -> None:
        """Store value for ttl_sec seconds (last write wins)."""


class InMemoryTtlCache(CacheProtocol):
    """Process-wide cache; expiry is checked on read."""

    def __init__(self, now_fn: Callable[[], float] | None = None) -> None:
        self._now_fn = now_fn or time.time
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._now_fn():
                del self._entries[key]
                return None
            return value

    def put(self, key: str, value: str, ttl_sec: int) -> None:
        if ttl_sec <= 0:
            return
        with self._lock:
            self._entries[key] = (value, self._now_fn() + ttl_sec)


class JsonFileCache(CacheProtocol):
    """Cache persisted to a JSON file so entries survive between runs."""

    def __init__(self, path: str | Path, now_fn: Callable[[], float] | None = None) -> None:
        self._path = Path(path)
        self._now_fn = now_fn or time.time
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._load().get(key)
        if not isinstance(entry, dict):
            return None
        value = entry.get("value")
        expires_at = entry.get("expires_at")
        if not isinstance(value, str) or not isinstance(expires_at, (int, float)):
            return None
        if expires_at <= self._now_fn():
            return None
        return value

    def put(self, key: str, value: str, ttl_sec: int) -> None:
        if ttl_sec <= 0:
            return
        with self._lock:
            entries = self._load()
            now = self._now_fn()
            entries = {
                name: entry
                for name, entry in entries.items()
                if isinstance(entry, dict) and _expires_at(entry) > now
            }
            entries[key] = {"value": value, "expires_at": now + ttl_sec}
            try:
                self._write(entries)
            except OSError as exc:
                logger.warning("Could not write cache file %s: %s", self._path, exc)

    def _write(self, entries: dict[str, Any]) -> None:
        # Holds bearer tokens: owner read/write only.
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, CACHE_FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(json.dumps(entries, ensure_ascii=False))
        os.chmod(self._path, CACHE_FILE_MODE)

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable cache file %s: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            return {}
        return payload


def _expires_at(entry: dict[str, Any]) -> float:
    value = entry.get("expires_at")
    if isinstance(value, (int, float)):
        return float(value)
    return 0.0
