"""
Local Durable Cache

Key-value persistence the client stores hydrate from on start-up and write
through on every mutation. Values are JSON documents; last writer wins per
key.

Keys in use:
    cart_<table_key>       cart lines of one table
    last_used_table        most recently resolved table key
    orders                 local order collection
    cached_bills           local bill collection
    has_seen_menu_loader   first-visit flag
    has_seen_promo         promo flag (session cache only)

An entry that cannot be decoded is logged and read as a miss; it never
raises into the caller.
"""

import json
import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from filelock import FileLock, Timeout

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class DurableCache(ABC):
    """Abstract key-value store holding JSON documents."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the decoded value, or default when missing or corrupt."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> bool:
        """Store a JSON-serialisable value. Returns False when it was not written."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    def _decode(self, key: str, raw: str, default: Any) -> Any:
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Ignoring corrupt cache entry {key!r}: {e}")
            return default


class MemoryCache(DurableCache):
    """
    Process-local cache.

    Used for session-scoped flags and in tests. Values are kept encoded in
    `raw` so behaviour matches the file cache, corruption included.
    """

    def __init__(self):
        self.raw: dict[str, str] = {}

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self.raw:
            return default
        return self._decode(key, self.raw[key], default)

    def set(self, key: str, value: Any) -> bool:
        self.raw[key] = json.dumps(value)
        return True

    def delete(self, key: str) -> None:
        self.raw.pop(key, None)


class JsonFileCache(DurableCache):
    """
    One JSON file per key inside a directory.

    Writes go to a temporary file that replaces the target, under a
    directory-wide file lock, so several screens on one machine can share a
    cache directory.
    """

    def __init__(self, directory: str, lock_timeout: float = 5.0):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.lock_timeout = lock_timeout
        self._lock_path = self.directory / ".cache.lock"
        logger.info(f"JsonFileCache initialized at {self.directory}")

    def _path(self, key: str) -> Path:
        return self.directory / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    def get(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return default
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read cache entry {key!r}: {e}")
            return default
        return self._decode(key, raw, default)

    def set(self, key: str, value: Any) -> bool:
        payload = json.dumps(value)
        try:
            with FileLock(str(self._lock_path), timeout=self.lock_timeout):
                fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as fh:
                        fh.write(payload)
                    os.replace(tmp_name, self._path(key))
                except BaseException:
                    if os.path.exists(tmp_name):
                        os.unlink(tmp_name)
                    raise
        except Timeout:
            logger.error(f"Cache lock timeout ({self.lock_timeout}s) writing {key!r}")
            return False
        return True

    def delete(self, key: str) -> None:
        try:
            with FileLock(str(self._lock_path), timeout=self.lock_timeout):
                self._path(key).unlink(missing_ok=True)
        except Timeout:
            logger.error(f"Cache lock timeout ({self.lock_timeout}s) deleting {key!r}")


def open_cache(directory: Optional[str] = None, lock_timeout: float = 5.0) -> DurableCache:
    """File cache when a directory is configured, memory cache otherwise."""
    if directory:
        return JsonFileCache(directory, lock_timeout=lock_timeout)
    logger.info("No cache directory configured, using MemoryCache")
    return MemoryCache()
