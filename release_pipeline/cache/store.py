"""Build-environment cache stores.

This module provides content-addressed storage for environment snapshots:
- MemoryCacheStore: in-process dict guarded by a lock
- LocalCacheStore: one directory per key on local disk
- HybridCacheStore: bounded memory tier in front of a persistent tier

All stores share the same contract: lookup() is a pure read where None
means a cold cache, and store() is idempotent for identical content but
raises CacheKeyCollisionError when a key already holds different content.
The check-and-write in store() is atomic per key.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from release_pipeline.errors import CacheKeyCollisionError
from release_pipeline.types import CacheEntry

logger = logging.getLogger(__name__)

BLOB_FILENAME = "blob"
META_FILENAME = "meta.json"


class CacheStore(ABC):
    """Interface shared by all cache stores."""

    name = "abstract"

    @abstractmethod
    def lookup(self, key: str) -> CacheEntry | None:
        """Return the entry stored under key, or None on a cold cache."""

    @abstractmethod
    def store(self, key: str, blob: bytes) -> CacheEntry:
        """Store blob under key and return the resulting entry.

        Raises:
            CacheKeyCollisionError: If key already holds different content.
        """

    def is_healthy(self) -> bool:
        """Check whether the store can serve reads and writes."""
        return True


class MemoryCacheStore(CacheStore):
    """Cache store keeping entries in process memory.

    Args:
        capacity: Maximum number of entries kept; the least recently used
            entry is dropped when exceeded. None keeps everything.
    """

    name = "memory"

    def __init__(self, capacity: int | None = None) -> None:
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._capacity = capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def lookup(self, key: str) -> CacheEntry | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._capacity is not None:
                self._entries.move_to_end(key)
            return entry

    def store(self, key: str, blob: bytes) -> CacheEntry:
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None:
                if existing.blob != blob:
                    raise CacheKeyCollisionError(key)
                return existing

            entry = CacheEntry(key=key, blob=bytes(blob))
            self._entries[key] = entry
            if self._capacity is not None:
                while len(self._entries) > self._capacity:
                    dropped, _ = self._entries.popitem(last=False)
                    logger.debug("Dropped %s from memory cache", dropped[:23])
            return entry


@contextmanager
def key_lock(
    lock_dir: Path,
    key: str,
    timeout: float | None = None,
) -> Iterator[None]:
    """Acquire an exclusive file lock for a cache key.

    Args:
        lock_dir: Directory for lock files.
        key: Cache key to lock on.
        timeout: Lock acquisition timeout in seconds (None = blocking).

    Yields:
        None when lock is acquired.

    Raises:
        TimeoutError: If lock cannot be acquired within timeout.
    """
    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_dir / f"{_key_digest(key)}.lock"

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    lock_acquired = False
    try:
        if timeout is not None:
            start = time.monotonic()
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    lock_acquired = True
                    break
                except BlockingIOError:
                    if time.monotonic() - start >= timeout:
                        raise TimeoutError(
                            f"Timeout waiting for cache lock on {key[:23]}"
                        ) from None
                    time.sleep(0.05)
        else:
            fcntl.flock(fd, fcntl.LOCK_EX)
            lock_acquired = True

        yield
    finally:
        if lock_acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)


def _key_digest(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def _write_atomic(path: Path, data: bytes) -> None:
    """Write data to path through a temp file and rename."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class LocalCacheStore(CacheStore):
    """Cache store persisting entries on local disk.

    Layout: {root}/{digest[0:2]}/{digest}/blob and meta.json, where digest
    is the SHA-256 of the cache key. meta.json is written last and marks
    an entry as complete.

    Args:
        root: Root directory for cache entries.
        lock_timeout: Seconds to wait for a per-key write lock.
    """

    name = "localfile"

    def __init__(self, root: Path, lock_timeout: float | None = 300) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock_dir = self.root / ".locks"
        self._lock_timeout = lock_timeout

    def _entry_dir(self, key: str) -> Path:
        digest = _key_digest(key)
        return self.root / digest[:2] / digest

    def _read_meta(self, entry_dir: Path) -> dict[str, object] | None:
        meta_path = entry_dir / META_FILENAME
        if not meta_path.exists():
            return None
        with meta_path.open(encoding="utf-8") as f:
            meta: dict[str, object] = json.load(f)
        return meta

    def _read_blob(self, entry_dir: Path, sha256: object) -> bytes | None:
        """Return the stored blob, or None if it is missing or corrupt."""
        try:
            blob = (entry_dir / BLOB_FILENAME).read_bytes()
        except FileNotFoundError:
            return None
        if hashlib.sha256(blob).hexdigest() != sha256:
            return None
        return blob

    def lookup(self, key: str) -> CacheEntry | None:
        entry_dir = self._entry_dir(key)
        meta = self._read_meta(entry_dir)
        if meta is None:
            return None

        blob = self._read_blob(entry_dir, meta["sha256"])
        if blob is None:
            logger.error("Cache entry %s failed integrity check", key[:23])
            return None

        return CacheEntry(
            key=key,
            blob=blob,
            created_at=datetime.fromisoformat(str(meta["created_at"])),
        )

    def store(self, key: str, blob: bytes) -> CacheEntry:
        entry_dir = self._entry_dir(key)
        blob_sha256 = hashlib.sha256(blob).hexdigest()

        with key_lock(self._lock_dir, key, timeout=self._lock_timeout):
            meta = self._read_meta(entry_dir)
            if meta is not None:
                if meta["sha256"] != blob_sha256:
                    raise CacheKeyCollisionError(key)
                if self._read_blob(entry_dir, blob_sha256) is None:
                    logger.warning("Repairing damaged cache entry %s", key[:23])
                    _write_atomic(entry_dir / BLOB_FILENAME, bytes(blob))
                else:
                    logger.debug("Cache entry %s already stored", key[:23])
                return CacheEntry(
                    key=key,
                    blob=bytes(blob),
                    created_at=datetime.fromisoformat(str(meta["created_at"])),
                )

            entry = CacheEntry(key=key, blob=bytes(blob))
            entry_dir.mkdir(parents=True, exist_ok=True)
            _write_atomic(entry_dir / BLOB_FILENAME, entry.blob)
            meta = {
                "key": key,
                "sha256": blob_sha256,
                "size_bytes": len(blob),
                "created_at": entry.created_at.isoformat(),
            }
            _write_atomic(
                entry_dir / META_FILENAME,
                json.dumps(meta, indent=2, sort_keys=True).encode("utf-8"),
            )

        logger.info("Stored cache entry %s (%d bytes)", key[:23], len(blob))
        return entry

    def is_healthy(self) -> bool:
        return self.root.is_dir() and os.access(self.root, os.W_OK)


class HybridCacheStore(CacheStore):
    """Memory tier in front of a persistent tier.

    Writes go to the persistent tier first, which decides collisions;
    reads are served from memory when possible and persistent hits are
    promoted into memory. Dropping an entry from memory never loses it.

    Args:
        persistent: Authoritative store.
        hot_capacity: Maximum number of entries kept in memory.
    """

    name = "hybrid"

    def __init__(self, persistent: CacheStore, hot_capacity: int = 8) -> None:
        self.persistent = persistent
        self.hot = MemoryCacheStore(capacity=hot_capacity)

    def lookup(self, key: str) -> CacheEntry | None:
        entry = self.hot.lookup(key)
        if entry is not None:
            return entry

        entry = self.persistent.lookup(key)
        if entry is not None:
            self.hot.store(key, entry.blob)
        return entry

    def store(self, key: str, blob: bytes) -> CacheEntry:
        entry = self.persistent.store(key, blob)
        self.hot.store(key, entry.blob)
        return entry

    def is_healthy(self) -> bool:
        return self.persistent.is_healthy()


def create_cache_store(
    cache_dir: Path,
    hot_entries: int = 0,
) -> CacheStore:
    """Create the configured cache store.

    Args:
        cache_dir: Root directory for persistent entries.
        hot_entries: Entries kept in memory; 0 disables the memory tier.

    Returns:
        A LocalCacheStore, wrapped in a HybridCacheStore when hot_entries > 0.
    """
    local = LocalCacheStore(cache_dir)
    if hot_entries > 0:
        return HybridCacheStore(local, hot_capacity=hot_entries)
    return local


__all__ = [
    "CacheStore",
    "HybridCacheStore",
    "LocalCacheStore",
    "MemoryCacheStore",
    "create_cache_store",
    "key_lock",
]
