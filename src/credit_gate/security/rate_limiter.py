"""Fixed window rate limiter with pluggable counter stores.

Each key owns one ``(window_start, count)`` record. The read, maybe
reset, increment, persist cycle runs under a lock scoped to that key
only. Stores signal trouble with CounterStoreUnavailableError and the
limiter then fails open.
"""

from __future__ import annotations

import fcntl
import os
import re
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import redis
import structlog

from credit_gate.errors import CounterStoreUnavailableError

logger = structlog.get_logger()

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.\-]")

_FLOCK_POLL_SECONDS = 0.005


def sanitize_key(raw: str) -> str:
    """Map an untrusted key onto ``[A-Za-z0-9_.-]``.

    Deterministic; distinct raw keys may collide, which only merges
    their quotas.
    """
    return _UNSAFE_KEY_CHARS.sub("_", raw)


@dataclass(frozen=True)
class CounterRecord:
    window_start: int
    count: int


def next_record(
    current: CounterRecord | None, now: int, window_seconds: int
) -> CounterRecord:
    """Apply one increment, starting a fresh window when the old one expired."""
    if current is None or now - current.window_start >= window_seconds:
        return CounterRecord(window_start=now, count=1)
    return CounterRecord(window_start=current.window_start, count=current.count + 1)


class CounterStore(Protocol):
    """Durable per-key counter with an atomic increment."""

    def increment(self, key: str, window_seconds: int, now: int) -> CounterRecord:
        """Atomically read-or-initialize, increment and persist ``key``."""
        ...

    def prune(self, older_than: int) -> int:
        """Drop records whose window started before ``older_than``."""
        ...


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyLocks:
    """Per-key locks, created on demand and dropped when unused.

    Waiting on one key never blocks another key.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _LockEntry] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, key: str, timeout: float) -> Iterator[None]:
        """Hold the lock for ``key``.

        Raises:
            CounterStoreUnavailableError: lock not acquired within timeout.
        """
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _LockEntry()
            entry.users += 1
        try:
            if not entry.lock.acquire(timeout=timeout):
                raise CounterStoreUnavailableError(
                    f"Timed out waiting for counter lock: {key}"
                )
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[key]


class InMemoryCounterStore:
    """Process-local counters.

    Thread-safe via per-key locks. Single-process only.
    """

    def __init__(self, lock_timeout: float = 2.0) -> None:
        self._records: dict[str, CounterRecord] = {}
        self._locks = KeyLocks()
        self._lock_timeout = lock_timeout

    def get(self, key: str) -> CounterRecord | None:
        return self._records.get(key)

    def increment(self, key: str, window_seconds: int, now: int) -> CounterRecord:
        with self._locks.hold(key, self._lock_timeout):
            record = next_record(self._records.get(key), now, window_seconds)
            self._records[key] = record
            return record

    def prune(self, older_than: int) -> int:
        removed = 0
        for key in list(self._records):
            with self._locks.hold(key, self._lock_timeout):
                record = self._records.get(key)
                if record is not None and record.window_start < older_than:
                    del self._records[key]
                    removed += 1
        return removed


class FileCounterStore:
    """One small file per key, ``rl_<key>.txt`` containing ``start|count``.

    A process-local key lock serializes threads; ``fcntl.flock`` on the
    file serializes worker processes sharing the directory. Both waits
    are bounded by ``lock_timeout``.
    """

    def __init__(self, directory: Path, lock_timeout: float = 2.0) -> None:
        self._directory = directory
        self._lock_timeout = lock_timeout
        self._locks = KeyLocks()

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, key: str) -> Path:
        return self._directory / f"rl_{key}.txt"

    def get(self, key: str) -> CounterRecord | None:
        try:
            data = self.path_for(key).read_bytes()
        except FileNotFoundError:
            return None
        return self._parse(data, key)

    def increment(self, key: str, window_seconds: int, now: int) -> CounterRecord:
        path = self.path_for(key)
        with self._locks.hold(key, self._lock_timeout):
            try:
                self._directory.mkdir(mode=0o700, parents=True, exist_ok=True)
                fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
                with os.fdopen(fd, "r+b") as fh:
                    self._flock(fh.fileno(), key)
                    try:
                        current = self._parse(fh.read(), key)
                        record = next_record(current, now, window_seconds)
                        fh.seek(0)
                        fh.truncate()
                        fh.write(f"{record.window_start}|{record.count}".encode())
                        fh.flush()
                    finally:
                        fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
            except OSError as exc:
                raise CounterStoreUnavailableError(
                    f"Counter file unavailable: {path}"
                ) from exc
            return record

    def prune(self, older_than: int) -> int:
        """Unlink counter files whose window started before ``older_than``.

        An increment from another process that opened the file just
        before the unlink lands on the orphaned inode; only keys idle
        for longer than the prune age are affected.
        """
        if not self._directory.is_dir():
            return 0
        removed = 0
        for path in self._directory.glob("rl_*.txt"):
            key = path.name[len("rl_") : -len(".txt")]
            with self._locks.hold(key, self._lock_timeout):
                try:
                    with path.open("r+b") as fh:
                        self._flock(fh.fileno(), key)
                        record = self._parse(fh.read(), key)
                        if record is None or record.window_start < older_than:
                            path.unlink()
                            removed += 1
                except FileNotFoundError:
                    continue
        return removed

    def _flock(self, fd: int, key: str) -> None:
        deadline = time.monotonic() + self._lock_timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise CounterStoreUnavailableError(
                        f"Timed out waiting for counter file lock: {key}"
                    ) from None
                time.sleep(_FLOCK_POLL_SECONDS)

    @staticmethod
    def _parse(raw: bytes, key: str) -> CounterRecord | None:
        data = raw.decode("ascii", "replace").strip()
        if not data:
            return None
        start, _, count = data.partition("|")
        try:
            return CounterRecord(window_start=int(start), count=int(count or 0))
        except ValueError:
            logger.warning("rate_limit_record_corrupt", key=key)
            return None


_REDIS_INCREMENT_SCRIPT = """
local stored = redis.call('HMGET', KEYS[1], 'start', 'count')
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local start = tonumber(stored[1])
local count = tonumber(stored[2])
if (not start) or (now - start >= window) then
  start = now
  count = 0
end
count = count + 1
redis.call('HSET', KEYS[1], 'start', start, 'count', count)
redis.call('EXPIRE', KEYS[1], window * 2)
return {start, count}
"""


class RedisCounterStore:
    """Counters kept in Redis hashes, incremented by a Lua script.

    Keys expire after two windows, so ``prune`` has nothing to do.
    """

    def __init__(self, client: redis.Redis, prefix: str = "credit_gate:rl:") -> None:
        self._client = client
        self._prefix = prefix
        self._script = client.register_script(_REDIS_INCREMENT_SCRIPT)

    @classmethod
    def from_url(cls, url: str, timeout: float = 2.0) -> RedisCounterStore:
        client = redis.Redis.from_url(
            url, socket_timeout=timeout, socket_connect_timeout=timeout
        )
        return cls(client)

    def increment(self, key: str, window_seconds: int, now: int) -> CounterRecord:
        try:
            start, count = self._script(
                keys=[f"{self._prefix}{key}"], args=[now, window_seconds]
            )
        except redis.RedisError as exc:
            raise CounterStoreUnavailableError(f"Redis counter failed: {key}") from exc
        return CounterRecord(window_start=int(start), count=int(count))

    def prune(self, older_than: int) -> int:
        return 0

    def close(self) -> None:
        self._client.close()


class FixedWindowRateLimiter:
    """Fixed (non-sliding) window limiter.

    Fails open: when the store is unavailable the request is treated
    as under the limit.
    """

    def __init__(
        self,
        store: CounterStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock

    @property
    def store(self) -> CounterStore:
        return self._store

    def check_and_increment(self, key: str, limit: int, window_seconds: int) -> bool:
        """Charge one request to ``key``.

        Args:
            key: Raw limiter key, e.g. ``ip_1.2.3.4`` or ``cid_ABC``.
            limit: Max requests per window.
            window_seconds: Window length.

        Returns:
            True if the count after incrementing is within ``limit``.
        """
        safe_key = sanitize_key(key)
        now = int(self._clock())
        try:
            record = self._store.increment(safe_key, window_seconds, now)
        except (CounterStoreUnavailableError, OSError) as exc:
            logger.warning("rate_limit_store_error", key=safe_key, error=str(exc))
            return True
        return record.count <= limit

    def prune(self, max_age_seconds: int, *, window_seconds: int = 0) -> int:
        """Remove records idle for longer than ``max_age_seconds``.

        The age is never shorter than ``window_seconds``, so a record
        whose window is still open survives a prune.

        Returns:
            Number of records removed.
        """
        max_age = max(max_age_seconds, window_seconds)
        return self._store.prune(int(self._clock()) - max_age)
