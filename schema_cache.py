"""TTL cache with single-flight fetches for database metadata queries.

Keys are hierarchical strings built by :func:`build_key`
(``conn:<id>:db:<id>:schema:<id>:cat:<id>``), so a whole connection,
database or schema can be evicted with one prefix scan.

Invalidating a key while a fetch for it is in flight does not cancel that
fetch: its result still lands in the cache once it completes. Callers that
need a guaranteed-fresh value after invalidation should invalidate again
once the in-flight fetch settles.
"""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

MISSING = object()  # Sentinel for cache misses (distinguishes "not cached" from cached None/False)

KEY_SEGMENTS = ("conn", "db", "schema", "cat")


def build_key(
    connection_id: str,
    database_id: str | None = None,
    schema_id: str | None = None,
    catalog_id: str | None = None,
) -> str:
    """Render a metadata identifier into a cache key.

    Absent (None or empty) segments are left out entirely:

        >>> build_key("conn1", "db1")
        'conn:conn1:db:db1'
    """
    values = (connection_id, database_id, schema_id, catalog_id)
    return ":".join(
        f"{label}:{value}" for label, value in zip(KEY_SEGMENTS, values) if value
    )


@dataclass(frozen=True)
class _Entry:
    value: Any
    expires_at: float | None  # None = never expires


class TTLCache:
    """In-memory key/value store with per-key TTL expiration.

    Expiry is lazy: entries are checked when looked up, never by a timer.
    ``size()`` reports table occupancy, so expired entries that have not been
    looked up since still count.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._store: dict[str, _Entry] = {}

    def _is_live(self, entry: _Entry, now: float) -> bool:
        return entry.expires_at is None or now < entry.expires_at

    def get(self, key: str, default=MISSING):
        """Return cached value if present and not expired.

        Args:
            key: Cache key.
            default: Value to return on miss. If not provided, returns MISSING sentinel.
        """
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is not None:
                if self._is_live(entry, now):
                    return entry.value
                # Expired — remove lazily
                del self._store[key]
        return default

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value; without a TTL the entry never expires."""
        expires_at = None if ttl is None else self._clock() + ttl
        with self._lock:
            self._store[key] = _Entry(value=value, expires_at=expires_at)

    def delete(self, key: str) -> None:
        """Remove a single key from the cache."""
        with self._lock:
            self._store.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        """Remove all keys that start with *prefix*. Returns how many were removed."""
        with self._lock:
            keys_to_remove = [k for k in self._store if k.startswith(prefix)]
            for k in keys_to_remove:
                del self._store[k]
        return len(keys_to_remove)

    def purge_expired(self) -> int:
        """Drop every entry that is no longer live. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._store.items() if not self._is_live(e, now)]
            for k in expired:
                del self._store[k]
        return len(expired)

    def clear(self) -> None:
        """Remove all entries."""
        with self._lock:
            self._store.clear()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._store)

    def size(self) -> int:
        return len(self._store)

    __len__ = size


def _consume_outcome(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


class SchemaCache:
    """Metadata cache that runs at most one fetch per key at a time.

    Concurrent ``get_or_fetch`` calls for the same missing key share one
    fetch task; its result (or exception) is delivered to all of them.
    Failed fetches are never cached.
    """

    def __init__(
        self,
        default_ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize schema cache.

        Args:
            default_ttl: TTL in seconds used when get_or_fetch gets none (None = never expire)
            clock: Monotonic time source, replaceable in tests
        """
        self.default_ttl = default_ttl
        self._store = TTLCache(clock=clock)
        self._pending: dict[str, asyncio.Task] = {}

    build_key = staticmethod(build_key)

    async def get_or_fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
    ) -> Any:
        """
        Return the cached value for key, fetching it if missing or expired.

        Args:
            key: Cache key (see build_key)
            fetcher: Async callable producing the value
            ttl: TTL in seconds; falls back to default_ttl. Zero or negative
                means the value is returned but never served from cache.

        Raises:
            Whatever fetcher raises, unchanged, to every caller sharing the fetch.
        """
        # No await until the pending task is registered: on the event loop
        # the lookup and registration cannot interleave with another caller.
        value = self._store.get(key)
        if value is not MISSING:
            logger.debug(f"Cache hit: {key}")
            return value

        task = self._pending.get(key)
        if task is not None:
            logger.debug(f"Joining in-flight fetch: {key}")
        else:
            logger.debug(f"Cache miss, fetching: {key}")
            ttl = self.default_ttl if ttl is None else ttl
            task = asyncio.get_running_loop().create_task(self._fetch(key, fetcher, ttl))
            # Mark the outcome retrieved even if every caller stops waiting
            task.add_done_callback(_consume_outcome)
            self._pending[key] = task

        # Shielded so a cancelled caller only abandons its own wait
        return await asyncio.shield(task)

    async def _fetch(self, key: str, fetcher, ttl: float | None):
        try:
            value = await fetcher()
        except Exception as e:
            logger.warning(f"Fetch failed for {key}: {e}")
            raise
        else:
            self._store.set(key, value, ttl)
            return value
        finally:
            self._pending.pop(key, None)

    def get(self, key: str, default=None):
        """Return a live cached value without fetching."""
        return self._store.get(key, default)

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value directly, bypassing any fetch."""
        self._store.set(key, value, self.default_ttl if ttl is None else ttl)

    def invalidate(self, key: str) -> None:
        """Remove a single entry. An in-flight fetch for key is not cancelled."""
        self._store.delete(key)
        logger.debug(f"Invalidated {key}")

    def _invalidate_scope(self, scope: str) -> int:
        # Trailing ":" keeps conn:X from matching conn:XY
        self._store.delete(scope)
        removed = self._store.delete_prefix(scope + ":")
        logger.debug(f"Invalidated scope {scope} ({removed} nested entries)")
        return removed

    def invalidate_connection(self, connection_id: str) -> None:
        """Remove every entry belonging to a connection."""
        self._invalidate_scope(build_key(connection_id))

    def invalidate_database(self, connection_id: str, database_id: str) -> None:
        """Remove every entry belonging to one database of a connection."""
        self._invalidate_scope(build_key(connection_id, database_id))

    def invalidate_schema(self, connection_id: str, database_id: str, schema_id: str) -> None:
        """Remove every entry belonging to one schema."""
        self._invalidate_scope(build_key(connection_id, database_id, schema_id))

    def clear(self) -> None:
        """Remove all entries. In-flight fetches keep running."""
        self._store.clear()
        logger.debug("Schema cache cleared")

    def pending_keys(self) -> list[str]:
        return list(self._pending)

    def pending_tasks(self, prefix: str = "") -> list[asyncio.Task]:
        """In-flight fetch tasks whose key starts with prefix."""
        return [task for key, task in self._pending.items() if key.startswith(prefix)]

    def get_stats(self) -> dict:
        """Cache occupancy for debugging; counts expired entries not yet swept."""
        return {"size": self._store.size(), "keys": self._store.keys()}

    async def run_sweeper(self, interval: float) -> None:
        """Periodically drop expired entries. Runs until cancelled."""
        logger.info(f"Schema cache sweeper started (every {interval}s)")
        while True:
            await asyncio.sleep(interval)
            removed = self._store.purge_expired()
            if removed:
                logger.debug(f"Sweeper purged {removed} expired entries")


_schema_cache: SchemaCache | None = None


def get_schema_cache() -> SchemaCache:
    """Return the process-wide cache, created on first use from config."""
    global _schema_cache
    if _schema_cache is None:
        from config import config

        _schema_cache = SchemaCache(default_ttl=config.SCHEMA_CACHE_TTL)
        logger.info(f"Schema cache initialized (default TTL {config.SCHEMA_CACHE_TTL}s)")
    return _schema_cache
