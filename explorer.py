"""Cached access to database metadata across named connections."""
import asyncio
import logging

from database import MetadataDatabase
from schema_cache import SchemaCache, build_key

logger = logging.getLogger(__name__)


class SchemaExplorer:
    """Serve metadata lookups from the schema cache, querying the database on miss."""

    def __init__(self, cache: SchemaCache, ttl: float | None = None):
        """
        Initialize explorer.

        Args:
            cache: Shared schema cache
            ttl: TTL in seconds for metadata entries (None = cache default)
        """
        self.cache = cache
        self.ttl = ttl
        self._connections: dict[str, MetadataDatabase] = {}
        self._closing: set[asyncio.Task] = set()

    def add_connection(self, connection_id: str, db: MetadataDatabase) -> None:
        self._connections[connection_id] = db
        logger.info(f"Registered connection {connection_id}")

    def remove_connection(self, connection_id: str) -> None:
        """Forget a connection, drop its cached metadata and close it."""
        db = self._connections.pop(connection_id, None)
        self.cache.invalidate_connection(connection_id)
        if db is not None:
            self._close_when_idle(connection_id, db)
            logger.info(f"Removed connection {connection_id}")

    def connection_ids(self) -> list[str]:
        return list(self._connections)

    def _db(self, connection_id: str) -> MetadataDatabase:
        try:
            return self._connections[connection_id]
        except KeyError:
            raise KeyError(f"Unknown connection: {connection_id}") from None

    async def _cached(self, key: str, func, *args):
        # Queries block on psycopg2, so they run in a worker thread
        return await self.cache.get_or_fetch(
            key, lambda: asyncio.to_thread(func, *args), self.ttl
        )

    async def get_databases(self, connection_id: str) -> list[str]:
        db = self._db(connection_id)
        key = build_key(connection_id, catalog_id="databases")
        return await self._cached(key, db.list_databases)

    async def get_schemas(self, connection_id: str, database: str) -> list[str]:
        db = self._db(connection_id)
        key = build_key(connection_id, database, catalog_id="schemas")
        return await self._cached(key, db.list_schemas, database)

    async def get_objects(
        self, connection_id: str, database: str, schema: str, category: str
    ) -> list[str]:
        """List tables, views or functions of a schema."""
        db = self._db(connection_id)
        key = build_key(connection_id, database, schema, category)
        return await self._cached(key, db.list_objects, database, schema, category)

    async def get_columns(
        self, connection_id: str, database: str, schema: str, table: str
    ) -> list[dict]:
        db = self._db(connection_id)
        key = build_key(connection_id, database, schema, f"columns.{table}")
        return await self._cached(key, db.list_columns, database, schema, table)

    def reconnect(self, connection_id: str, db: MetadataDatabase) -> None:
        """Swap in a fresh database handle and drop everything cached for the connection."""
        old = self._connections.get(connection_id)
        self._connections[connection_id] = db
        self.cache.invalidate_connection(connection_id)
        if old is not None and old is not db:
            self._close_when_idle(connection_id, old)
        logger.info(f"Reconnected {connection_id}, metadata cache invalidated")

    def _close_when_idle(self, connection_id: str, db: MetadataDatabase) -> None:
        """Close db once lookups already running against it have settled.

        Their results still land in the cache afterwards, like any fetch
        that was in flight during an invalidation.
        """
        in_flight = self.cache.pending_tasks(build_key(connection_id) + ":")
        if not in_flight:
            db.close()
            return

        logger.debug(f"Deferring close of {connection_id} until {len(in_flight)} lookups finish")
        task = asyncio.get_running_loop().create_task(self._close_after(db, in_flight))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _close_after(self, db: MetadataDatabase, in_flight: list[asyncio.Task]) -> None:
        await asyncio.wait(in_flight)
        db.close()

    async def wait_closed(self) -> None:
        """Wait until every deferred database close has happened."""
        if self._closing:
            await asyncio.gather(*self._closing)

    def refresh(
        self, connection_id: str, database: str | None = None, schema: str | None = None
    ) -> None:
        """Invalidate the narrowest scope given (connection, database or schema)."""
        if database and schema:
            self.cache.invalidate_schema(connection_id, database, schema)
        elif database:
            self.cache.invalidate_database(connection_id, database)
        else:
            self.cache.invalidate_connection(connection_id)
        logger.info(
            f"Refreshed {build_key(connection_id, database, schema if database else None)}"
        )
