"""PostgreSQL metadata queries for the schema explorer."""
import psycopg2
from psycopg2 import pool
from psycopg2.extras import RealDictCursor
import logging
from contextlib import contextmanager

logger = logging.getLogger(__name__)

# Schema-level object categories and the catalog queries that list them
OBJECT_QUERIES = {
    "tables": """
        SELECT table_name AS name
        FROM information_schema.tables
        WHERE table_schema = %s AND table_type = 'BASE TABLE'
        ORDER BY table_name
    """,
    "views": """
        SELECT table_name AS name
        FROM information_schema.views
        WHERE table_schema = %s
        ORDER BY table_name
    """,
    "functions": """
        SELECT routine_name AS name
        FROM information_schema.routines
        WHERE routine_schema = %s AND routine_type = 'FUNCTION'
        ORDER BY routine_name
    """,
}


class MetadataDatabase:
    """Thread-safe PostgreSQL catalog reader with connection pooling."""

    def __init__(self, db_url: str):
        """Initialize database connection pool with proper settings."""
        self.db_url = db_url
        self.dbname = None
        try:
            self.pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=1,
                maxconn=5,
                dsn=db_url,
                keepalives=1,        # Enable TCP keepalives
                keepalives_idle=30,  # Start sending keepalives after 30 seconds of inactivity
                keepalives_interval=10,  # Send keepalive every 10 seconds
                keepalives_count=5   # Close connection after 5 failed keepalives
            )
            logger.info("Database connection pool initialized with keepalives")
        except Exception as e:
            logger.error(f"Failed to create connection pool: {e}", exc_info=True)
            raise

        with self._get_connection() as conn:
            self.dbname = conn.info.dbname
        logger.info(f"Connected to database {self.dbname}")

    def close(self):
        """Close all connections in the pool."""
        try:
            if hasattr(self, 'pool') and self.pool:
                self.pool.closeall()
                logger.info("Database connection pool closed")
        except Exception as e:
            logger.error(f"Failed to close connection pool: {e}", exc_info=True)

    @contextmanager
    def _get_connection(self):
        """Thread-safe connection context manager using connection pool with validation."""
        conn = None
        try:
            conn = self.pool.getconn()
            # Validate connection is still alive
            if conn.closed:
                logger.warning("Retrieved closed connection from pool, discarding")
                self.pool.putconn(conn, close=True)
                conn = self.pool.getconn()

            # Actively probe the connection to avoid yielding a stale one
            try:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
            except psycopg2.OperationalError:
                logger.warning("Connection failed health check, replacing")
                self.pool.putconn(conn, close=True)
                conn = self.pool.getconn()
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")

            yield conn
            conn.commit()
        except psycopg2.OperationalError:
            if conn and not conn.closed:
                try:
                    conn.rollback()
                except psycopg2.OperationalError:
                    pass  # Connection is already closed, rollback not needed
            raise
        except Exception:
            if conn and not conn.closed:
                conn.rollback()
            raise
        finally:
            if conn:
                self.pool.putconn(conn, close=conn.closed)

    @contextmanager
    def _connection_for(self, database: str | None):
        """Pooled connection for the pool's own database, one-off connection otherwise."""
        if database is None or database == self.dbname:
            with self._get_connection() as conn:
                yield conn
            return

        # Catalog views are per-database, so other databases need their own session
        conn = psycopg2.connect(self.db_url, dbname=database)
        try:
            yield conn
        finally:
            conn.close()

    def _fetch_names(self, database: str | None, query: str, params: tuple | None = None) -> list[str]:
        with self._connection_for(database) as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, params)
                return [row["name"] for row in cur.fetchall()]

    def list_databases(self) -> list[str]:
        """List connectable, non-template databases."""
        try:
            names = self._fetch_names(
                None,
                """
                SELECT datname AS name
                FROM pg_database
                WHERE datallowconn AND NOT datistemplate
                ORDER BY datname
                """,
            )
            logger.debug(f"Listed {len(names)} databases")
            return names

        except Exception as e:
            logger.error(f"Failed to list databases: {e}", exc_info=True)
            raise

    def list_schemas(self, database: str) -> list[str]:
        """List user schemas of a database (system schemas excluded)."""
        try:
            names = self._fetch_names(
                database,
                """
                SELECT nspname AS name
                FROM pg_namespace
                WHERE nspname NOT IN ('pg_catalog', 'information_schema')
                AND nspname !~ '^pg_(toast|temp)'
                ORDER BY nspname
                """,
            )
            logger.debug(f"Listed {len(names)} schemas in {database}")
            return names

        except Exception as e:
            logger.error(f"Failed to list schemas for {database}: {e}", exc_info=True)
            raise

    def list_objects(self, database: str, schema: str, category: str) -> list[str]:
        """
        List objects of one category in a schema.

        Args:
            database: Database name
            schema: Schema name
            category: One of "tables", "views", "functions"

        Raises:
            ValueError: If category is unknown
        """
        query = OBJECT_QUERIES.get(category)
        if query is None:
            raise ValueError(
                f"Unknown category '{category}' (expected one of: {', '.join(OBJECT_QUERIES)})"
            )

        try:
            names = self._fetch_names(database, query, (schema,))
            logger.debug(f"Listed {len(names)} {category} in {database}.{schema}")
            return names

        except Exception as e:
            logger.error(f"Failed to list {category} for {database}.{schema}: {e}", exc_info=True)
            raise

    def list_columns(self, database: str, schema: str, table: str) -> list[dict]:
        """Return columns of a table or view in ordinal order."""
        try:
            with self._connection_for(database) as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(
                        """
                        SELECT column_name, data_type, is_nullable
                        FROM information_schema.columns
                        WHERE table_schema = %s AND table_name = %s
                        ORDER BY ordinal_position
                        """,
                        (schema, table),
                    )
                    columns = [dict(row) for row in cur.fetchall()]

            logger.debug(f"Listed {len(columns)} columns for {database}.{schema}.{table}")
            return columns

        except Exception as e:
            logger.error(f"Failed to list columns for {schema}.{table}: {e}", exc_info=True)
            raise
