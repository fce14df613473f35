#!/usr/bin/env python3
"""
Interactive CLI for browsing PostgreSQL metadata through the schema cache.

Repeated lookups are served from the cache until their TTL expires or the
scope is refreshed, so /stats shows what is currently held.

Usage:
    # Use DATABASE_URL from .env
    python scripts/schema_cli.py

    # Explicit DSN and a 5 minute TTL
    python scripts/schema_cli.py --dsn postgresql://localhost/app --ttl 300

Commands:
    /databases                          - List databases
    /schemas <db>                       - List schemas of a database
    /objects <db> <schema> <category>   - List tables, views or functions
    /columns <db> <schema> <table>      - List columns of a table
    /refresh [db [schema]]              - Invalidate cached metadata for a scope
    /reconnect                          - Reopen the connection and drop its cache
    /stats                              - Show cache statistics
    /exit or /quit                      - Exit the CLI
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path to import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import Config, config
from database import MetadataDatabase
from explorer import SchemaExplorer
from schema_cache import SchemaCache, get_schema_cache

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, config.LOG_LEVEL, logging.INFO)
)
logger = logging.getLogger(__name__)

# Command name -> number of required arguments
COMMAND_ARITY = {
    "/databases": 0,
    "/schemas": 1,
    "/objects": 3,
    "/columns": 3,
}


class SchemaCLI:
    """Interactive CLI for metadata browsing."""

    def __init__(self, dsn: str, connection_id: str, ttl: float | None = None):
        self.dsn = dsn
        self.connection_id = connection_id
        # Without an explicit TTL, share the process-wide cache
        self.cache = get_schema_cache() if ttl is None else SchemaCache(default_ttl=ttl)
        self.explorer = SchemaExplorer(self.cache)

        logger.info("Connecting...")
        self.explorer.add_connection(connection_id, MetadataDatabase(dsn))

    async def lookup(self, command: str, args: list[str]):
        """Run a lookup command against the explorer."""
        cid = self.connection_id
        if command == "/databases":
            return await self.explorer.get_databases(cid)
        if command == "/schemas":
            return await self.explorer.get_schemas(cid, *args)
        if command == "/objects":
            return await self.explorer.get_objects(cid, *args)
        if command == "/columns":
            columns = await self.explorer.get_columns(cid, *args)
            return [f"{c['column_name']} {c['data_type']}" for c in columns]
        raise ValueError(f"Unknown command: {command}")

    def print_stats(self) -> None:
        stats = self.cache.get_stats()
        print(f"\n📊 Cache Statistics:")
        print(f"  Entries: {stats['size']}")
        for key in stats["keys"]:
            print(f"  - {key}")
        print()

    async def run(self, sweep_interval: float = 0):
        """Run the interactive CLI loop."""
        print(f"\n{'='*60}")
        print(f"Schema CLI - connection '{self.connection_id}'")
        print(f"Cache TTL: {self.cache.default_ttl}s")
        print(f"{'='*60}\n")
        print("Commands: /databases, /schemas, /objects, /columns, /refresh, "
              "/reconnect, /stats, /exit\n")

        sweeper = None
        if sweep_interval > 0:
            sweeper = asyncio.create_task(self.cache.run_sweeper(sweep_interval))

        while True:
            try:
                # input() blocks, keep the loop free for the sweeper
                user_input = (await asyncio.to_thread(input, "schema> ")).strip()

                if not user_input:
                    continue

                parts = user_input.split()
                command, args = parts[0].lower(), parts[1:]

                if command in ["/exit", "/quit"]:
                    print("\nExiting...")
                    break

                if command == "/stats":
                    self.print_stats()
                    continue

                if command == "/refresh":
                    self.explorer.refresh(self.connection_id, *args[:2])
                    print("✅ Cache refreshed.\n")
                    continue

                if command == "/reconnect":
                    self.explorer.reconnect(self.connection_id, MetadataDatabase(self.dsn))
                    print("✅ Reconnected.\n")
                    continue

                if command not in COMMAND_ARITY:
                    print(f"❌ Unknown command: {command}\n")
                    continue

                if len(args) != COMMAND_ARITY[command]:
                    print(f"❌ {command} takes {COMMAND_ARITY[command]} argument(s)\n")
                    continue

                for name in await self.lookup(command, args):
                    print(f"  {name}")
                print()

            except (KeyboardInterrupt, EOFError):
                print("\n\nExiting...")
                break
            except Exception as e:
                logger.error(f"Unexpected error: {e}", exc_info=True)
                print(f"\n❌ Unexpected error: {e}\n")

        # Cleanup
        if sweeper is not None:
            sweeper.cancel()
        self.explorer.remove_connection(self.connection_id)
        await self.explorer.wait_closed()
        print("Goodbye!")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Interactive CLI for browsing PostgreSQL metadata through the schema cache",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Use DATABASE_URL from environment / .env
  python scripts/schema_cli.py

  # Explicit DSN, never cache (refetch every lookup)
  python scripts/schema_cli.py --dsn postgresql://localhost/app --ttl 0
        """
    )
    parser.add_argument(
        "--dsn",
        type=str,
        default=None,
        help="PostgreSQL DSN (default: DATABASE_URL)"
    )
    parser.add_argument(
        "--connection-id",
        type=str,
        default=config.CONNECTION_ID,
        help=f"Connection name used in cache keys (default: '{config.CONNECTION_ID}')"
    )
    parser.add_argument(
        "--ttl",
        type=float,
        default=None,
        help=f"Cache TTL in seconds (default: SCHEMA_CACHE_TTL, {config.SCHEMA_CACHE_TTL})"
    )

    args = parser.parse_args()

    if args.dsn:
        Config.DATABASE_URL = args.dsn
    config.validate()

    cli = SchemaCLI(dsn=config.DATABASE_URL, connection_id=args.connection_id, ttl=args.ttl)
    asyncio.run(cli.run(sweep_interval=config.SCHEMA_CACHE_SWEEP_INTERVAL))


if __name__ == "__main__":
    main()
