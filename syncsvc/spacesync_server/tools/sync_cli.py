"""
Admin CLI tool for SpaceSync.

This tool operates directly on the store:
- migrate: Apply pending schema migrations
- inspect: Print a space's version and entry counts as JSON
- health: Probe the store (exit code 0 when healthy)

Usage:
    spacesync-admin migrate
    spacesync-admin inspect p1
    spacesync-admin --db-path /tmp/sync.db health

Invariants:
    - Non-zero exit code on failure, for use in scripts and probes
    - inspect output is deterministic (sorted JSON)

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripts parsing it
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sqlite3
import sys
from dataclasses import replace
from typing import Any

from ..config import StorageConfig
from ..db import ConnectionPool, create_pool, ensure_schema, transact
from ..db.data import get_space_stats
from ..db.pool import Connection
from ..errors import StoreUnavailableError, SyncError

logger = logging.getLogger(__name__)


class AdminCLI:
    """Store administration commands.

    Example:
        >>> cli = AdminCLI(pool)
        >>> await cli.migrate()
        1
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self.pool = pool

    async def migrate(self) -> int:
        """Apply pending migrations. Returns the resulting schema version."""
        return await ensure_schema(self.pool)

    async def inspect(self, space_id: str) -> dict[str, Any] | None:
        """Version and entry counts for a space, or None if it does not exist."""

        async def body(conn: Connection) -> dict[str, Any] | None:
            return await get_space_stats(conn, space_id)

        return await transact(self.pool, body, read_only=True)

    async def health(self) -> bool:
        return await self.pool.ping()


async def _run(args: argparse.Namespace, config: StorageConfig) -> int:
    pool = create_pool(config)
    cli = AdminCLI(pool)
    try:
        if args.command == "migrate":
            version = await cli.migrate()
            print(f"Schema at version {version}")
            return 0

        if args.command == "inspect":
            stats = await cli.inspect(args.space_id)
            if stats is None:
                print(f"Unknown space {args.space_id}", file=sys.stderr)
                return 1
            print(json.dumps(stats, indent=2, sort_keys=True))
            return 0

        if args.command == "health":
            healthy = await cli.health()
            print("Store is healthy" if healthy else "Store is unavailable")
            return 0 if healthy else 1

        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await pool.close()


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for the admin tool."""
    parser = argparse.ArgumentParser(description="SpaceSync store administration tool")
    parser.add_argument("--db-path", help="SQLite database file (default: $DB_PATH)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("migrate", help="Apply pending schema migrations")

    inspect_parser = subparsers.add_parser("inspect", help="Show version and entry counts of a space")
    inspect_parser.add_argument("space_id", help="Space to inspect")

    subparsers.add_parser("health", help="Check that the store can be reached")

    args = parser.parse_args(argv)

    try:
        config = StorageConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    if args.db_path:
        config = replace(config, db_path=args.db_path)

    try:
        return asyncio.run(_run(args, config))
    except StoreUnavailableError as e:
        print(f"Store unavailable: {e.message}", file=sys.stderr)
        return 1
    except SyncError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except sqlite3.Error as e:
        print(f"Database error: {e} (has the schema been migrated?)", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
