"""
Schema bootstrap and migrations for the SpaceSync store.

ensure_schema() is idempotent: it creates the schema_version table, reads
the applied version and runs only the migrations after it, all inside one
write transaction.

How to change safely:
    - Append a new migration function; never edit an applied one
    - Migrations run inside a transaction, so no executescript() here
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable

from .pool import Connection, ConnectionPool
from .transact import RetryPolicy, transact

logger = logging.getLogger(__name__)


async def _create_schema_version_table(conn: Connection) -> None:
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at INTEGER NOT NULL
        )
        """
    )


async def get_schema_version(conn: Connection) -> int:
    """Highest applied migration, 0 for a fresh database."""
    rows = await conn.execute("SELECT COALESCE(MAX(version), 0) AS version FROM schema_version")
    return rows[0]["version"]


async def _migrate_v1(conn: Connection) -> None:
    """Spaces, clients and tombstoned entries."""
    await conn.execute("CREATE TABLE IF NOT EXISTS sync_meta (key TEXT PRIMARY KEY, value TEXT)")
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sync_space (
            id TEXT PRIMARY KEY NOT NULL,
            version INTEGER NOT NULL,
            lastmodified INTEGER NOT NULL
        )
        """
    )
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sync_client (
            id TEXT PRIMARY KEY NOT NULL,
            clientgroupid TEXT NOT NULL,
            lastmutationid INTEGER NOT NULL,
            version INTEGER NOT NULL,
            lastmodified INTEGER NOT NULL
        )
        """
    )
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sync_entry (
            spaceid TEXT NOT NULL,
            key TEXT NOT NULL,
            value TEXT NOT NULL,
            deleted INTEGER NOT NULL DEFAULT 0,
            version INTEGER NOT NULL,
            lastmodified INTEGER NOT NULL
        )
        """
    )
    await conn.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS sync_entry_spaceid_key_idx ON sync_entry (spaceid, key)"
    )
    await conn.execute("CREATE INDEX IF NOT EXISTS sync_entry_spaceid_idx ON sync_entry (spaceid)")
    await conn.execute("CREATE INDEX IF NOT EXISTS sync_entry_deleted_idx ON sync_entry (deleted)")
    await conn.execute("CREATE INDEX IF NOT EXISTS sync_entry_version_idx ON sync_entry (version)")
    await conn.execute(
        """
        CREATE INDEX IF NOT EXISTS sync_client_clientgroupid_version_idx
            ON sync_client (clientgroupid, version)
        """
    )
    await conn.execute(
        """
        INSERT INTO sync_meta (key, value) VALUES ('schemaVersion', '1')
        ON CONFLICT (key) DO UPDATE SET value = excluded.value
        """
    )


MIGRATIONS: list[Callable[[Connection], Awaitable[None]]] = [_migrate_v1]

SCHEMA_VERSION = len(MIGRATIONS)


async def _apply_migrations(conn: Connection) -> int:
    await _create_schema_version_table(conn)
    current = await get_schema_version(conn)
    if current < 0 or current > len(MIGRATIONS):
        raise ValueError(f"Unexpected schema version: {current}")

    for version in range(current + 1, len(MIGRATIONS) + 1):
        logger.info(f"Applying schema migration {version}")
        await MIGRATIONS[version - 1](conn)
        await conn.execute(
            "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
            (version, int(time.time() * 1000)),
        )
    return len(MIGRATIONS)


async def ensure_schema(pool: ConnectionPool, policy: RetryPolicy | None = None) -> int:
    """Bring the database up to SCHEMA_VERSION.

    Returns:
        The schema version after migration
    """
    version = await transact(pool, _apply_migrations, policy=policy)
    logger.info("Database schema ready", extra={"schema_version": version})
    return version
