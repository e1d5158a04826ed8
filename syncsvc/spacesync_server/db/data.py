"""
Data access for spaces, clients and entries.

Every function takes a Connection that is already inside a transaction
(see transact()). Nothing here commits, retries or caches.

Table schema (see schema.py):
    sync_space:  id, version, lastmodified
    sync_client: id, clientgroupid, lastmutationid, version, lastmodified
    sync_entry:  spaceid, key, value (JSON), deleted, version, lastmodified
                 UNIQUE (spaceid, key)

Invariants:
    - Entries are tombstoned, never deleted, so any cookie can be served
    - An entry's version is the space version of the batch that last touched it
    - Values round-trip through JSON
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Union

from .pool import Connection


@dataclass(frozen=True)
class Live:
    """A visible entry value."""

    value: Any


@dataclass(frozen=True)
class Tombstone:
    """A retained marker that the key was deleted."""


EntryState = Union[Live, Tombstone]


@dataclass(frozen=True)
class Entry:
    """One (space, key) record.

    Attributes:
        space_id: Owning space
        key: Entry key
        state: Live(value) or Tombstone()
        version: Space version at which the entry last changed
    """

    space_id: str
    key: str
    state: EntryState
    version: int

    @property
    def deleted(self) -> bool:
        return isinstance(self.state, Tombstone)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _row_to_entry(space_id: str, row: Any) -> Entry:
    state: EntryState
    if row["deleted"]:
        state = Tombstone()
    else:
        state = Live(json.loads(row["value"]))
    return Entry(space_id=space_id, key=row["key"], state=state, version=row["version"])


async def get_entry(conn: Connection, space_id: str, key: str) -> Entry | None:
    """Get an entry, live or tombstoned. None if the key was never written."""
    rows = await conn.execute(
        "SELECT key, value, deleted, version FROM sync_entry WHERE spaceid = ? AND key = ?",
        (space_id, key),
    )
    if not rows:
        return None
    return _row_to_entry(space_id, rows[0])


async def scan_live_entries(conn: Connection, space_id: str, prefix: str = "") -> list[Entry]:
    """Live entries whose key starts with prefix, in key order."""
    rows = await conn.execute(
        """
        SELECT key, value, deleted, version FROM sync_entry
        WHERE spaceid = ? AND deleted = 0 AND substr(key, 1, ?) = ?
        ORDER BY key
        """,
        (space_id, len(prefix), prefix),
    )
    return [_row_to_entry(space_id, row) for row in rows]


async def put_entry(conn: Connection, space_id: str, key: str, value: Any, version: int) -> None:
    """Insert or overwrite an entry, clearing any tombstone."""
    await conn.execute(
        """
        INSERT INTO sync_entry (spaceid, key, value, deleted, version, lastmodified)
        VALUES (?, ?, ?, 0, ?, ?)
        ON CONFLICT (spaceid, key) DO UPDATE SET
            value = excluded.value,
            deleted = 0,
            version = excluded.version,
            lastmodified = excluded.lastmodified
        """,
        (space_id, key, json.dumps(value), version, _now_ms()),
    )


async def del_entry(conn: Connection, space_id: str, key: str, version: int) -> bool:
    """Tombstone an entry. Returns False if the key was never written."""
    count = await conn.execute_rowcount(
        """
        UPDATE sync_entry SET deleted = 1, version = ?, lastmodified = ?
        WHERE spaceid = ? AND key = ?
        """,
        (version, _now_ms(), space_id, key),
    )
    return count > 0


async def get_changed_entries(conn: Connection, space_id: str, since_version: int) -> list[Entry]:
    """Every entry, live or tombstoned, stamped with a version above since_version."""
    rows = await conn.execute(
        """
        SELECT key, value, deleted, version FROM sync_entry
        WHERE spaceid = ? AND version > ?
        ORDER BY version, key
        """,
        (space_id, since_version),
    )
    return [_row_to_entry(space_id, row) for row in rows]


async def get_space_version(conn: Connection, space_id: str) -> int | None:
    """Current version of a space, or None if the space does not exist."""
    rows = await conn.execute("SELECT version FROM sync_space WHERE id = ?", (space_id,))
    if not rows:
        return None
    return rows[0]["version"]


async def set_space_version(conn: Connection, space_id: str, version: int) -> None:
    """Create the space or move it to version."""
    await conn.execute(
        """
        INSERT INTO sync_space (id, version, lastmodified) VALUES (?, ?, ?)
        ON CONFLICT (id) DO UPDATE SET
            version = excluded.version,
            lastmodified = excluded.lastmodified
        """,
        (space_id, version, _now_ms()),
    )


async def get_last_mutation_id(conn: Connection, client_id: str) -> int:
    """Last applied mutation ID of a client, 0 if the client is unseen."""
    rows = await conn.execute(
        "SELECT lastmutationid FROM sync_client WHERE id = ?",
        (client_id,),
    )
    if not rows:
        return 0
    return rows[0]["lastmutationid"]


async def get_last_mutation_ids(conn: Connection, client_group_id: str) -> dict[str, int]:
    """Last applied mutation ID of every known client in a client group."""
    rows = await conn.execute(
        "SELECT id, lastmutationid FROM sync_client WHERE clientgroupid = ? ORDER BY id",
        (client_group_id,),
    )
    return {row["id"]: row["lastmutationid"] for row in rows}


async def set_last_mutation_id(
    conn: Connection,
    client_id: str,
    client_group_id: str,
    last_mutation_id: int,
    version: int,
) -> None:
    """Record a client's last applied mutation ID at a space version."""
    await conn.execute(
        """
        INSERT INTO sync_client (id, clientgroupid, lastmutationid, version, lastmodified)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT (id) DO UPDATE SET
            clientgroupid = excluded.clientgroupid,
            lastmutationid = excluded.lastmutationid,
            version = excluded.version,
            lastmodified = excluded.lastmodified
        """,
        (client_id, client_group_id, last_mutation_id, version, _now_ms()),
    )


async def get_space_stats(conn: Connection, space_id: str) -> dict[str, Any] | None:
    """Version and entry counts for a space, or None if it does not exist."""
    version = await get_space_version(conn, space_id)
    if version is None:
        return None

    rows = await conn.execute(
        """
        SELECT
            COALESCE(SUM(CASE WHEN deleted = 0 THEN 1 ELSE 0 END), 0) AS live,
            COALESCE(SUM(CASE WHEN deleted = 1 THEN 1 ELSE 0 END), 0) AS tombstones
        FROM sync_entry WHERE spaceid = ?
        """,
        (space_id,),
    )
    return {
        "space_id": space_id,
        "version": version,
        "live_entries": rows[0]["live"],
        "tombstones": rows[0]["tombstones"],
    }
