"""
Transactional key/value view over one space, handed to mutators.

Writes are buffered in memory and read back by later calls in the same push
batch. The Push Processor flushes the buffer once at the end of the batch,
stamping every touched entry with the batch's new space version.
"""

from __future__ import annotations

import copy
import json
from typing import Any

from ..db import data
from ..db.data import Live, Tombstone
from ..db.pool import Connection

_MISSING = object()


class SpaceWriteTransaction:
    """Read/write access to a space's entries for the duration of a push.

    Attributes:
        space_id: Space the mutators operate on
        client_id: Client whose mutation is currently running
        mutation_id: ID of the mutation currently running

    Example:
        >>> async def increment(tx, args):
        ...     await tx.set("counter", await tx.get("counter", 0) + 1)
    """

    def __init__(self, conn: Connection, space_id: str) -> None:
        self._conn = conn
        self.space_id = space_id
        self.client_id: str | None = None
        self.mutation_id: int | None = None
        self._pending: dict[str, Live | Tombstone] = {}

    async def _stored(self, key: str) -> Any:
        entry = await data.get_entry(self._conn, self.space_id, key)
        if entry is None or isinstance(entry.state, Tombstone):
            return _MISSING
        return entry.state.value

    async def _lookup(self, key: str) -> Any:
        state = self._pending.get(key)
        if isinstance(state, Live):
            return state.value
        if isinstance(state, Tombstone):
            return _MISSING
        return await self._stored(key)

    async def get(self, key: str, default: Any = None) -> Any:
        value = await self._lookup(key)
        if value is _MISSING:
            return default
        return copy.deepcopy(value)

    async def has(self, key: str) -> bool:
        return await self._lookup(key) is not _MISSING

    async def set(self, key: str, value: Any) -> None:
        if not isinstance(key, str) or not key:
            raise ValueError("Entry key must be a non-empty string")
        # Fail inside the mutator rather than at flush time
        json.dumps(value)
        self._pending[key] = Live(copy.deepcopy(value))

    put = set

    async def delete(self, key: str) -> bool:
        """Delete key. Returns False, and writes nothing, if it does not exist."""
        if not await self.has(key):
            return False
        if await self._stored(key) is _MISSING:
            # Only ever set within this batch; dropping the buffered write is enough
            del self._pending[key]
        else:
            self._pending[key] = Tombstone()
        return True

    del_ = delete

    async def scan(self, prefix: str = "") -> list[tuple[str, Any]]:
        """Live (key, value) pairs whose key starts with prefix, in key order."""
        merged = {
            entry.key: entry.state.value
            for entry in await data.scan_live_entries(self._conn, self.space_id, prefix)
            if isinstance(entry.state, Live)
        }
        for key, state in self._pending.items():
            if not key.startswith(prefix):
                continue
            if isinstance(state, Live):
                merged[key] = state.value
            else:
                merged.pop(key, None)
        return [(key, copy.deepcopy(merged[key])) for key in sorted(merged)]

    @property
    def has_writes(self) -> bool:
        return bool(self._pending)

    @property
    def touched_keys(self) -> list[str]:
        return sorted(self._pending)

    async def flush(self, version: int) -> int:
        """Write the buffer at version. Returns the number of entries written."""
        for key in sorted(self._pending):
            state = self._pending[key]
            if isinstance(state, Live):
                await data.put_entry(self._conn, self.space_id, key, state.value, version)
            else:
                await data.del_entry(self._conn, self.space_id, key, version)
        count = len(self._pending)
        self._pending.clear()
        return count
