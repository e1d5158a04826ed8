"""
Pull diff engine for SpaceSync.

Given the cookie a client last saw, returns every entry change since then
plus the client group's last mutation IDs, all read from one snapshot.

Response shape:
    {
        "cookie": 7,
        "lastMutationIDChanges": {"c1": 12, "c2": 3},
        "patch": [
            {"op": "put", "key": "counter", "value": 5},
            {"op": "del", "key": "draft"}
        ]
    }

Invariants:
    - The returned cookie is the space version of the snapshot that was read
    - An entry appears in the patch iff its version is above the request cookie
    - Pull never writes
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from ..db import data
from ..db.data import Live
from ..db.pool import Connection, ConnectionPool
from ..db.transact import RetryPolicy, transact
from ..errors import UnknownSpaceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PullRequest:
    """A request for changes since cookie (None means from the beginning)."""

    space_id: str
    client_group_id: str
    cookie: int | None = None


@dataclass(frozen=True)
class PatchOperation:
    """One entry change: put with a value, or del."""

    op: str
    key: str
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        if self.op == "del":
            return {"op": "del", "key": self.key}
        return {"op": self.op, "key": self.key, "value": self.value}


@dataclass
class PullResponse:
    """Diff since the request cookie and the cookie to send next time."""

    cookie: int
    last_mutation_id_changes: dict[str, int] = field(default_factory=dict)
    patch: list[PatchOperation] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cookie": self.cookie,
            "lastMutationIDChanges": dict(self.last_mutation_id_changes),
            "patch": [op.to_dict() for op in self.patch],
        }


class PullEngine:
    """Computes pull responses from a consistent snapshot of the store.

    Example:
        >>> engine = PullEngine(pool)
        >>> resp = await engine.pull(PullRequest("p1", "g1", cookie=None))
        >>> resp.to_dict()["cookie"]
        1
    """

    def __init__(self, pool: ConnectionPool, retry_policy: RetryPolicy | None = None) -> None:
        self.pool = pool
        self.retry_policy = retry_policy or RetryPolicy()

    async def pull(self, request: PullRequest) -> PullResponse:
        """Diff a space since request.cookie.

        Raises:
            UnknownSpaceError: If the space has never been written
            TransactionExhaustedError: Conflicts outlasted the retry budget
            StoreUnavailableError: The store cannot be reached
        """
        t0 = time.monotonic()
        since = request.cookie or 0

        async def body(conn: Connection) -> PullResponse:
            return await self._read(conn, request, since)

        response = await transact(self.pool, body, read_only=True, policy=self.retry_policy)

        logger.info(
            f"[{request.space_id}] Read all objects in {(time.monotonic() - t0) * 1000:.1f}ms",
            extra={
                "space_id": request.space_id,
                "client_group_id": request.client_group_id,
                "since": since,
                "cookie": response.cookie,
                "patch_size": len(response.patch),
            },
        )
        return response

    async def _read(self, conn: Connection, request: PullRequest, since: int) -> PullResponse:
        version = await data.get_space_version(conn, request.space_id)
        if version is None:
            raise UnknownSpaceError(request.space_id)

        entries = await data.get_changed_entries(conn, request.space_id, since)
        last_mutation_ids = await data.get_last_mutation_ids(conn, request.client_group_id)

        patch = []
        for entry in entries:
            if isinstance(entry.state, Live):
                patch.append(PatchOperation(op="put", key=entry.key, value=entry.state.value))
            else:
                patch.append(PatchOperation(op="del", key=entry.key))

        return PullResponse(
            cookie=version,
            last_mutation_id_changes=last_mutation_ids,
            patch=patch,
        )
