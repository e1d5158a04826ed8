"""
Push processor for SpaceSync.

A push carries an ordered batch of mutations from one client group. The
processor re-runs them against the store in one retried transaction:

1. Skip mutations a client already applied (idempotent re-delivery)
2. Refuse to apply a mutation that skips ahead of its client (gap)
3. Run the named mutator against a buffered view of the space
4. If anything was written, bump the space version by exactly 1 and
   stamp every touched entry and client with it
5. After commit, poke the change notifier

Invariants:
    - Per client, mutation k+1 is applied before k+2, and each exactly once
    - A batch is atomic: a failing mutator rolls back the whole batch
    - A batch without writes leaves the space version unchanged
    - Mutators run again from scratch when the batch is retried

How to change safely:
    - Test idempotency by pushing the same batch twice
    - Test concurrency with a file-backed store, not MemoryPool
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from ..config import GapPolicy
from ..db import data
from ..db.pool import Connection, ConnectionPool
from ..db.transact import Retryable, RetryPolicy, classify_error, transact
from ..errors import MutationGapError, MutatorError, StoreUnavailableError, SyncError
from ..notify.base import ChangeNotifier, NullNotifier
from .mutators import MutatorRegistry
from .space_tx import SpaceWriteTransaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Mutation:
    """One client-issued mutation.

    Attributes:
        client_id: Issuing client
        id: Per-client, strictly increasing mutation ID (first is 1)
        name: Mutator name
        args: Mutator arguments (JSON)
    """

    client_id: str
    id: int
    name: str
    args: Any = None


@dataclass(frozen=True)
class PushRequest:
    """A batch of mutations for one space from one client group."""

    space_id: str
    client_group_id: str
    mutations: list[Mutation] = field(default_factory=list)


@dataclass
class PushResult:
    """What a committed push did.

    Attributes:
        space_id: Target space
        applied: Mutations run
        skipped: Mutations already applied earlier
        dropped: Mutations dropped after a gap (truncate policy only)
        version: Space version after the batch (None if the space still does not exist)
        bumped: Whether the batch advanced the space version
    """

    space_id: str
    applied: int = 0
    skipped: int = 0
    dropped: int = 0
    version: int | None = None
    bumped: bool = False


class PushProcessor:
    """Applies push batches to the store.

    Thread safety:
        Stateless between calls; any number of pushes may run concurrently.
        Conflicts are resolved by the store and transact().

    Example:
        >>> processor = PushProcessor(pool, create_default_registry())
        >>> await processor.push(PushRequest("p1", "g1", [Mutation("c1", 1, "increment")]))
    """

    def __init__(
        self,
        pool: ConnectionPool,
        mutators: MutatorRegistry,
        notifier: ChangeNotifier | None = None,
        retry_policy: RetryPolicy | None = None,
        gap_policy: GapPolicy = GapPolicy.REJECT,
    ) -> None:
        self.pool = pool
        self.mutators = mutators
        self.notifier = notifier or NullNotifier()
        self.retry_policy = retry_policy or RetryPolicy()
        self.gap_policy = gap_policy

    async def push(self, request: PushRequest) -> PushResult:
        """Apply a batch atomically and poke the notifier if it changed the space.

        Raises:
            MutationGapError: A mutation skipped ahead (reject policy)
            MutatorError: A mutator failed or is unknown
            TransactionExhaustedError: Conflicts outlasted the retry budget
            StoreUnavailableError: The store cannot be reached
        """
        t0 = time.monotonic()

        async def body(conn: Connection) -> PushResult:
            return await self._process(conn, request)

        result = await transact(self.pool, body, policy=self.retry_policy)

        logger.info(
            f"[{request.space_id}] Processed push in {(time.monotonic() - t0) * 1000:.1f}ms",
            extra={
                "space_id": request.space_id,
                "client_group_id": request.client_group_id,
                "applied": result.applied,
                "skipped": result.skipped,
                "dropped": result.dropped,
                "version": result.version,
            },
        )

        if result.bumped:
            await self._notify(request.space_id)
        return result

    async def _process(self, conn: Connection, request: PushRequest) -> PushResult:
        space_id = request.space_id
        previous_version = await data.get_space_version(conn, space_id)
        base_version = previous_version or 0

        result = PushResult(space_id=space_id)
        tx = SpaceWriteTransaction(conn, space_id)
        last_ids: dict[str, int] = {}
        advanced: set[str] = set()
        truncated: set[str] = set()

        for mutation in request.mutations:
            client_id = mutation.client_id
            if client_id in truncated:
                result.dropped += 1
                continue

            if client_id not in last_ids:
                last_ids[client_id] = await data.get_last_mutation_id(conn, client_id)
            last_id = last_ids[client_id]

            if mutation.id <= last_id:
                logger.debug(
                    f"[{space_id}] Mutation {mutation.id} from {client_id} already processed - skipping"
                )
                result.skipped += 1
                continue

            expected_id = last_id + 1
            if mutation.id > expected_id:
                if self.gap_policy == GapPolicy.REJECT:
                    raise MutationGapError(client_id, expected_id, mutation.id)
                logger.warning(
                    f"[{space_id}] Mutation {mutation.id} from {client_id} is from the future "
                    f"(expected {expected_id}) - dropping the rest of this client's batch"
                )
                truncated.add(client_id)
                result.dropped += 1
                continue

            await self._apply(tx, mutation)
            last_ids[client_id] = mutation.id
            advanced.add(client_id)
            result.applied += 1

        if tx.has_writes:
            version = base_version + 1
            await tx.flush(version)
            await data.set_space_version(conn, space_id, version)
            result.bumped = True
        else:
            version = base_version

        for client_id in sorted(advanced):
            await data.set_last_mutation_id(
                conn, client_id, request.client_group_id, last_ids[client_id], version
            )

        result.version = version if (result.bumped or previous_version is not None) else None
        return result

    async def _apply(self, tx: SpaceWriteTransaction, mutation: Mutation) -> None:
        tx.client_id = mutation.client_id
        tx.mutation_id = mutation.id
        try:
            await self.mutators.invoke(mutation.name, tx, mutation.args)
        except SyncError:
            raise
        except Exception as e:
            outcome = classify_error(e)
            if isinstance(outcome, Retryable) or isinstance(outcome.error, StoreUnavailableError):
                # A store problem inside the mutator, not a mutator bug: leave it to transact()
                raise
            logger.warning(
                f"[{tx.space_id}] Mutator {mutation.name} failed for mutation "
                f"{mutation.id} from {mutation.client_id}: {e}"
            )
            raise MutatorError(
                f"Mutator '{mutation.name}' failed: {e}",
                mutation_name=mutation.name,
                client_id=mutation.client_id,
                mutation_id=mutation.id,
            ) from e

    async def _notify(self, space_id: str) -> None:
        try:
            await self.notifier.notify(space_id)
        except Exception as e:
            # Clients still converge by polling pull
            logger.warning(f"[{space_id}] Change notification failed: {e}", exc_info=True)
