"""
Transaction retry executor.

transact() runs a unit of work inside one serializable SQLite transaction
and commits it. When the store reports a write conflict the whole unit is
rolled back and run again from the beginning, with exponential backoff,
until the retry budget is spent.

Every attempt is reduced to an explicit outcome:
    Committed(value)  - the unit of work committed
    Retryable(error)  - serialization failure or lock conflict, try again
    Fatal(error)      - anything else, propagate unchanged

retry_transaction() is the retry loop as a combinator over "attempt -> outcome",
so it can be exercised without a database.

Invariants:
    - A unit of work is either fully committed or fully rolled back
    - Non-conflict errors are never retried
    - Exhausting the budget raises TransactionExhaustedError
    - Store failures surface as StoreUnavailableError and reset the pool

How to change safely:
    - Units of work must be safe to re-run from scratch
    - Keep classify_error() conservative: retrying a non-conflict error
      can re-apply side effects outside the database
"""

from __future__ import annotations

import asyncio
import logging
import random
import sqlite3
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar, Union

from ..errors import StoreUnavailableError, SyncError, TransactionExhaustedError
from .pool import Connection, is_store_fatal

if TYPE_CHECKING:
    from ..config import TransactConfig
    from .pool import ConnectionPool

logger = logging.getLogger(__name__)

R = TypeVar("R")

# Serialization failure and deadlock, as reported by SQL drivers via SQLSTATE
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})

RETRYABLE_SQLITE_ERRORS = ("SQLITE_BUSY", "SQLITE_LOCKED")
_RETRYABLE_MESSAGES = ("database is locked", "database table is locked", "database is busy")


@dataclass(frozen=True)
class Committed(Generic[R]):
    """The unit of work committed and produced value."""

    value: R


@dataclass(frozen=True)
class Retryable:
    """The attempt lost a conflict; running it again may succeed."""

    error: BaseException


@dataclass(frozen=True)
class Fatal:
    """The attempt failed for a reason retrying cannot fix."""

    error: BaseException


Outcome = Union[Committed[R], Retryable, Fatal]


def classify_error(err: BaseException) -> Retryable | Fatal:
    """Map an exception raised during an attempt to Retryable or Fatal."""
    if isinstance(err, SyncError):
        return Fatal(err)

    sqlstate = getattr(err, "sqlstate", None) or getattr(err, "pgcode", None)
    if sqlstate is not None and str(sqlstate) in RETRYABLE_SQLSTATES:
        return Retryable(err)

    if isinstance(err, sqlite3.OperationalError):
        name = getattr(err, "sqlite_errorname", None) or ""
        if name.startswith(RETRYABLE_SQLITE_ERRORS):
            return Retryable(err)
        message = str(err).lower()
        if any(m in message for m in _RETRYABLE_MESSAGES):
            return Retryable(err)

    if is_store_fatal(err):
        return Fatal(StoreUnavailableError(f"Store failure: {err}", cause=err))

    return Fatal(err)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff shape.

    Attributes:
        max_attempts: Attempts before giving up
        base_delay: Seconds to wait after the first failed attempt
        max_delay: Cap on a single wait, in seconds
    """

    max_attempts: int = 10
    base_delay: float = 0.01
    max_delay: float = 1.0

    @classmethod
    def from_config(cls, config: TransactConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_ms / 1000.0,
            max_delay=config.max_delay_ms / 1000.0,
        )

    def backoff(self, failed_attempts: int) -> float:
        """Delay before the next attempt, with jitter in [50%, 100%]."""
        delay = min(self.base_delay * (2 ** (failed_attempts - 1)), self.max_delay)
        return delay * random.uniform(0.5, 1.0)


async def retry_transaction(
    attempt: Callable[[], Awaitable[Outcome[R]]],
    policy: RetryPolicy | None = None,
) -> R:
    """Run attempt until it commits, fails fatally, or the budget is spent.

    Args:
        attempt: Runs one full attempt and reports its outcome
        policy: Retry budget and backoff

    Returns:
        The committed value

    Raises:
        TransactionExhaustedError: If every attempt was Retryable
        Exception: The error of the first Fatal outcome, unchanged
    """
    policy = policy or RetryPolicy()
    last_error: BaseException | None = None

    for n in range(1, policy.max_attempts + 1):
        outcome = await attempt()
        if isinstance(outcome, Committed):
            return outcome.value
        if isinstance(outcome, Fatal):
            raise outcome.error

        last_error = outcome.error
        logger.info(
            f"Retrying transaction due to error {outcome.error!r} - attempt number {n}",
            extra={"attempt": n, "max_attempts": policy.max_attempts},
        )
        if n < policy.max_attempts:
            await asyncio.sleep(policy.backoff(n))

    logger.error(
        "Transaction retry budget exhausted",
        extra={"attempts": policy.max_attempts, "last_error": repr(last_error)},
    )
    raise TransactionExhaustedError(policy.max_attempts, last_error) from last_error


async def _rollback(conn: Connection) -> None:
    if not conn.in_transaction:
        return
    try:
        await conn.execute("ROLLBACK")
    except sqlite3.Error as e:
        # The pool discards the connection when it is released still in a transaction
        logger.error(f"Rollback failed: {e}")


async def run_in_transaction(
    conn: Connection,
    body: Callable[[Connection], Awaitable[R]],
    read_only: bool = False,
) -> Outcome[R]:
    """Run body inside one transaction on conn and report the outcome.

    Write transactions take the write lock up front (BEGIN IMMEDIATE), so
    two writers conflict at BEGIN instead of midway through the work.
    """
    try:
        await conn.execute("BEGIN" if read_only else "BEGIN IMMEDIATE")
    except Exception as e:
        return classify_error(e)

    try:
        result = await body(conn)
        await conn.execute("COMMIT")
        return Committed(result)
    except Exception as e:
        logger.debug(f"Caught error in transaction, rolling back: {e!r}")
        await _rollback(conn)
        return classify_error(e)


async def transact(
    pool: ConnectionPool,
    body: Callable[[Connection], Awaitable[R]],
    *,
    read_only: bool = False,
    policy: RetryPolicy | None = None,
) -> R:
    """Invoke body within a transaction, retrying on write conflicts.

    Args:
        pool: Pool to lease a connection from (once per attempt)
        body: Unit of work. If it raises, the transaction is rolled back
            and the error is re-raised unless it is a conflict.
        read_only: Run as a deferred read transaction (a consistent snapshot)
        policy: Retry budget and backoff

    Returns:
        Whatever body returned in the attempt that committed

    Example:
        >>> version = await transact(pool, lambda conn: data.get_space_version(conn, "p1"))
    """

    async def attempt() -> Outcome[R]:
        try:
            async with pool.acquire() as conn:
                outcome = await run_in_transaction(conn, body, read_only=read_only)
        except Exception as e:
            outcome = classify_error(e)

        if isinstance(outcome, Fatal) and isinstance(outcome.error, StoreUnavailableError):
            logger.error(f"Store unavailable, resetting pool: {outcome.error.message}")
            await pool.reset()
        return outcome

    return await retry_transaction(attempt, policy)
