"""
Connection pools for the SpaceSync store.

The pool is the only shared mutable resource in the server. Every push and
pull leases a connection, runs one transaction on it and hands it back.

Two implementations share the ConnectionPool capability:
- SqlitePool: file-backed SQLite, bounded number of connections, WAL mode
- MemoryPool: one in-memory SQLite connection leased exclusively (tests, dev)

Blocking sqlite3 calls run in worker threads so a writer waiting for the
write lock never stalls the event loop.

Invariants:
    - A connection is leased to at most one task at a time
    - A connection released while still in a transaction is rolled back
    - After reset(), connections leased earlier are closed on release
    - Failure to open the store raises StoreUnavailableError at once

How to change safely:
    - Keep PRAGMA setup in _connect_sync; every connection needs it
    - Test reset() with connections still leased
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncContextManager, Protocol, runtime_checkable

from ..config import StorageBackend, StorageConfig
from ..errors import StoreUnavailableError

if TYPE_CHECKING:
    from .transact import RetryPolicy

logger = logging.getLogger(__name__)

# SQLite result codes that mean the store itself is gone or broken
_FATAL_SQLITE_ERRORS = ("SQLITE_CANTOPEN", "SQLITE_IOERR", "SQLITE_CORRUPT", "SQLITE_NOTADB")
_FATAL_MESSAGES = (
    "unable to open database",
    "disk i/o error",
    "database disk image is malformed",
    "file is not a database",
)


def is_store_fatal(err: BaseException) -> bool:
    """Whether an error means the store is unreachable or unusable."""
    if not isinstance(err, sqlite3.DatabaseError):
        return False
    name = getattr(err, "sqlite_errorname", None) or ""
    if name.startswith(_FATAL_SQLITE_ERRORS):
        return True
    message = str(err).lower()
    return any(m in message for m in _FATAL_MESSAGES)


class Connection:
    """A pooled SQLite connection with async query methods.

    Example:
        >>> async with pool.acquire() as conn:
        ...     rows = await conn.execute("SELECT version FROM sync_space WHERE id = ?", ("p1",))
    """

    def __init__(self, raw: sqlite3.Connection) -> None:
        self._raw = raw
        self._inflight: asyncio.Future[Any] | None = None

    @property
    def in_transaction(self) -> bool:
        return self._raw.in_transaction

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        """Run one statement and return all result rows."""
        return await self._call(self._execute_sync, sql, params)

    async def execute_rowcount(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run one modifying statement and return the affected row count."""
        return await self._call(self._rowcount_sync, sql, params)

    async def settle(self) -> None:
        """Wait for a statement whose caller was cancelled to finish in its thread."""
        inflight, self._inflight = self._inflight, None
        if inflight is not None and not inflight.done():
            await asyncio.wait([inflight])

    async def close(self) -> None:
        await asyncio.to_thread(self._raw.close)

    async def _call(self, fn: Any, *args: Any) -> Any:
        # The worker thread outlives a cancelled caller; keep a handle so
        # release can wait for it before checking in_transaction.
        self._inflight = asyncio.ensure_future(asyncio.to_thread(fn, *args))
        return await asyncio.shield(self._inflight)

    def _execute_sync(self, sql: str, params: Sequence[Any]) -> list[sqlite3.Row]:
        cursor = self._raw.execute(sql, params)
        try:
            return cursor.fetchall()
        finally:
            cursor.close()

    def _rowcount_sync(self, sql: str, params: Sequence[Any]) -> int:
        cursor = self._raw.execute(sql, params)
        try:
            return cursor.rowcount
        finally:
            cursor.close()

    def rollback_sync(self) -> None:
        self._raw.execute("ROLLBACK")


@runtime_checkable
class ConnectionPool(Protocol):
    """Capability interface over the store's connections.

    Implementations must make acquire() fail fast with StoreUnavailableError
    when the store cannot be reached.
    """

    def acquire(self) -> AsyncContextManager[Connection]:
        """Lease a connection for the duration of the context."""
        ...

    async def ping(self) -> bool:
        """Health probe: True when the store answers a trivial query."""
        ...

    async def reset(self) -> None:
        """Drop idle connections so later leases reconnect."""
        ...

    async def close(self) -> None:
        """Close every connection; acquire() fails afterwards."""
        ...


async def _release(conn: Connection) -> bool:
    """Roll back a dangling transaction. Returns False if the connection is unusable."""
    await conn.settle()
    if not conn.in_transaction:
        return True
    logger.warning("Connection released inside a transaction, rolling back")
    try:
        await asyncio.to_thread(conn.rollback_sync)
        return True
    except sqlite3.Error as e:
        logger.error(f"Rollback on release failed: {e}")
        return False


class SqlitePool:
    """Bounded pool of connections to one SQLite database file.

    Attributes:
        db_path: Database file
        wal_mode: Whether to switch the file to WAL journal mode on open
        busy_timeout_ms: How long a writer waits for the write lock
        max_connections: Maximum concurrently leased connections

    Example:
        >>> pool = SqlitePool("/var/lib/spacesync/sync.db")
        >>> await pool.open()
        >>> async with pool.acquire() as conn:
        ...     await conn.execute("SELECT 1")
    """

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        max_connections: int = 10,
    ) -> None:
        self.db_path = db_path
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.max_connections = max_connections
        self._idle: list[Connection] = []
        self._slots = asyncio.Semaphore(max_connections)
        self._generation = 0
        self._opened = False
        self._closed = False

    def _connect_sync(self) -> sqlite3.Connection:
        raw = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
            check_same_thread=False,
        )
        raw.row_factory = sqlite3.Row
        try:
            raw.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
            raw.execute("PRAGMA synchronous = NORMAL")
            raw.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error:
            raw.close()
            raise
        return raw

    async def _connect(self) -> Connection:
        try:
            raw = await asyncio.to_thread(self._connect_sync)
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open database {self.db_path}", cause=e) from e
        return Connection(raw)

    async def open(self) -> None:
        """Create the database file if needed and verify it can be opened."""
        if self._closed:
            raise StoreUnavailableError("Connection pool is closed")
        try:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot create directory for {self.db_path}", cause=e) from e

        conn = await self._connect()
        try:
            if self.wal_mode:
                await conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.Error as e:
            await conn.close()
            raise StoreUnavailableError(f"Cannot configure database {self.db_path}", cause=e) from e

        self._idle.append(conn)
        self._opened = True
        logger.info("Initialized connection pool", extra={"db_path": self.db_path})

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Connection]:
        if self._closed:
            raise StoreUnavailableError("Connection pool is closed")
        if not self._opened:
            await self.open()

        async with self._slots:
            conn = self._idle.pop() if self._idle else await self._connect()
            generation = self._generation
            usable = True
            try:
                yield conn
            except sqlite3.DatabaseError as e:
                if is_store_fatal(e):
                    usable = False
                raise
            finally:
                usable = await _release(conn) and usable
                if usable and generation == self._generation and not self._closed:
                    self._idle.append(conn)
                else:
                    await conn.close()

    async def ping(self) -> bool:
        try:
            async with self.acquire() as conn:
                await conn.execute("SELECT 1")
            return True
        except (StoreUnavailableError, sqlite3.Error) as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    async def reset(self) -> None:
        self._generation += 1
        idle, self._idle = self._idle, []
        for conn in idle:
            await conn.close()
        logger.warning(
            "Connection pool reset",
            extra={"db_path": self.db_path, "generation": self._generation},
        )

    async def close(self) -> None:
        self._closed = True
        idle, self._idle = self._idle, []
        for conn in idle:
            await conn.close()
        logger.info("Connection pool closed", extra={"db_path": self.db_path})


class MemoryPool:
    """Single in-memory SQLite database, leased to one task at a time.

    Transactions never conflict because leases are serialized. The data
    lives exactly as long as the pool.
    """

    def __init__(self) -> None:
        self._conn: Connection | None = None
        self._lock = asyncio.Lock()
        self._closed = False

    async def open(self) -> None:
        if self._conn is not None:
            return
        raw = await asyncio.to_thread(
            sqlite3.connect, ":memory:", isolation_level=None, check_same_thread=False
        )
        raw.row_factory = sqlite3.Row
        self._conn = Connection(raw)

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Connection]:
        if self._closed:
            raise StoreUnavailableError("Connection pool is closed")
        async with self._lock:
            if self._conn is None:
                await self.open()
            conn = self._conn
            assert conn is not None
            try:
                yield conn
            finally:
                await _release(conn)

    async def ping(self) -> bool:
        return not self._closed

    async def reset(self) -> None:
        # The single connection holds the data, so it is kept.
        logger.warning("Reset requested on in-memory pool, keeping connection")

    async def close(self) -> None:
        self._closed = True
        if self._conn is not None:
            await self._conn.close()
            self._conn = None


def create_pool(config: StorageConfig) -> ConnectionPool:
    """Factory function to create a pool from configuration.

    Raises:
        ValueError: If backend is not supported
    """
    if config.backend == StorageBackend.SQLITE:
        return SqlitePool(
            db_path=config.db_path,
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
            max_connections=config.max_connections,
        )
    elif config.backend == StorageBackend.MEMORY:
        return MemoryPool()
    else:
        raise ValueError(f"Unsupported storage backend: {config.backend}")


# Process-wide pool, created on first use
_default_pool: ConnectionPool | None = None
_default_lock = asyncio.Lock()


async def get_pool(
    config: StorageConfig | None = None,
    policy: RetryPolicy | None = None,
) -> ConnectionPool:
    """Return the process-wide pool, creating and bootstrapping it on first use.

    config and policy only apply to the call that creates the pool.
    """
    global _default_pool
    async with _default_lock:
        if _default_pool is None:
            from .schema import ensure_schema

            logger.info("Initializing global pool")
            pool = create_pool(config or StorageConfig.from_env())
            try:
                await ensure_schema(pool, policy)
            except BaseException:
                await pool.close()
                raise
            _default_pool = pool
        return _default_pool


async def reset_pool() -> None:
    """Close the process-wide pool so the next get_pool() reinitializes it."""
    global _default_pool
    async with _default_lock:
        if _default_pool is not None:
            await _default_pool.close()
            _default_pool = None
            logger.warning("Global pool discarded, will reinitialize on next use")
