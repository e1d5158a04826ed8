"""
Unit tests for connection pools.

Tests cover:
- Opening a file-backed store
- Fail-fast on an unreachable store
- Rollback of dangling transactions on release
- Cancelled leases waiting for their statement
- Reset and the connection bound
- The process-wide default pool
"""

import asyncio
import os
import sqlite3

import pytest

from syncsvc.spacesync_server.config import StorageBackend, StorageConfig
from syncsvc.spacesync_server.db import (
    ConnectionPool,
    MemoryPool,
    SqlitePool,
    create_pool,
    get_pool,
    reset_pool,
)
from syncsvc.spacesync_server.errors import StoreUnavailableError


class TestSqlitePool:
    """Tests for SqlitePool."""

    @pytest.mark.asyncio
    async def test_open_creates_directories(self, data_dir):
        """Missing parent directories are created on open."""
        path = os.path.join(data_dir, "nested", "dir", "sync.db")
        pool = SqlitePool(path)
        try:
            await pool.open()
            assert os.path.exists(path)
            assert await pool.ping() is True
        finally:
            await pool.close()

    @pytest.mark.asyncio
    async def test_wal_mode_enabled(self, db_path):
        pool = SqlitePool(db_path, wal_mode=True)
        try:
            async with pool.acquire() as conn:
                rows = await conn.execute("PRAGMA journal_mode")
            assert rows[0][0] == "wal"
        finally:
            await pool.close()

    @pytest.mark.asyncio
    async def test_unreachable_store_fails_fast(self, data_dir):
        """A path that cannot be opened raises StoreUnavailableError."""
        # A directory is not a database file
        pool = SqlitePool(data_dir)

        with pytest.raises(StoreUnavailableError):
            await pool.open()

        assert await pool.ping() is False

    @pytest.mark.asyncio
    async def test_closed_pool_refuses_leases(self, db_path):
        pool = SqlitePool(db_path)
        await pool.open()
        await pool.close()

        with pytest.raises(StoreUnavailableError):
            async with pool.acquire():
                pass
        assert await pool.ping() is False

    @pytest.mark.asyncio
    async def test_connections_are_reused(self, file_pool):
        async with file_pool.acquire() as first:
            pass
        async with file_pool.acquire() as second:
            pass
        assert second is first

    @pytest.mark.asyncio
    async def test_reset_discards_leased_connections(self, file_pool):
        """A connection leased before reset() is closed when released."""
        async with file_pool.acquire() as first:
            await file_pool.reset()
        async with file_pool.acquire() as second:
            rows = await second.execute("SELECT 1 AS one")
        assert second is not first
        assert rows[0]["one"] == 1

    @pytest.mark.asyncio
    async def test_dangling_transaction_rolled_back(self, file_pool):
        """Releasing a connection mid-transaction rolls it back."""
        async with file_pool.acquire() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            await conn.execute("INSERT INTO sync_meta (key, value) VALUES ('dangling', '1')")

        async with file_pool.acquire() as conn:
            assert conn.in_transaction is False
            rows = await conn.execute("SELECT value FROM sync_meta WHERE key = 'dangling'")
        assert rows == []

    @pytest.mark.asyncio
    async def test_max_connections_bounds_leases(self, db_path):
        """A lease beyond max_connections waits."""
        pool = SqlitePool(db_path, max_connections=1)
        try:
            async with pool.acquire():

                async def lease():
                    async with pool.acquire():
                        pass

                with pytest.raises(asyncio.TimeoutError):
                    await asyncio.wait_for(lease(), timeout=0.05)
        finally:
            await pool.close()

    @pytest.mark.asyncio
    async def test_cancelled_lease_waits_for_statement(self, db_path):
        """A lease cancelled mid-BEGIN returns its connection only after rolling back."""
        pool = SqlitePool(db_path, busy_timeout_ms=5000)
        await pool.open()
        blocker = sqlite3.connect(db_path, isolation_level=None)
        try:
            blocker.execute("BEGIN IMMEDIATE")
            leased = asyncio.Event()

            async def lease():
                async with pool.acquire() as conn:
                    leased.set()
                    await conn.execute("BEGIN IMMEDIATE")

            task = asyncio.create_task(lease())
            await leased.wait()
            await asyncio.sleep(0.05)
            task.cancel()
            await asyncio.sleep(0.05)

            # BEGIN is still waiting on the lock in its thread
            assert not task.done()
            assert pool._idle == []

            blocker.execute("ROLLBACK")
            with pytest.raises(asyncio.CancelledError):
                await task

            [conn] = pool._idle
            assert conn.in_transaction is False
            async with pool.acquire() as conn:
                await conn.execute("BEGIN IMMEDIATE")
                await conn.execute("ROLLBACK")
        finally:
            blocker.close()
            await pool.close()


class TestMemoryPool:
    """Tests for MemoryPool."""

    @pytest.mark.asyncio
    async def test_data_survives_between_leases(self, memory_pool):
        async with memory_pool.acquire() as conn:
            await conn.execute("INSERT INTO sync_meta (key, value) VALUES ('k', 'v')")
        async with memory_pool.acquire() as conn:
            rows = await conn.execute("SELECT value FROM sync_meta WHERE key = 'k'")
        assert rows[0]["value"] == "v"

    @pytest.mark.asyncio
    async def test_reset_keeps_data(self, memory_pool):
        async with memory_pool.acquire() as conn:
            await conn.execute("INSERT INTO sync_meta (key, value) VALUES ('k', 'v')")
        await memory_pool.reset()
        async with memory_pool.acquire() as conn:
            rows = await conn.execute("SELECT value FROM sync_meta WHERE key = 'k'")
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_dangling_transaction_rolled_back(self, memory_pool):
        async with memory_pool.acquire() as conn:
            await conn.execute("BEGIN")
            await conn.execute("INSERT INTO sync_meta (key, value) VALUES ('k', 'v')")
        async with memory_pool.acquire() as conn:
            rows = await conn.execute("SELECT value FROM sync_meta WHERE key = 'k'")
        assert rows == []

    @pytest.mark.asyncio
    async def test_close(self):
        pool = MemoryPool()
        await pool.open()
        assert await pool.ping() is True
        await pool.close()
        assert await pool.ping() is False
        with pytest.raises(StoreUnavailableError):
            async with pool.acquire():
                pass


class TestPoolFactory:
    """Tests for create_pool and the process-wide pool."""

    def test_create_sqlite_pool(self, db_path):
        pool = create_pool(StorageConfig(db_path=db_path, max_connections=3))
        assert isinstance(pool, SqlitePool)
        assert isinstance(pool, ConnectionPool)
        assert pool.max_connections == 3

    def test_create_memory_pool(self):
        pool = create_pool(StorageConfig(backend=StorageBackend.MEMORY))
        assert isinstance(pool, MemoryPool)
        assert isinstance(pool, ConnectionPool)

    @pytest.mark.asyncio
    async def test_get_pool_initializes_once(self):
        """get_pool() creates and bootstraps the pool on first use only."""
        config = StorageConfig(backend=StorageBackend.MEMORY)
        try:
            pool = await get_pool(config)
            assert await get_pool() is pool

            async with pool.acquire() as conn:
                rows = await conn.execute("SELECT version FROM sync_space")
            assert rows == []
        finally:
            await reset_pool()

    @pytest.mark.asyncio
    async def test_reset_pool_reinitializes(self):
        """After reset_pool() the next get_pool() builds a fresh pool."""
        config = StorageConfig(backend=StorageBackend.MEMORY)
        try:
            first = await get_pool(config)
            await reset_pool()
            second = await get_pool(config)
            assert second is not first
            assert await first.ping() is False
        finally:
            await reset_pool()
