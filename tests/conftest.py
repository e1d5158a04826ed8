"""
Shared fixtures for SpaceSync tests.
"""

import os
import tempfile

import pytest

from syncsvc.spacesync_server.db import MemoryPool, SqlitePool, ensure_schema


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def db_path(data_dir):
    """Path of a not yet created database file."""
    return os.path.join(data_dir, "sync.db")


@pytest.fixture
async def memory_pool():
    """In-memory store with the schema applied."""
    pool = MemoryPool()
    await ensure_schema(pool)
    yield pool
    await pool.close()


@pytest.fixture
async def file_pool(db_path):
    """File-backed store with the schema applied."""
    pool = SqlitePool(db_path, busy_timeout_ms=5000, max_connections=4)
    await ensure_schema(pool)
    yield pool
    await pool.close()
