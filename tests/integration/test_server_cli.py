"""
Integration tests for the server entry point and the admin CLI.

Tests cover:
- Server start/stop lifecycle
- Logging setup
- spacesync-admin migrate / inspect / health
"""

import asyncio
import json
import logging

import json_log_formatter
import pytest

from syncsvc.spacesync_server.config import (
    HttpConfig,
    ObservabilityConfig,
    ServerConfig,
    StorageBackend,
    StorageConfig,
)
from syncsvc.spacesync_server.db import SqlitePool, ensure_schema, get_pool, reset_pool
from syncsvc.spacesync_server.main import Server, setup_logging
from syncsvc.spacesync_server.sync import Mutation, PushProcessor, PushRequest, create_default_registry
from syncsvc.spacesync_server.tools.sync_cli import main as admin_main


class TestServerLifecycle:
    """Tests for the Server orchestrator."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        config = ServerConfig(
            http=HttpConfig(host="127.0.0.1", port=0),
            storage=StorageConfig(backend=StorageBackend.MEMORY),
        )
        server = Server(config)

        task = asyncio.create_task(server.start())
        for _ in range(100):
            if server.servicer is not None and server._running:
                break
            await asyncio.sleep(0.01)

        health = await server.servicer.health()
        assert health["healthy"] is True
        running_pool = server.pool
        assert await get_pool() is running_pool

        server.request_shutdown()
        await task
        await server.stop()

        assert server.pool is None
        assert not server._running
        assert await running_pool.ping() is False

        try:
            assert await get_pool(config.storage) is not running_pool
        finally:
            await reset_pool()


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield root
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self, restore_root_logger):
        setup_logging(ServerConfig(observability=ObservabilityConfig(log_level="debug")))

        assert restore_root_logger.level == logging.DEBUG
        [handler] = restore_root_logger.handlers
        assert isinstance(handler.formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("aiohttp.access").level == logging.WARNING

    def test_text_format(self, restore_root_logger):
        setup_logging(ServerConfig(observability=ObservabilityConfig(log_format="text")))

        [handler] = restore_root_logger.handlers
        assert not isinstance(handler.formatter, json_log_formatter.JSONFormatter)


class TestAdminCLI:
    """Tests for spacesync-admin."""

    @pytest.fixture(autouse=True)
    def sqlite_backend(self, monkeypatch):
        monkeypatch.delenv("STORAGE_BACKEND", raising=False)
        monkeypatch.delenv("DB_PATH", raising=False)

    def test_migrate(self, db_path, capsys):
        assert admin_main(["--db-path", db_path, "migrate"]) == 0
        assert "Schema at version 1" in capsys.readouterr().out

        # Idempotent
        assert admin_main(["--db-path", db_path, "migrate"]) == 0

    def test_inspect(self, db_path, capsys):
        async def seed():
            pool = SqlitePool(db_path)
            try:
                await ensure_schema(pool)
                processor = PushProcessor(pool, create_default_registry())
                await processor.push(PushRequest("p1", "g1", [Mutation("c1", 1, "increment")]))
                await processor.push(PushRequest("p1", "g1", [Mutation("c1", 2, "set", 5)]))
            finally:
                await pool.close()

        asyncio.run(seed())

        assert admin_main(["--db-path", db_path, "inspect", "p1"]) == 0
        stats = json.loads(capsys.readouterr().out)
        assert stats == {"space_id": "p1", "version": 2, "live_entries": 1, "tombstones": 0}

    def test_inspect_unknown_space(self, db_path, capsys):
        admin_main(["--db-path", db_path, "migrate"])
        capsys.readouterr()

        assert admin_main(["--db-path", db_path, "inspect", "ghost"]) == 1
        assert "Unknown space ghost" in capsys.readouterr().err

    def test_health(self, db_path):
        assert admin_main(["--db-path", db_path, "health"]) == 0

    def test_health_unreachable(self, data_dir):
        # A directory cannot be opened as a database
        assert admin_main(["--db-path", data_dir, "health"]) == 1
