"""
Unit tests for the mutator registry and the default counter mutators.

Tests cover:
- Registration validation
- Lookup of unknown names
- Sync and async mutators
- increment / decrement / set
"""

import pytest

from syncsvc.spacesync_server.db import transact
from syncsvc.spacesync_server.errors import MutatorError, UnknownMutatorError
from syncsvc.spacesync_server.sync.mutators import (
    COUNTER_KEY,
    DuplicateMutatorError,
    MutatorRegistry,
    create_default_registry,
)
from syncsvc.spacesync_server.sync.space_tx import SpaceWriteTransaction


async def invoke(pool, registry, *calls):
    """Run (name, args) calls against one transaction and return the counter."""

    async def body(conn):
        tx = SpaceWriteTransaction(conn, "p1")
        for name, args in calls:
            await registry.invoke(name, tx, args)
        return await tx.get(COUNTER_KEY)

    return await transact(pool, body)


class TestMutatorRegistry:
    """Tests for MutatorRegistry."""

    def test_register_and_get(self):
        registry = MutatorRegistry()

        def noop(tx, args):
            pass

        registry.register("noop", noop)

        assert registry.get("noop") is noop
        assert "noop" in registry
        assert len(registry) == 1

    def test_decorator_defaults_to_function_name(self):
        registry = MutatorRegistry()

        @registry.mutator()
        async def rename(tx, args):
            pass

        @registry.mutator("archive")
        async def archive_item(tx, args):
            pass

        assert registry.names() == ["archive", "rename"]

    def test_unknown_name(self):
        """Unknown mutation names raise a typed error."""
        registry = MutatorRegistry()

        with pytest.raises(UnknownMutatorError) as exc_info:
            registry.get("missing")

        assert isinstance(exc_info.value, MutatorError)
        assert exc_info.value.code == "UNKNOWN_MUTATOR"
        assert exc_info.value.mutation_name == "missing"

    def test_duplicate_name(self):
        registry = MutatorRegistry()
        registry.register("a", lambda tx, args: None)

        with pytest.raises(DuplicateMutatorError):
            registry.register("a", lambda tx, args: None)

    def test_rejects_wrong_signature(self):
        registry = MutatorRegistry()

        with pytest.raises(TypeError):
            registry.register("bad", lambda tx: None)

    def test_rejects_non_callable(self):
        registry = MutatorRegistry()

        with pytest.raises(TypeError):
            registry.register("bad", "not a function")

    def test_rejects_empty_name(self):
        registry = MutatorRegistry()

        with pytest.raises(ValueError):
            registry.register("", lambda tx, args: None)

    @pytest.mark.asyncio
    async def test_invoke_sync_and_async(self, memory_pool):
        registry = MutatorRegistry()

        def sync_mutator(tx, args):
            # Sync mutators may still return the awaitable of a tx call
            return tx.set(COUNTER_KEY, args)

        async def async_mutator(tx, args):
            await tx.set(COUNTER_KEY, await tx.get(COUNTER_KEY) * args)

        registry.register("assign", sync_mutator)
        registry.register("multiply", async_mutator)

        assert await invoke(memory_pool, registry, ("assign", 3), ("multiply", 4)) == 12


class TestDefaultMutators:
    """Tests for the counter mutators."""

    @pytest.fixture
    def registry(self):
        return create_default_registry()

    def test_names(self, registry):
        assert registry.names() == ["decrement", "increment", "set"]

    @pytest.mark.asyncio
    async def test_increment_from_zero(self, memory_pool, registry):
        assert await invoke(memory_pool, registry, ("increment", None)) == 1

    @pytest.mark.asyncio
    async def test_increment_and_decrement(self, memory_pool, registry):
        calls = [("increment", None)] * 3 + [("decrement", {})]
        assert await invoke(memory_pool, registry, *calls) == 2

    @pytest.mark.asyncio
    async def test_decrement_below_zero(self, memory_pool, registry):
        assert await invoke(memory_pool, registry, ("decrement", None)) == -1

    @pytest.mark.asyncio
    async def test_set_bare_number(self, memory_pool, registry):
        assert await invoke(memory_pool, registry, ("set", 42)) == 42

    @pytest.mark.asyncio
    async def test_set_value_object(self, memory_pool, registry):
        calls = [("set", {"value": 10}), ("increment", None)]
        assert await invoke(memory_pool, registry, *calls) == 11

    @pytest.mark.asyncio
    @pytest.mark.parametrize("args", ["7", True, None, {"value": "x"}, [1]])
    async def test_set_rejects_non_numbers(self, memory_pool, registry, args):
        with pytest.raises(ValueError):
            await invoke(memory_pool, registry, ("set", args))
