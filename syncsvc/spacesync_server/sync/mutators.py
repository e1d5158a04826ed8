"""
Mutator registry.

Mutators are how clients change data. Each client runs a mutation
immediately and optimistically against its local cache, then sends the
mutation's name and arguments here so the server can re-run it against the
authoritative store. The server-side result always wins.

A mutator is a function (tx, args) -> None, sync or async, where tx is a
SpaceWriteTransaction. It must only touch state through tx: a conflicting
push batch is re-run from scratch, mutators included.

Example:
    >>> registry = MutatorRegistry()
    >>> @registry.mutator("rename")
    ... async def rename(tx, args):
    ...     await tx.set("title", args["title"])
"""

from __future__ import annotations

import inspect
import logging
import threading
from collections.abc import Callable
from typing import Any, Awaitable, Union

from ..errors import UnknownMutatorError
from .space_tx import SpaceWriteTransaction

logger = logging.getLogger(__name__)

Mutator = Callable[[SpaceWriteTransaction, Any], Union[Awaitable[None], None]]

COUNTER_KEY = "counter"


class DuplicateMutatorError(Exception):
    """A mutator with this name is already registered."""

    pass


class MutatorRegistry:
    """Maps mutation names to mutator functions.

    Registration validates the name and the function's signature, so a bad
    mutator fails at startup and an unknown name fails as UnknownMutatorError.
    """

    def __init__(self) -> None:
        self._mutators: dict[str, Mutator] = {}
        self._lock = threading.Lock()

    def register(self, name: str, fn: Mutator) -> Mutator:
        """Register fn under name.

        Raises:
            ValueError: If name is empty
            TypeError: If fn is not callable as fn(tx, args)
            DuplicateMutatorError: If name is already registered
        """
        if not isinstance(name, str) or not name:
            raise ValueError("Mutator name must be a non-empty string")
        if not callable(fn):
            raise TypeError(f"Mutator '{name}' is not callable")
        try:
            inspect.signature(fn).bind(None, None)
        except TypeError:
            raise TypeError(f"Mutator '{name}' must accept (tx, args)")
        except ValueError:
            # Builtins without a signature; accept and let the call decide
            pass

        with self._lock:
            if name in self._mutators:
                raise DuplicateMutatorError(f"Mutator '{name}' already registered")
            self._mutators[name] = fn

        logger.debug(f"Registered mutator {name}")
        return fn

    def mutator(self, name: str | None = None) -> Callable[[Mutator], Mutator]:
        """Decorator form of register(); defaults to the function's name."""

        def decorator(fn: Mutator) -> Mutator:
            return self.register(name or fn.__name__, fn)

        return decorator

    def get(self, name: str) -> Mutator:
        try:
            return self._mutators[name]
        except KeyError:
            raise UnknownMutatorError(name) from None

    async def invoke(self, name: str, tx: SpaceWriteTransaction, args: Any) -> None:
        """Run the named mutator against tx."""
        result = self.get(name)(tx, args)
        if inspect.isawaitable(result):
            await result

    def names(self) -> list[str]:
        return sorted(self._mutators)

    def __contains__(self, name: object) -> bool:
        return name in self._mutators

    def __len__(self) -> int:
        return len(self._mutators)


async def increment(tx: SpaceWriteTransaction, args: Any) -> None:
    current = await tx.get(COUNTER_KEY, 0)
    await tx.set(COUNTER_KEY, current + 1)


async def decrement(tx: SpaceWriteTransaction, args: Any) -> None:
    current = await tx.get(COUNTER_KEY, 0)
    await tx.set(COUNTER_KEY, current - 1)


async def set_counter(tx: SpaceWriteTransaction, args: Any) -> None:
    """Accepts a bare number or {"value": number}."""
    value = args.get("value") if isinstance(args, dict) else args
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"set expects a number, got {value!r}")
    await tx.set(COUNTER_KEY, value)


def create_default_registry() -> MutatorRegistry:
    """Registry with the counter mutators: increment, decrement, set."""
    registry = MutatorRegistry()
    registry.register("increment", increment)
    registry.register("decrement", decrement)
    registry.register("set", set_counter)
    return registry
