"""
Change notification ("poke") for SpaceSync.

The sync core only needs notify(space_id). The broadcast transport that
reaches clients is pluggable:
- NullNotifier (default): log only, clients poll
- InMemoryNotifier: per-space asyncio queues, for tests and single-process use
"""

from .base import ChangeNotifier, NullNotifier
from .memory import InMemoryNotifier, Subscription

__all__ = [
    "ChangeNotifier",
    "NullNotifier",
    "InMemoryNotifier",
    "Subscription",
]
