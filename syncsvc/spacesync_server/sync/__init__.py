"""
Sync module for SpaceSync - push processing and pull diffs.

This module handles:
- Mutator registry and the default counter mutators
- Buffered per-space write transactions for mutators
- Push: ordered, deduplicated, atomic application of mutation batches
- Pull: entry and mutation-ID changes since a cookie

Invariants:
    - Push is the only writer of spaces, clients and entries
    - Pull only reads
"""

from .mutators import (
    DuplicateMutatorError,
    Mutator,
    MutatorRegistry,
    create_default_registry,
)
from .pull import PatchOperation, PullEngine, PullRequest, PullResponse
from .push import Mutation, PushProcessor, PushRequest, PushResult
from .space_tx import SpaceWriteTransaction

__all__ = [
    "Mutator",
    "MutatorRegistry",
    "DuplicateMutatorError",
    "create_default_registry",
    "SpaceWriteTransaction",
    "Mutation",
    "PushRequest",
    "PushResult",
    "PushProcessor",
    "PullRequest",
    "PullResponse",
    "PatchOperation",
    "PullEngine",
]
