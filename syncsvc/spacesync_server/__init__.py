"""
SpaceSync Server - authoritative push/pull sync engine for optimistic clients.

Clients apply mutations locally and speculatively, then push a mutation log
to this server. The server re-runs each mutation against the authoritative
SQLite store, bumps a per-space version (the "cookie") and answers pulls with
the minimal set of changes since the cookie a client last saw.

Architecture:
    ┌─────────────┐  push  ┌──────────────┐     ┌──────────────────┐
    │   Client    │───────▶│ PushProcessor│────▶│ ChangeNotifier   │
    │  (replica)  │        └──────┬───────┘     │ (poke, external) │
    └──────┬──────┘               │             └──────────────────┘
           │ pull                 ▼
           │            ┌───────────────────┐
           └───────────▶│ transact() retry  │
            PullEngine  │ SERIALIZABLE txn  │
                        └─────────┬─────────┘
                                  ▼
                 ┌──────────────────────────────────┐
                 │ SQLite: sync_space / sync_client │
                 │         sync_entry (tombstoned)  │
                 └──────────────────────────────────┘

Invariants:
    - The store is the single source of truth; nothing is cached across requests
    - A space's version increases by exactly 1 per committed batch that writes
    - Mutations of one client are applied strictly in ID order, never twice
    - Entries are never physically deleted, only tombstoned

How to change safely:
    - Schema changes go through db/schema.py migrations
    - Keep push and pull inside transact() so conflicts are retried
    - Test concurrent pushes against a file-backed SQLite store

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
