"""
Database module for SpaceSync - pool, retrying transactions and data access.

This module handles:
- Connection pools over SQLite (file-backed or in-memory)
- Serializable transactions with retry on write conflicts
- Space, client and entry rows
- Schema bootstrap

Invariants:
    - Every read and write happens inside transact()
    - The store is shared by all server instances; nothing is cached

How to change safely:
    - New queries go in data.py and take a Connection
    - Schema changes go in schema.py as a new migration
"""

from .pool import (
    Connection,
    ConnectionPool,
    MemoryPool,
    SqlitePool,
    create_pool,
    get_pool,
    reset_pool,
)
from .schema import SCHEMA_VERSION, ensure_schema
from .transact import (
    Committed,
    Fatal,
    Retryable,
    RetryPolicy,
    classify_error,
    retry_transaction,
    transact,
)

__all__ = [
    # Pool
    "Connection",
    "ConnectionPool",
    "SqlitePool",
    "MemoryPool",
    "create_pool",
    "get_pool",
    "reset_pool",
    # Schema
    "SCHEMA_VERSION",
    "ensure_schema",
    # Transactions
    "Committed",
    "Retryable",
    "Fatal",
    "RetryPolicy",
    "classify_error",
    "retry_transaction",
    "transact",
]
