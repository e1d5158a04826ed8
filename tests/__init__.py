"""
SpaceSync Test Suite.

This package contains:
- unit/: Unit tests (in-memory store, no network)
- integration/: Integration tests (file-backed SQLite, HTTP app, CLI)
"""
