"""
Service layer shared by the HTTP API and the admin CLI.

SyncServicer validates request bodies, short-circuits when the store is
down and delegates to the Push Processor and Pull Diff Engine.

Invariants:
    - A failed health probe raises StoreUnavailableError before any transaction
    - Only SyncError subclasses leave push() and pull() for expected failures
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from .._version import __version__
from ..db.pool import ConnectionPool
from ..errors import StoreUnavailableError
from ..sync.pull import PullEngine
from ..sync.push import PushProcessor
from .models import parse_pull, parse_push

logger = logging.getLogger(__name__)


class SyncServicer:
    """Push/pull service implementation.

    Attributes:
        pool: Store connection pool (used for the health probe)
        push_processor: Applies push batches
        pull_engine: Computes pull diffs
    """

    def __init__(
        self,
        pool: ConnectionPool,
        push_processor: PushProcessor,
        pull_engine: PullEngine,
    ) -> None:
        self.pool = pool
        self.push_processor = push_processor
        self.pull_engine = pull_engine

    async def _require_store(self, space_id: str, operation: str) -> None:
        if not await self.pool.ping():
            logger.error(
                f"[{space_id}] Database health check failed. Cannot process {operation} request."
            )
            raise StoreUnavailableError("Database is currently unavailable")

    async def push(self, space_id: str, body: Any) -> Dict[str, Any]:
        """Apply a push body to space_id. Returns an empty response body."""
        logger.info(f"[{space_id}] Received push request")
        await self._require_store(space_id, "push")
        request = parse_push(space_id, body)
        await self.push_processor.push(request)
        return {}

    async def pull(self, space_id: str, body: Any) -> Dict[str, Any]:
        """Answer a pull body for space_id."""
        logger.info(f"[{space_id}] Received pull request")
        await self._require_store(space_id, "pull")
        request = parse_pull(space_id, body)
        response = await self.pull_engine.pull(request)
        return response.to_dict()

    async def health(self) -> Dict[str, Any]:
        """Get server health status."""
        store_healthy = await self.pool.ping()
        components = {"store": "healthy" if store_healthy else "unhealthy"}
        return {
            "healthy": store_healthy,
            "version": __version__,
            "components": components,
        }
