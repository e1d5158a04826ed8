"""
Change notifier protocol.

After a push commits a change to a space, the Push Processor calls
notify(space_id) so idle clients can be poked into pulling. Delivery is
best-effort: a lost poke only delays a client until its next poll, because
pull is idempotent and cookie-driven.

Invariants:
    - notify() is called only after the batch committed
    - A failing notify() never fails the push

How to change safely:
    - New transports implement ChangeNotifier
    - Keep notify() quick; it runs on the push request path
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class ChangeNotifier(Protocol):
    """Protocol for poke transports."""

    async def notify(self, space_id: str) -> None:
        """Signal that space_id changed.

        Args:
            space_id: Space whose version was bumped
        """
        ...


class NullNotifier:
    """Notifier that only logs. Clients rely on polling."""

    async def notify(self, space_id: str) -> None:
        logger.debug(f"[{space_id}] Space changed, no poke transport configured")
