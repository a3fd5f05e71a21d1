"""
Background tasks for Snap Judge.

These tasks run periodically to maintain system health.
"""
import asyncio
import logging
from typing import Optional

from .dependencies import get_registry, get_storage

logger = logging.getLogger(__name__)


class CleanupTask:
    """
    Periodic task that garbage collects inactive lobbies and closes the
    server-side sessions that belonged to them.

    Runs every hour by default.
    """

    def __init__(self, interval_seconds: int = 3600):
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def run_once(self) -> int:
        """Remove expired lobbies. Returns how many were removed."""
        expired = await get_storage().cleanup_expired_lobbies()
        if expired:
            closed = await get_registry().close_lobbies(expired)
            logger.info("Cleaned up %d expired lobbies (%d sessions closed)", len(expired), closed)
        return len(expired)

    async def _run_cleanup(self) -> None:
        """Run the cleanup loop."""
        while self._running:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Error during lobby cleanup")

            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        """Start the cleanup task."""
        if self._task is None or self._task.done():
            self._running = True
            self._task = asyncio.create_task(self._run_cleanup())
            logger.info("Lobby cleanup task started (interval: %ss)", self.interval_seconds)

    def stop(self) -> None:
        """Stop the cleanup task."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.info("Lobby cleanup task stopped")
