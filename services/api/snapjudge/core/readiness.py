"""
Readiness aggregation.

The change bus only reports individual player rows, never "everyone is
ready", so the host's session polls the lobby's players while it waits for
submissions and triggers judging once the whole lobby is ready.
"""
import asyncio
import logging
from typing import Optional

from ..models import Player
from ..storage import Storage
from .state_machine import LobbyStateMachine

logger = logging.getLogger(__name__)


def all_ready(players: list[Player]) -> bool:
    """True when the lobby has players and every one of them is ready."""
    return len(players) > 0 and all(p.is_ready for p in players)


class ReadinessAggregator:
    """
    Periodic readiness check for one lobby.

    Started when the host's session begins waiting for submissions and
    stopped as soon as it leaves that phase.
    """

    def __init__(
        self,
        storage: Storage,
        state_machine: LobbyStateMachine,
        lobby_id: str,
        interval_seconds: float = 2.0,
    ):
        self.storage = storage
        self.state_machine = state_machine
        self.lobby_id = lobby_id
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_once(self) -> bool:
        """
        Check readiness and, if everyone is ready, request judging.

        Returns True once the condition has been met (whether this call or
        an earlier observer made the transition).
        """
        players = await self.storage.get_players(self.lobby_id)
        if not all_ready(players):
            return False

        lobby = await self.state_machine.begin_judging(self.lobby_id)
        if lobby is not None:
            logger.info("All %d players ready in lobby %s", len(players), lobby.code)
        return True

    async def _run(self) -> None:
        """Run the polling loop."""
        while self._running:
            try:
                if await self.check_once():
                    self._running = False
                    break
            except Exception:
                # Store hiccups are retried on the next tick
                logger.exception("Readiness check failed for lobby %s", self.lobby_id)

            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        """Start polling."""
        if self._task is None or self._task.done():
            self._running = True
            self._task = asyncio.create_task(self._run())
            logger.debug("Readiness polling started for lobby %s (interval: %ss)", self.lobby_id, self.interval_seconds)

    def stop(self) -> None:
        """Stop polling."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.debug("Readiness polling stopped for lobby %s", self.lobby_id)
