"""
Lobby state machine.

Lobby.status is the only piece of shared coordination state. Every forward
transition is written conditionally on the status it was decided from, so
a racing duplicate session cannot clobber a transition that already
happened.

    waiting --start--> topic_reveal --all ready--> judging --judged--> results
                            ^                                             |
                            +----------------next round-------------------+
"""
import logging
from typing import Optional

from ..errors import ConflictError, InsufficientPlayers, InvalidTransition, LobbyNotFound
from ..models import Lobby
from ..services.topics import random_topic
from ..storage import Storage

logger = logging.getLogger(__name__)


TRANSITIONS: dict[str, frozenset[str]] = {
    "waiting": frozenset({"topic_reveal"}),
    "topic_reveal": frozenset({"judging"}),
    "judging": frozenset({"results"}),
    "results": frozenset({"topic_reveal"}),
}

# Position of each status within one round, for spotting stale events
STATUS_ORDER = {"waiting": 0, "topic_reveal": 1, "judging": 2, "results": 3}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


class LobbyStateMachine:
    """Validates and applies lobby status transitions."""

    def __init__(self, storage: Storage, min_players: int = 2):
        self.storage = storage
        self.min_players = min_players

    async def _load(self, lobby_id: str) -> Lobby:
        lobby = await self.storage.get_lobby(lobby_id)
        if lobby is None:
            raise LobbyNotFound(lobby_id)
        return lobby

    async def start(self, lobby_id: str) -> Lobby:
        """
        Leave the waiting room and reveal the first topic.

        Raises InvalidTransition unless the lobby is waiting, and
        InsufficientPlayers (without touching state) when fewer than
        `min_players` have joined.
        """
        lobby = await self._load(lobby_id)
        if lobby.status != "waiting":
            raise InvalidTransition(lobby.status, "topic_reveal", action="start")

        players = await self.storage.get_players(lobby_id)
        if len(players) < self.min_players:
            raise InsufficientPlayers(len(players), self.min_players)

        try:
            lobby = await self.storage.update_lobby(
                lobby_id,
                {
                    "status": "topic_reveal",
                    "current_topic": lobby.current_topic or random_topic(),
                },
                expected_status="waiting",
            )
        except ConflictError as e:
            current = await self._load(lobby_id)
            raise InvalidTransition(current.status, "topic_reveal", action="start") from e

        logger.info("Lobby %s started round %d: %s", lobby.code, lobby.current_round, lobby.current_topic)
        return lobby

    async def begin_judging(
        self, lobby_id: str, expected_status: str = "topic_reveal"
    ) -> Optional[Lobby]:
        """
        Move from submission collection to judging.

        Idempotent: returns None, without raising, if another observer has
        already made this transition.
        """
        if not can_transition(expected_status, "judging"):
            raise InvalidTransition(expected_status, "judging", action="begin judging")

        try:
            lobby = await self.storage.update_lobby(
                lobby_id, {"status": "judging"}, expected_status=expected_status
            )
        except ConflictError:
            logger.debug("Lobby %s already left '%s'; judging transition skipped", lobby_id, expected_status)
            return None

        logger.info("Lobby %s round %d is being judged", lobby.code, lobby.current_round)
        return lobby

    async def finish_judging(self, lobby_id: str) -> Optional[Lobby]:
        """Publish results. Returns None if the lobby is no longer judging."""
        try:
            return await self.storage.update_lobby(
                lobby_id, {"status": "results"}, expected_status="judging"
            )
        except ConflictError:
            logger.debug("Lobby %s no longer judging; results transition skipped", lobby_id)
            return None

    async def next_round(self, lobby_id: str, topic: Optional[str] = None) -> Lobby:
        """
        Start the next round from results: clear every player's photo and
        readiness, bump the round counter by one and reveal a new topic.
        """
        lobby = await self._load(lobby_id)
        if lobby.status != "results":
            raise InvalidTransition(lobby.status, "topic_reveal", action="next round")

        # Reset before revealing so no fresh submission can be wiped
        await self.storage.reset_players_for_round(lobby_id)

        try:
            lobby = await self.storage.update_lobby(
                lobby_id,
                {
                    "status": "topic_reveal",
                    "current_topic": (topic or "").strip() or random_topic(),
                    "current_round": lobby.current_round + 1,
                },
                expected_status="results",
            )
        except ConflictError as e:
            current = await self._load(lobby_id)
            raise InvalidTransition(current.status, "topic_reveal", action="next round") from e

        logger.info("Lobby %s moved to round %d: %s", lobby.code, lobby.current_round, lobby.current_topic)
        return lobby
