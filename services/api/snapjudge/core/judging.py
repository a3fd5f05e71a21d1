"""
Judging workflow.

Runs on every session that holds the host role when it sees a lobby enter
judging. Inserting the Round row is the mutual-exclusion point: the store
rejects a second (lobby_id, round_number) insert, so a duplicate host
session stops there and no round is ever scored twice.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from ..errors import DuplicateKeyError, InvalidTransition, LobbyNotFound, NoSubmissions
from ..models import Round, Submission
from ..services.judge import Judge
from ..services.lobbies import generate_id
from ..storage import Storage
from .state_machine import LobbyStateMachine

logger = logging.getLogger(__name__)


class JudgingCoordinator:
    """Judges a lobby's current round at most once and applies the scores."""

    def __init__(self, storage: Storage, judge: Judge, state_machine: LobbyStateMachine):
        self.storage = storage
        self.judge = judge
        self.state_machine = state_machine

    async def run(self, lobby_id: str) -> Optional[Round]:
        """
        Judge the lobby's current round.

        Returns the recorded Round, or None when another session already
        recorded it. Raises NoSubmissions or JudgingFailed without touching
        any lobby or player record; the lobby then stays in judging until
        the host retries.
        """
        lobby = await self.storage.get_lobby(lobby_id)
        if lobby is None:
            raise LobbyNotFound(lobby_id)
        if lobby.status == "results" and await self.storage.get_round(lobby_id, lobby.current_round):
            logger.info("Round %d of lobby %s already judged", lobby.current_round, lobby.code)
            return None
        if lobby.status != "judging":
            raise InvalidTransition(lobby.status, "results", action="judge")

        round_number = lobby.current_round
        if await self.storage.get_round(lobby_id, round_number) is not None:
            logger.info("Round %d of lobby %s already judged", round_number, lobby.code)
            await self.state_machine.finish_judging(lobby_id)
            return None

        players = await self.storage.get_submitted_players(lobby_id)
        if not players:
            raise NoSubmissions(f"No photos submitted in lobby {lobby.code} round {round_number}")

        submissions = [
            Submission(player_id=p.player_id, nickname=p.nickname, image_url=p.image_url)
            for p in players
        ]
        topic = lobby.current_topic or ""
        logger.info("Judging %d photos for lobby %s round %d", len(submissions), lobby.code, round_number)

        rankings = await self.judge.judge(topic, submissions)

        try:
            round_obj = await self.storage.create_round(Round(
                round_id=generate_id("round_"),
                lobby_id=lobby_id,
                round_number=round_number,
                topic=topic,
                rankings=rankings,
                completed_at=datetime.now(timezone.utc),
            ))
        except DuplicateKeyError:
            logger.info("Round %d of lobby %s recorded by another session", round_number, lobby.code)
            return None

        for ranking in rankings:
            await self.storage.increment_score(ranking.player_id, ranking.score)

        await self.state_machine.finish_judging(lobby_id)
        logger.info(
            "Lobby %s round %d judged; winner %s",
            lobby.code, round_number, rankings[0].nickname if rankings else "-",
        )
        return round_obj

    async def retry(self, lobby_id: str) -> Optional[Round]:
        """Host-requested re-run for a lobby stuck in judging."""
        logger.info("Retrying judging for lobby %s", lobby_id)
        return await self.run(lobby_id)
