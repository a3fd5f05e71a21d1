"""
Per-participant session.

Mirrors the shared lobby into a local game state by reacting to change
events, and, when this participant is the host, drives readiness polling
and judging. Several sessions share one store and one bus exactly like
several browser tabs share a backend; none of them holds a lock.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Optional

from .bus import ChangeBus, Subscription, field_equals
from .config import Settings, get_settings
from .core.judging import JudgingCoordinator
from .core.readiness import ReadinessAggregator
from .core.state_machine import STATUS_ORDER, LobbyStateMachine
from .errors import InvalidTransition, JudgingFailed, NoSubmissions, NotHost, SnapJudgeError
from .models import ChangeEvent, ClientStateResponse, Lobby, Player, Ranking
from .services import lobbies
from .services.judge import Judge
from .storage import Storage

logger = logging.getLogger(__name__)


class GameState(str, Enum):
    """Local, per-participant screen state."""
    LANDING = "landing"
    LOBBY = "lobby"
    TOPIC_REVEAL = "topic_reveal"
    CAPTURING = "capturing"
    WAITING = "waiting"
    JUDGING = "judging"
    RESULTS = "results"
    ERROR = "error"


class SessionClient:
    """One participant's view of a lobby."""

    def __init__(
        self,
        storage: Storage,
        bus: ChangeBus,
        judge: Judge,
        settings: Optional[Settings] = None,
    ):
        self.storage = storage
        self.bus = bus
        self.settings = settings or get_settings()
        self.state_machine = LobbyStateMachine(
            storage, min_players=self.settings.min_players_to_start
        )
        self.coordinator = JudgingCoordinator(storage, judge, self.state_machine)

        self._subscriptions: list[Subscription] = []
        self._listeners: list[asyncio.Task] = []
        self._reset_local_state()

    def _reset_local_state(self) -> None:
        self.game_state = GameState.LANDING
        self.lobby: Optional[Lobby] = None
        self.player_id: Optional[str] = None
        self.is_host = False
        self.players: dict[str, Player] = {}
        self.rankings: list[Ranking] = []
        self.error: Optional[str] = None
        self.readiness: Optional[ReadinessAggregator] = None
        # Last (status, round) reacted to; guards against redelivered events
        self._last_seen: Optional[tuple[str, int]] = None

    @property
    def lobby_id(self) -> Optional[str]:
        return self.lobby.lobby_id if self.lobby else None

    # ========================================================================
    # User actions
    # ========================================================================

    async def create_lobby(self, nickname: str, topic: Optional[str] = None) -> Lobby:
        """Create a lobby and become its host."""
        async with self._user_action("create a lobby"):
            lobby, player = await lobbies.create_lobby(
                self.storage, nickname, topic, self.settings.nickname_max_length
            )
        await self._enter_lobby(lobby, player)
        return lobby

    async def join_lobby(self, code: str, nickname: str) -> Lobby:
        """Join a lobby by room code."""
        async with self._user_action("join the lobby"):
            lobby, player = await lobbies.join_lobby(
                self.storage, code, nickname, self.settings.nickname_max_length
            )
        await self._enter_lobby(lobby, player)
        return lobby

    async def start_game(self) -> Lobby:
        """Host: leave the waiting room."""
        self._require_host("start the game")
        async with self._user_action("start the game"):
            return await self.state_machine.start(self.lobby_id)

    def continue_to_camera(self) -> None:
        """Move from the topic reveal to the camera."""
        if self.game_state != GameState.TOPIC_REVEAL:
            raise InvalidTransition(self.game_state.value, GameState.CAPTURING.value)
        self._set_state(GameState.CAPTURING)

    def cancel_capture(self) -> None:
        """Back out of the camera to the topic reveal."""
        if self.game_state != GameState.CAPTURING:
            raise InvalidTransition(self.game_state.value, GameState.TOPIC_REVEAL.value)
        self._set_state(GameState.TOPIC_REVEAL)

    async def submit_photo(self, image_url: str) -> Player:
        """Record this participant's photo and wait for the others."""
        if self.game_state != GameState.CAPTURING:
            raise InvalidTransition(self.game_state.value, GameState.WAITING.value)

        async with self._user_action("submit your photo"):
            player = await lobbies.submit_photo(self.storage, self.player_id, image_url)
        self.players[player.player_id] = player
        self._set_state(GameState.WAITING)
        return player

    async def next_round(self, topic: Optional[str] = None) -> Lobby:
        """Host: start the next round from the results screen."""
        self._require_host("start the next round")
        async with self._user_action("start the next round"):
            return await self.state_machine.next_round(self.lobby_id, topic)

    async def retry_judging(self) -> None:
        """Host: re-run judging for a lobby stuck in judging."""
        self._require_host("retry judging")
        lobby = await self.storage.get_lobby(self.lobby_id)
        if lobby is None or lobby.status != "judging":
            raise InvalidTransition(lobby.status if lobby else "missing", "results", action="retry judging")

        self.error = None
        self._set_state(GameState.JUDGING)
        await self._dispatch_judging(retry=True)

    async def return_to_start(self) -> None:
        """Discard all local session state and go back to the landing screen."""
        await self.close()
        self._reset_local_state()

    def snapshot(self) -> ClientStateResponse:
        """Local view for the UI layer."""
        return ClientStateResponse(
            game_state=self.game_state.value,
            lobby=self.lobby,
            players=list(self.players.values()),
            rankings=self.rankings,
            error=self.error,
        )

    # ========================================================================
    # Event handling
    # ========================================================================

    async def handle_lobby_change(self, event: ChangeEvent) -> None:
        """React to a lobby record change."""
        if not event.new or self.lobby is None:
            return
        lobby = Lobby.model_validate(event.new)
        if lobby.lobby_id != self.lobby_id:
            return

        key = (lobby.status, lobby.current_round)
        if self._is_stale(key):
            logger.debug("Ignoring stale lobby event %s for %s", key, self.player_id)
            return
        self.lobby = lobby
        if key == self._last_seen:
            return
        self._last_seen = key

        if lobby.status == "topic_reveal" and lobby.current_topic:
            self.rankings = []
            self._set_state(GameState.TOPIC_REVEAL)
        elif lobby.status == "judging":
            self._set_state(GameState.JUDGING)
            if self.is_host:
                await self._dispatch_judging()
        elif lobby.status == "results":
            await self._fetch_results()
            self._set_state(GameState.RESULTS)

    async def handle_player_change(self, event: ChangeEvent) -> None:
        """Keep the local player list current."""
        if event.event_type == "DELETE":
            self.players.pop(event.record.get("player_id"), None)
            return
        if event.new:
            player = Player.model_validate(event.new)
            self.players[player.player_id] = player

    async def sync(self) -> None:
        """Re-read the lobby and apply it as if its change had just arrived."""
        if self.lobby is None:
            return
        lobby = await self.storage.get_lobby(self.lobby_id)
        if lobby is None:
            return

        for p in await self.storage.get_players(lobby.lobby_id):
            self.players[p.player_id] = p
        await self.handle_lobby_change(ChangeEvent(
            table="lobbies",
            event_type="UPDATE",
            new=lobby.model_dump(mode="json", by_alias=False),
        ))

    async def process_pending(self) -> int:
        """
        Handle every event already queued, including ones the handlers
        themselves cause. Returns the number handled.
        """
        handled = 0
        while True:
            ready = [s for s in self._subscriptions if s.pending()]
            if not ready:
                return handled
            for sub in ready:
                event = await sub.get()
                await self._handle(sub, event)
                handled += 1

    def start_listening(self) -> None:
        """Consume events in the background."""
        for sub in self._subscriptions:
            self._listeners.append(asyncio.create_task(self._listen(sub)))

    async def close(self) -> None:
        """Stop polling and listening."""
        self._stop_readiness()
        for sub in self._subscriptions:
            sub.close()
        for task in self._listeners:
            task.cancel()
        if self._listeners:
            await asyncio.gather(*self._listeners, return_exceptions=True)
        self._subscriptions = []
        self._listeners = []

    # ========================================================================
    # Internals
    # ========================================================================

    async def _enter_lobby(self, lobby: Lobby, player: Player) -> None:
        await self.close()
        self._reset_local_state()

        self.lobby = lobby
        self.player_id = player.player_id
        self.is_host = player.is_host
        self._last_seen = (lobby.status, lobby.current_round)

        lobby_filter = field_equals("lobby_id", lobby.lobby_id)
        self._subscriptions = [
            self.bus.subscribe("lobbies", lobby_filter, event_types=["UPDATE"]),
            self.bus.subscribe("players", lobby_filter),
        ]
        for p in await self.storage.get_players(lobby.lobby_id):
            self.players[p.player_id] = p

        self._set_state(GameState.LOBBY)

    def _is_stale(self, key: tuple[str, int]) -> bool:
        if self._last_seen is None:
            return False
        status, round_number = key
        last_status, last_round = self._last_seen
        if round_number != last_round:
            return round_number < last_round
        return STATUS_ORDER[status] < STATUS_ORDER[last_status]

    async def _handle(self, sub: Subscription, event: ChangeEvent) -> None:
        try:
            if sub.table == "lobbies":
                await self.handle_lobby_change(event)
            else:
                await self.handle_player_change(event)
        except Exception:
            logger.exception("Failed to handle %s event for player %s", sub.table, self.player_id)

    async def _listen(self, sub: Subscription) -> None:
        async for event in sub:
            await self._handle(sub, event)

    def _set_state(self, state: GameState) -> None:
        if state == self.game_state:
            return
        logger.debug("Player %s: %s -> %s", self.player_id, self.game_state.value, state.value)
        self.game_state = state

        if state == GameState.WAITING and self.is_host:
            self.readiness = ReadinessAggregator(
                self.storage,
                self.state_machine,
                self.lobby_id,
                interval_seconds=self.settings.readiness_poll_seconds,
            )
            self.readiness.start()
        elif state != GameState.WAITING:
            self._stop_readiness()

    def _stop_readiness(self) -> None:
        if self.readiness is not None:
            self.readiness.stop()
            self.readiness = None

    @asynccontextmanager
    async def _user_action(self, action: str):
        """Rejections pass through; anything unexpected lands on the error screen."""
        try:
            yield
        except SnapJudgeError:
            raise
        except Exception:
            logger.exception("Player %s failed to %s", self.player_id, action)
            self.error = f"Something went wrong while trying to {action}."
            self._set_state(GameState.ERROR)
            raise

    def _require_host(self, action: str) -> None:
        if self.lobby is None:
            raise InvalidTransition(self.game_state.value, "lobby", action=action)
        if not self.is_host:
            raise NotHost(f"Only the host can {action}")

    async def _dispatch_judging(self, retry: bool = False) -> None:
        try:
            if retry:
                await self.coordinator.retry(self.lobby_id)
            else:
                await self.coordinator.run(self.lobby_id)
        except InvalidTransition as e:
            logger.debug("Lobby %s moved on before judging: %s", self.lobby_id, e)
        except NoSubmissions as e:
            logger.warning("Judging aborted: %s", e)
        except JudgingFailed as e:
            logger.error("Judging failed for lobby %s: %s", self.lobby_id, e)
            self.error = "The AI judge could not score this round."
            self._set_state(GameState.ERROR)

    async def _fetch_results(self) -> None:
        round_obj = await self.storage.get_round(self.lobby_id, self.lobby.current_round)
        self.rankings = round_obj.rankings if round_obj else []
