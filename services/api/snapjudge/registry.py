"""
Server-side session registry.

Each participant who joins through the API gets a SessionClient that lives
in the server process and listens on the change bus, so the same reactive
code path drives readiness polling and judging for remote players.
"""
import logging
from typing import Optional

from .bus import ChangeBus
from .config import Settings, get_settings
from .errors import PlayerNotFound
from .services.judge import Judge
from .session_client import SessionClient
from .storage import Storage

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Tracks the live SessionClient of every participant: player_id -> client."""

    def __init__(
        self,
        storage: Storage,
        bus: ChangeBus,
        judge: Judge,
        settings: Optional[Settings] = None,
    ):
        self.storage = storage
        self.bus = bus
        self.judge = judge
        self.settings = settings or get_settings()
        self._clients: dict[str, SessionClient] = {}

    def _new_client(self) -> SessionClient:
        return SessionClient(self.storage, self.bus, self.judge, self.settings)

    def _track(self, client: SessionClient) -> SessionClient:
        client.start_listening()
        self._clients[client.player_id] = client
        return client

    async def create_lobby(self, nickname: str, topic: Optional[str] = None) -> SessionClient:
        client = self._new_client()
        await client.create_lobby(nickname, topic)
        return self._track(client)

    async def join_lobby(self, code: str, nickname: str) -> SessionClient:
        client = self._new_client()
        await client.join_lobby(code, nickname)
        return self._track(client)

    def get(self, player_id: str) -> SessionClient:
        client = self._clients.get(player_id)
        if client is None:
            raise PlayerNotFound(player_id)
        return client

    def __len__(self) -> int:
        return len(self._clients)

    async def close_lobbies(self, lobby_ids: list[str]) -> int:
        """Close the sessions of removed lobbies. Returns how many were closed."""
        doomed = set(lobby_ids)
        closing = [
            (player_id, client) for player_id, client in self._clients.items()
            if client.lobby_id in doomed
        ]
        for player_id, client in closing:
            await client.close()
            self._clients.pop(player_id, None)
        return len(closing)

    async def close_all(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
