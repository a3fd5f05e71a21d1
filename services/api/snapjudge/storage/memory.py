"""
In-memory storage implementation for development and testing.

Data is lost when the server restarts. Each method runs without yielding
to the event loop between its read and its write, so conditional updates
and score increments are atomic with respect to other coroutines.
"""
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from ..bus import ChangeBus
from ..errors import ConflictError, DuplicateKeyError, LobbyNotFound, PlayerNotFound
from ..models import Lobby, Player, Round
from .base import Storage, apply_patch


class InMemoryStorage(Storage):
    """In-memory storage using Python dictionaries."""

    def __init__(self, bus: Optional[ChangeBus] = None, lobby_expiry_hours: int = 2):
        super().__init__(bus=bus, lobby_expiry_hours=lobby_expiry_hours)

        # Primary storage
        self._lobbies: dict[str, Lobby] = {}  # lobby_id -> Lobby
        self._players: dict[str, Player] = {}  # player_id -> Player
        self._rounds: dict[tuple[str, int], Round] = {}  # (lobby_id, round_number) -> Round

        # Indexes for faster lookups
        self._code_to_lobby: dict[str, str] = {}  # code -> lobby_id
        self._lobby_players: dict[str, list[str]] = defaultdict(list)  # lobby_id -> [player_id]

    # ========================================================================
    # Lobby Management
    # ========================================================================

    async def create_lobby(self, lobby: Lobby) -> Lobby:
        if lobby.code in self._code_to_lobby:
            raise DuplicateKeyError(f"Room code {lobby.code} is already in use")
        if lobby.lobby_id in self._lobbies:
            raise DuplicateKeyError(f"Lobby {lobby.lobby_id} already exists")

        self._lobbies[lobby.lobby_id] = lobby
        self._code_to_lobby[lobby.code] = lobby.lobby_id
        await self._publish("lobbies", "INSERT", None, lobby)
        return lobby

    async def get_lobby(self, lobby_id: str) -> Optional[Lobby]:
        return self._lobbies.get(lobby_id)

    async def get_lobby_by_code(self, code: str) -> Optional[Lobby]:
        lobby_id = self._code_to_lobby.get(code)
        if lobby_id:
            return self._lobbies.get(lobby_id)
        return None

    async def lobby_code_exists(self, code: str) -> bool:
        return code in self._code_to_lobby

    async def update_lobby(
        self,
        lobby_id: str,
        patch: dict[str, Any],
        expected_status: Optional[str] = None,
    ) -> Lobby:
        lobby = self._lobbies.get(lobby_id)
        if lobby is None:
            raise LobbyNotFound(lobby_id)

        if expected_status is not None and lobby.status != expected_status:
            raise ConflictError(
                f"Lobby {lobby_id} status is '{lobby.status}', expected '{expected_status}'"
            )

        updated = apply_patch(lobby, {**patch, "updated_at": datetime.now(timezone.utc)})
        self._lobbies[lobby_id] = updated
        await self._publish("lobbies", "UPDATE", lobby, updated)
        return updated

    # ========================================================================
    # Player Management
    # ========================================================================

    async def add_player(self, player: Player) -> Player:
        if player.lobby_id not in self._lobbies:
            raise LobbyNotFound(player.lobby_id)
        if player.player_id in self._players:
            raise DuplicateKeyError(f"Player {player.player_id} already exists")

        self._players[player.player_id] = player
        self._lobby_players[player.lobby_id].append(player.player_id)
        await self._publish("players", "INSERT", None, player)
        return player

    async def get_player(self, player_id: str) -> Optional[Player]:
        return self._players.get(player_id)

    async def get_players(self, lobby_id: str) -> list[Player]:
        players = [self._players[pid] for pid in self._lobby_players.get(lobby_id, [])]
        # Sort: host first, then by join time
        return sorted(players, key=lambda p: (not p.is_host, p.joined_at))

    async def update_player(self, player_id: str, patch: dict[str, Any]) -> Player:
        player = self._players.get(player_id)
        if player is None:
            raise PlayerNotFound(player_id)

        updated = apply_patch(player, patch)
        self._players[player_id] = updated
        await self._publish("players", "UPDATE", player, updated)
        return updated

    async def reset_players_for_round(self, lobby_id: str) -> list[Player]:
        changes = []
        for player_id in self._lobby_players.get(lobby_id, []):
            player = self._players[player_id]
            updated = apply_patch(player, {"is_ready": False, "image_url": None})
            self._players[player_id] = updated
            changes.append((player, updated))

        for old, new in changes:
            await self._publish("players", "UPDATE", old, new)
        return [new for _, new in changes]

    async def increment_score(self, player_id: str, delta: int) -> Player:
        player = self._players.get(player_id)
        if player is None:
            raise PlayerNotFound(player_id)

        updated = apply_patch(player, {"total_score": player.total_score + delta})
        self._players[player_id] = updated
        await self._publish("players", "UPDATE", player, updated)
        return updated

    # ========================================================================
    # Round Management
    # ========================================================================

    async def create_round(self, round_obj: Round) -> Round:
        if round_obj.lobby_id not in self._lobbies:
            raise LobbyNotFound(round_obj.lobby_id)

        key = (round_obj.lobby_id, round_obj.round_number)
        if key in self._rounds:
            raise DuplicateKeyError(
                f"Round {round_obj.round_number} of lobby {round_obj.lobby_id} already recorded"
            )

        self._rounds[key] = round_obj
        await self._publish("rounds", "INSERT", None, round_obj)
        return round_obj

    async def get_round(self, lobby_id: str, round_number: int) -> Optional[Round]:
        return self._rounds.get((lobby_id, round_number))

    # ========================================================================
    # Cleanup
    # ========================================================================

    async def cleanup_expired_lobbies(self) -> list[str]:
        cutoff = datetime.now(timezone.utc) - timedelta(hours=self.lobby_expiry_hours)
        expired_ids = [
            lobby_id for lobby_id, lobby in self._lobbies.items()
            if lobby.updated_at < cutoff
        ]

        for lobby_id in expired_ids:
            lobby = self._lobbies.pop(lobby_id)
            self._code_to_lobby.pop(lobby.code, None)
            for player_id in self._lobby_players.pop(lobby_id, []):
                self._players.pop(player_id, None)
            for key in [k for k in self._rounds if k[0] == lobby_id]:
                self._rounds.pop(key, None)

        return expired_ids
