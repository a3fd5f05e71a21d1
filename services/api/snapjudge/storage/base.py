"""
Abstract base class for storage implementations.

All storage backends must implement this interface. Every successful
mutation is announced on the attached ChangeBus (if any) so observers in
other sessions can react to it.
"""
from abc import ABC, abstractmethod
from typing import Any, Optional, TypeVar

from pydantic import BaseModel

from ..bus import ChangeBus
from ..models import ChangeEvent, EventType, Lobby, Player, Round, TableName

M = TypeVar("M", bound=BaseModel)


def apply_patch(model: M, patch: dict[str, Any]) -> M:
    """Return a validated copy of `model` with `patch` applied."""
    data = model.model_dump(by_alias=False)
    data.update(patch)
    return type(model).model_validate(data)


class Storage(ABC):
    """Abstract storage interface for game data."""

    def __init__(self, bus: Optional[ChangeBus] = None, lobby_expiry_hours: int = 2):
        self.bus = bus
        self.lobby_expiry_hours = lobby_expiry_hours

    async def _publish(
        self,
        table: TableName,
        event_type: EventType,
        old: Optional[BaseModel],
        new: Optional[BaseModel],
    ) -> None:
        if self.bus is None:
            return
        await self.bus.publish(ChangeEvent(
            table=table,
            event_type=event_type,
            old=old.model_dump(mode="json", by_alias=False) if old else None,
            new=new.model_dump(mode="json", by_alias=False) if new else None,
        ))

    # ========================================================================
    # Lobby Management
    # ========================================================================

    @abstractmethod
    async def create_lobby(self, lobby: Lobby) -> Lobby:
        """Insert a lobby. Raises DuplicateKeyError if the code is in use."""
        pass

    @abstractmethod
    async def get_lobby(self, lobby_id: str) -> Optional[Lobby]:
        """Get lobby by ID. Returns None if not found."""
        pass

    @abstractmethod
    async def get_lobby_by_code(self, code: str) -> Optional[Lobby]:
        """Get lobby by room code. Returns None if not found."""
        pass

    @abstractmethod
    async def lobby_code_exists(self, code: str) -> bool:
        """Check if an active lobby uses this room code."""
        pass

    @abstractmethod
    async def update_lobby(
        self,
        lobby_id: str,
        patch: dict[str, Any],
        expected_status: Optional[str] = None,
    ) -> Lobby:
        """
        Apply `patch` to a lobby.

        When `expected_status` is given the write is conditional: it only
        happens if the stored status still equals it, otherwise
        ConflictError is raised and nothing changes. Raises LobbyNotFound
        if the lobby does not exist.
        """
        pass

    # ========================================================================
    # Player Management
    # ========================================================================

    @abstractmethod
    async def add_player(self, player: Player) -> Player:
        """Insert a player. Raises LobbyNotFound if the lobby does not exist."""
        pass

    @abstractmethod
    async def get_player(self, player_id: str) -> Optional[Player]:
        """Get a specific player."""
        pass

    @abstractmethod
    async def get_players(self, lobby_id: str) -> list[Player]:
        """Get all players in a lobby, host first then by join time."""
        pass

    async def get_submitted_players(self, lobby_id: str) -> list[Player]:
        """Players of the lobby with a photo on record, in join order."""
        players = await self.get_players(lobby_id)
        return [p for p in players if p.image_url is not None]

    @abstractmethod
    async def update_player(self, player_id: str, patch: dict[str, Any]) -> Player:
        """Apply `patch` to a player. Raises PlayerNotFound."""
        pass

    @abstractmethod
    async def reset_players_for_round(self, lobby_id: str) -> list[Player]:
        """Clear readiness and photo of every player in the lobby."""
        pass

    @abstractmethod
    async def increment_score(self, player_id: str, delta: int) -> Player:
        """Atomically add `delta` to a player's total score. Raises PlayerNotFound."""
        pass

    # ========================================================================
    # Round Management
    # ========================================================================

    @abstractmethod
    async def create_round(self, round_obj: Round) -> Round:
        """
        Insert a judged round.

        (lobby_id, round_number) is unique: a second insert for the same
        pair raises DuplicateKeyError.
        """
        pass

    @abstractmethod
    async def get_round(self, lobby_id: str, round_number: int) -> Optional[Round]:
        """Get the judged round for this lobby and round number."""
        pass

    # ========================================================================
    # Cleanup
    # ========================================================================

    @abstractmethod
    async def cleanup_expired_lobbies(self) -> list[str]:
        """Remove lobbies inactive past the expiry window. Returns their ids."""
        pass
