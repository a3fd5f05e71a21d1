"""
Pydantic models for the game records, API request/response schemas and
change events.

All models use camelCase for JSON serialization to match the API contract.
"""
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


LobbyStatus = Literal["waiting", "topic_reveal", "judging", "results"]
TableName = Literal["lobbies", "players", "rounds"]
EventType = Literal["INSERT", "UPDATE", "DELETE"]


class CamelCaseModel(BaseModel):
    """
    Base model that converts snake_case to camelCase for JSON serialization.

    Accepts both spellings on input so request bodies can use either.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        serialize_by_alias=True,
    )


# ============================================================================
# Core Domain Models
# ============================================================================

class Lobby(CamelCaseModel):
    """One game session, addressed by humans through its room code."""
    lobby_id: str
    code: str = Field(pattern=r"^\d{4}$")
    status: LobbyStatus = "waiting"
    current_topic: Optional[str] = None
    current_round: int = Field(default=1, ge=1)
    host_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class Player(CamelCaseModel):
    """Player in a lobby."""
    player_id: str
    lobby_id: str
    nickname: str = Field(min_length=1, max_length=20)
    image_url: Optional[str] = None
    is_ready: bool = False
    is_host: bool = False
    total_score: int = Field(default=0, ge=0)
    joined_at: datetime


class Submission(CamelCaseModel):
    """One photo sent to the AI judge."""
    player_id: str
    nickname: str
    image_url: str


class Ranking(CamelCaseModel):
    """The judge's verdict for one submission."""
    player_id: str
    nickname: str
    rank: int = Field(ge=1)
    score: int = Field(ge=0, le=100)
    critique: str = ""
    image_url: str = ""


class Round(CamelCaseModel):
    """The recorded outcome of one judged round."""
    round_id: str
    lobby_id: str
    round_number: int = Field(ge=1)
    topic: str
    rankings: list[Ranking] = Field(default_factory=list)
    completed_at: datetime


class ChangeEvent(CamelCaseModel):
    """A record change delivered by the notification bus."""
    table: TableName
    event_type: EventType
    old: Optional[dict[str, Any]] = None
    new: Optional[dict[str, Any]] = None

    @property
    def record(self) -> dict[str, Any]:
        """The most recent image of the changed record."""
        return self.new if self.new is not None else (self.old or {})


# ============================================================================
# API Request Models
# ============================================================================

class CreateLobbyRequest(CamelCaseModel):
    """Request to create a new lobby. The creator becomes the host."""
    nickname: str = Field(max_length=100)
    topic: Optional[str] = Field(default=None, max_length=100)


class JoinLobbyRequest(CamelCaseModel):
    """Request to join a lobby by room code."""
    nickname: str = Field(max_length=100)


class HostActionRequest(CamelCaseModel):
    """Host-only action; identifies the acting player."""
    player_id: str


class SubmitPhotoRequest(CamelCaseModel):
    """A player's photo for the current round."""
    image_url: str = Field(min_length=1, max_length=2048)


# ============================================================================
# API Response Models
# ============================================================================

class LobbyMembershipResponse(CamelCaseModel):
    """Response when creating or joining a lobby."""
    lobby: Lobby
    player: Player


class LobbyStateResponse(CamelCaseModel):
    """Shared lobby state for initial load or reconnect."""
    lobby: Lobby
    players: list[Player]


class ClientStateResponse(CamelCaseModel):
    """One participant's local view of the game."""
    game_state: str
    lobby: Optional[Lobby] = None
    players: list[Player] = Field(default_factory=list)
    rankings: list[Ranking] = Field(default_factory=list)
    error: Optional[str] = None


class RoundResponse(CamelCaseModel):
    """A judged round."""
    round: Round


class HealthResponse(CamelCaseModel):
    """Health check response."""
    status: str = "ok"
    version: str = "1.0.0"
    storage: str = "memory"
    judge: str = "fake"


class ErrorResponse(CamelCaseModel):
    """Standard error response."""
    code: Literal["NOT_FOUND", "UNAUTHORIZED", "VALIDATION", "CONFLICT", "SERVER_ERROR"]
    message: str
