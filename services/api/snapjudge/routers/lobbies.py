"""
Lobby, player, and round API endpoints.

Every participant action goes through that participant's server-side
SessionClient; domain errors are turned into HTTP responses by the
handlers registered in main.
"""
from typing import Annotated

from fastapi import APIRouter, Depends, status

from ..dependencies import get_registry, get_storage
from ..errors import LobbyNotFound, PlayerNotFound, RoundNotFound
from ..models import (
    ClientStateResponse,
    CreateLobbyRequest,
    ErrorResponse,
    HostActionRequest,
    JoinLobbyRequest,
    LobbyMembershipResponse,
    LobbyStateResponse,
    RoundResponse,
    SubmitPhotoRequest,
)
from ..registry import SessionRegistry
from ..session_client import GameState, SessionClient
from ..storage import Storage

router = APIRouter(prefix="/lobbies", tags=["lobbies"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def _client_in_lobby(registry: SessionRegistry, code: str, player_id: str) -> SessionClient:
    """Find a participant's session and check it belongs to this room code."""
    client = registry.get(player_id)
    if client.lobby is None or client.lobby.code != code:
        raise PlayerNotFound(player_id)
    return client


def _membership(client: SessionClient) -> LobbyMembershipResponse:
    return LobbyMembershipResponse(lobby=client.lobby, player=client.players[client.player_id])


# ============================================================================
# Lobby Endpoints
# ============================================================================


@router.post(
    "",
    response_model=LobbyMembershipResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_lobby(
    request: CreateLobbyRequest,
    registry: Annotated[SessionRegistry, Depends(get_registry)],
) -> LobbyMembershipResponse:
    """Create a new lobby. The creator becomes the host."""
    client = await registry.create_lobby(request.nickname, request.topic)
    return _membership(client)


@router.get(
    "/{code}",
    response_model=LobbyStateResponse,
    responses=ERROR_RESPONSES,
)
async def get_lobby_state(
    code: str,
    storage: Annotated[Storage, Depends(get_storage)],
) -> LobbyStateResponse:
    """Get the shared state of a lobby."""
    lobby = await storage.get_lobby_by_code(code)
    if lobby is None:
        raise LobbyNotFound(code)

    players = await storage.get_players(lobby.lobby_id)
    return LobbyStateResponse(lobby=lobby, players=players)


@router.post(
    "/{code}/start",
    response_model=LobbyStateResponse,
    responses=ERROR_RESPONSES,
)
async def start_game(
    code: str,
    request: HostActionRequest,
    registry: Annotated[SessionRegistry, Depends(get_registry)],
) -> LobbyStateResponse:
    """Leave the waiting room (host only, at least two players)."""
    client = _client_in_lobby(registry, code, request.player_id)
    lobby = await client.start_game()
    players = await client.storage.get_players(lobby.lobby_id)
    return LobbyStateResponse(lobby=lobby, players=players)


@router.post(
    "/{code}/next-round",
    response_model=LobbyStateResponse,
    responses=ERROR_RESPONSES,
)
async def next_round(
    code: str,
    request: HostActionRequest,
    registry: Annotated[SessionRegistry, Depends(get_registry)],
) -> LobbyStateResponse:
    """Start the next round from the results screen (host only)."""
    client = _client_in_lobby(registry, code, request.player_id)
    lobby = await client.next_round()
    players = await client.storage.get_players(lobby.lobby_id)
    return LobbyStateResponse(lobby=lobby, players=players)


@router.post(
    "/{code}/judging/retry",
    response_model=ClientStateResponse,
    responses=ERROR_RESPONSES,
)
async def retry_judging(
    code: str,
    request: HostActionRequest,
    registry: Annotated[SessionRegistry, Depends(get_registry)],
) -> ClientStateResponse:
    """Re-run judging for a lobby stuck in judging (host only)."""
    client = _client_in_lobby(registry, code, request.player_id)
    await client.retry_judging()
    return client.snapshot()


# ============================================================================
# Player Endpoints
# ============================================================================


@router.post(
    "/{code}/players",
    response_model=LobbyMembershipResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def join_lobby(
    code: str,
    request: JoinLobbyRequest,
    registry: Annotated[SessionRegistry, Depends(get_registry)],
) -> LobbyMembershipResponse:
    """Join an existing lobby as a player."""
    client = await registry.join_lobby(code, request.nickname)
    return _membership(client)


@router.post(
    "/{code}/players/{player_id}/photo",
    response_model=ClientStateResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def submit_photo(
    code: str,
    player_id: str,
    request: SubmitPhotoRequest,
    registry: Annotated[SessionRegistry, Depends(get_registry)],
) -> ClientStateResponse:
    """Submit this round's photo."""
    client = _client_in_lobby(registry, code, player_id)
    await client.sync()
    if client.game_state == GameState.TOPIC_REVEAL:
        client.continue_to_camera()
    await client.submit_photo(request.image_url)
    return client.snapshot()


@router.get(
    "/{code}/players/{player_id}/state",
    response_model=ClientStateResponse,
    responses=ERROR_RESPONSES,
)
async def get_player_state(
    code: str,
    player_id: str,
    registry: Annotated[SessionRegistry, Depends(get_registry)],
) -> ClientStateResponse:
    """One participant's local view: screen state, rankings, error."""
    client = _client_in_lobby(registry, code, player_id)
    if client.game_state != GameState.ERROR:
        await client.sync()
    return client.snapshot()


# ============================================================================
# Round Endpoints
# ============================================================================


@router.get(
    "/{code}/rounds/{round_number}",
    response_model=RoundResponse,
    responses=ERROR_RESPONSES,
)
async def get_round(
    code: str,
    round_number: int,
    storage: Annotated[Storage, Depends(get_storage)],
) -> RoundResponse:
    """Get a judged round."""
    lobby = await storage.get_lobby_by_code(code)
    if lobby is None:
        raise LobbyNotFound(code)

    round_obj = await storage.get_round(lobby.lobby_id, round_number)
    if round_obj is None:
        raise RoundNotFound(code, round_number)
    return RoundResponse(round=round_obj)
