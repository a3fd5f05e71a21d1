"""
Lobby membership operations: create, join, and photo submission.

Status transitions live in core.state_machine; this module owns the
records that feed them.
"""
import logging
import random
import string
from datetime import datetime, timezone
from typing import Optional

from ..errors import (
    DuplicateKeyError,
    InvalidNickname,
    InvalidTransition,
    LobbyNotFound,
    LobbyNotJoinable,
    PlayerNotFound,
    SnapJudgeError,
)
from ..models import Lobby, Player
from ..storage import Storage
from .topics import random_topic

logger = logging.getLogger(__name__)

ROOM_CODE_MIN = 1000
ROOM_CODE_MAX = 9999
MAX_CODE_ATTEMPTS = 50


def generate_room_code() -> str:
    """Generate a 4-digit room code, uniform over [1000, 9999]."""
    return str(random.randint(ROOM_CODE_MIN, ROOM_CODE_MAX))


def generate_id(prefix: str = "") -> str:
    """Generate a unique ID with optional prefix."""
    timestamp = int(datetime.now(timezone.utc).timestamp() * 1000)
    random_part = "".join(random.choices(string.ascii_lowercase + string.digits, k=8))
    return f"{prefix}{timestamp}_{random_part}"


def normalize_nickname(nickname: str, max_length: int = 20) -> str:
    """Trim a nickname and check it is 1..max_length characters."""
    trimmed = (nickname or "").strip()
    if not trimmed:
        raise InvalidNickname("Nickname cannot be empty")
    if len(trimmed) > max_length:
        raise InvalidNickname(f"Nickname must be at most {max_length} characters")
    return trimmed


async def create_lobby(
    storage: Storage,
    nickname: str,
    topic: Optional[str] = None,
    nickname_max_length: int = 20,
) -> tuple[Lobby, Player]:
    """
    Create a lobby with its creator as host.

    The room code is retried until the store accepts one that no active
    lobby uses. The host flag is set on the player row and mirrored into
    Lobby.host_id.
    """
    nickname = normalize_nickname(nickname, nickname_max_length)
    topic = (topic or "").strip() or random_topic()
    now = datetime.now(timezone.utc)

    lobby = None
    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_room_code()
        if await storage.lobby_code_exists(code):
            continue
        candidate = Lobby(
            lobby_id=generate_id("lobby_"),
            code=code,
            status="waiting",
            current_topic=topic,
            current_round=1,
            created_at=now,
            updated_at=now,
        )
        try:
            lobby = await storage.create_lobby(candidate)
            break
        except DuplicateKeyError:
            logger.warning("Room code collision on %s, regenerating", code)

    if lobby is None:
        raise SnapJudgeError("No free room code available, try again later")

    host = await storage.add_player(Player(
        player_id=generate_id("player_"),
        lobby_id=lobby.lobby_id,
        nickname=nickname,
        is_host=True,
        joined_at=datetime.now(timezone.utc),
    ))
    lobby = await storage.update_lobby(lobby.lobby_id, {"host_id": host.player_id})

    logger.info("Created lobby %s with code %s (host %s)", lobby.lobby_id, lobby.code, host.nickname)
    return lobby, host


async def join_lobby(
    storage: Storage,
    code: str,
    nickname: str,
    nickname_max_length: int = 20,
) -> tuple[Lobby, Player]:
    """Join a lobby by room code while it is still in the waiting room."""
    nickname = normalize_nickname(nickname, nickname_max_length)

    lobby = await storage.get_lobby_by_code(code.strip())
    if lobby is None:
        raise LobbyNotFound(code)
    if lobby.status != "waiting":
        raise LobbyNotJoinable("Game already in progress")

    player = await storage.add_player(Player(
        player_id=generate_id("player_"),
        lobby_id=lobby.lobby_id,
        nickname=nickname,
        is_host=False,
        joined_at=datetime.now(timezone.utc),
    ))

    logger.info("Player %s joined lobby %s", player.nickname, lobby.code)
    return lobby, player


async def submit_photo(storage: Storage, player_id: str, image_url: str) -> Player:
    """Record a player's photo for the current round and mark them ready."""
    player = await storage.get_player(player_id)
    if player is None:
        raise PlayerNotFound(player_id)

    lobby = await storage.get_lobby(player.lobby_id)
    if lobby is None:
        raise LobbyNotFound(player.lobby_id)
    if lobby.status != "topic_reveal":
        raise InvalidTransition(lobby.status, "judging", action="submit photo")

    return await storage.update_player(player_id, {"image_url": image_url, "is_ready": True})
