"""
Socket.IO manager for realtime events.

Relays change bus events to remote clients: each lobby is a Socket.IO room
(`lobby:{lobby_id}`), and every lobby, player and round change is emitted
to it as it happens.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import socketio

from .bus import ChangeBus, Subscription
from .dependencies import get_storage
from .models import ChangeEvent

logger = logging.getLogger(__name__)


# Create Socket.IO server
sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=[],  # Will be set on app startup
    logger=False,
    engineio_logger=False,
)

# Track connected observers: sid -> {lobby_id, player_id}
_connected: dict[str, dict] = {}

EVENT_NAMES = {
    "lobbies": "lobby:changed",
    "players": "player:changed",
    "rounds": "round:created",
}


def configure_cors(origins: list[str]) -> None:
    """Configure CORS for Socket.IO."""
    sio.eio.cors_allowed_origins = origins


def room_for(lobby_id: str) -> str:
    return f"lobby:{lobby_id}"


# ============================================================================
# Connection Events
# ============================================================================


@sio.event
async def connect(sid: str, environ: dict, auth: Optional[dict] = None):
    """Handle client connection."""
    logger.debug("Client connected: %s", sid)


@sio.event
async def disconnect(sid: str):
    """Handle client disconnection."""
    info = _connected.pop(sid, None)
    if info:
        logger.debug("Observer left lobby %s: %s", info["lobby_id"], sid)


# ============================================================================
# Client -> Server Events
# ============================================================================


@sio.on("lobby:join")
async def lobby_join(sid: str, data: dict):
    """
    Client subscribes to a lobby's changes.

    Payload: { "code": "4821", "playerId": "..." }
    Ack: { "ok": true, "state": {...} } or { "ok": false, "error": "..." }
    """
    code = str(data.get("code", "")).strip()
    if not code:
        return {"ok": False, "error": "Room code required"}

    storage = get_storage()
    lobby = await storage.get_lobby_by_code(code)
    if not lobby:
        return {"ok": False, "error": f"Lobby '{code}' not found"}

    await sio.enter_room(sid, room_for(lobby.lobby_id))
    _connected[sid] = {"lobby_id": lobby.lobby_id, "player_id": data.get("playerId")}

    players = await storage.get_players(lobby.lobby_id)
    return {
        "ok": True,
        "state": {
            "lobby": lobby.model_dump(mode="json", by_alias=False),
            "players": [p.model_dump(mode="json", by_alias=False) for p in players],
        },
    }


@sio.event
async def ping(sid: str, data: dict):
    """
    Client ping for time sync.

    Payload: { "t": 123 }
    Ack: { "t": 123, "serverTime": "..." }
    """
    return {
        "t": data.get("t"),
        "serverTime": datetime.now(timezone.utc).isoformat(),
    }


# ============================================================================
# Server -> Client Relay
# ============================================================================


async def relay_event(event: ChangeEvent) -> None:
    """Emit one change event to the room of the lobby it belongs to."""
    record = event.record
    lobby_id = record.get("lobby_id")
    if not lobby_id:
        return
    await sio.emit(
        EVENT_NAMES[event.table],
        {"eventType": event.event_type, "old": event.old, "new": event.new},
        room=room_for(lobby_id),
    )


class BusRelay:
    """Background task forwarding every bus event to Socket.IO rooms."""

    def __init__(self, bus: ChangeBus):
        self.bus = bus
        self._subscriptions: list[Subscription] = []
        self._tasks: list[asyncio.Task] = []

    async def _pump(self, sub: Subscription) -> None:
        async for event in sub:
            try:
                await relay_event(event)
            except Exception:
                logger.exception("Failed to relay %s event", event.table)

    def start(self) -> None:
        """Subscribe to every table and start forwarding."""
        if self._tasks:
            return
        for table in EVENT_NAMES:
            sub = self.bus.subscribe(table)
            self._subscriptions.append(sub)
            self._tasks.append(asyncio.create_task(self._pump(sub)))
        logger.info("Socket.IO relay started")

    def stop(self) -> None:
        """Stop forwarding."""
        for sub in self._subscriptions:
            sub.close()
        for task in self._tasks:
            task.cancel()
        self._subscriptions = []
        self._tasks = []
