"""Tests for the Socket.IO relay and background cleanup."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from snapjudge import dependencies, socket_manager
from snapjudge.bus import field_equals
from snapjudge.models import ChangeEvent
from snapjudge.tasks import CleanupTask

from tests.conftest import StubJudge, wait_until


@pytest.fixture
def emitted(monkeypatch):
    calls = []

    async def fake_emit(event, data, room=None):
        calls.append((event, data, room))

    monkeypatch.setattr(socket_manager.sio, "emit", fake_emit)
    return calls


@pytest.fixture
async def configured(bus, memory_storage):
    dependencies.configure(bus=bus, storage=memory_storage, judge=StubJudge({}))
    registry = dependencies.get_registry()
    yield registry
    await registry.close_all()
    dependencies.configure()


@pytest.mark.asyncio
async def test_relay_emits_to_lobby_room(bus, emitted):
    relay = socket_manager.BusRelay(bus)
    relay.start()

    await bus.publish(ChangeEvent(
        table="lobbies",
        event_type="UPDATE",
        old={"lobby_id": "lobby_1", "status": "waiting"},
        new={"lobby_id": "lobby_1", "status": "topic_reveal"},
    ))

    async def delivered():
        return len(emitted) == 1

    assert await wait_until(delivered)
    event, data, room = emitted[0]
    assert event == "lobby:changed"
    assert room == "lobby:lobby_1"
    assert data["new"]["status"] == "topic_reveal"
    relay.stop()


@pytest.mark.asyncio
async def test_relay_maps_tables_to_events(emitted):
    await socket_manager.relay_event(ChangeEvent(
        table="rounds", event_type="INSERT", new={"lobby_id": "l9", "round_number": 1},
    ))
    await socket_manager.relay_event(ChangeEvent(
        table="players", event_type="DELETE", old={"lobby_id": "l9", "player_id": "p1"},
    ))

    assert [(e, r) for e, _, r in emitted] == [("round:created", "lobby:l9"), ("player:changed", "lobby:l9")]


@pytest.mark.asyncio
async def test_lobby_join_returns_state(configured, monkeypatch):
    client = await configured.create_lobby("Ana", "Something Blue")
    rooms = []

    async def fake_enter_room(sid, room):
        rooms.append((sid, room))

    monkeypatch.setattr(socket_manager.sio, "enter_room", fake_enter_room)

    ack = await socket_manager.lobby_join("sid-1", {"code": client.lobby.code})
    missing = await socket_manager.lobby_join("sid-2", {"code": "0000"})

    assert ack["ok"] is True
    assert ack["state"]["lobby"]["code"] == client.lobby.code
    assert ack["state"]["players"][0]["nickname"] == "Ana"
    assert rooms == [("sid-1", f"lobby:{client.lobby_id}")]
    assert missing["ok"] is False


@pytest.mark.asyncio
async def test_cleanup_closes_expired_sessions(configured, memory_storage, bus):
    stale = await configured.create_lobby("Ana")
    fresh = await configured.create_lobby("Cy")
    lobby = memory_storage._lobbies[stale.lobby_id]
    memory_storage._lobbies[stale.lobby_id] = lobby.model_copy(
        update={"updated_at": datetime.now(timezone.utc) - timedelta(hours=5)}
    )

    removed = await CleanupTask().run_once()

    assert removed == 1
    assert len(configured) == 1
    assert configured.get(fresh.player_id) is fresh
    assert await memory_storage.get_lobby(stale.lobby_id) is None


@pytest.mark.asyncio
async def test_cleanup_task_start_stop(configured):
    task = CleanupTask(interval_seconds=60)
    task.start()
    await asyncio.sleep(0)
    task.stop()

    assert task._task is None


def test_field_equals():
    match = field_equals("lobby_id", "l1")

    assert match({"lobby_id": "l1"})
    assert not match({"lobby_id": "l2"})
    assert not match({})
