"""Contract tests run against every storage backend."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from snapjudge.errors import ConflictError, DuplicateKeyError, LobbyNotFound, PlayerNotFound
from snapjudge.models import Lobby, Player, Ranking, Round
from snapjudge.storage import InMemoryStorage


def _lobby(lobby_id="lobby_1", code="1234", updated_at=None) -> Lobby:
    now = datetime.now(timezone.utc)
    return Lobby(
        lobby_id=lobby_id,
        code=code,
        current_topic="Reflections",
        created_at=now,
        updated_at=updated_at or now,
    )


def _player(player_id, lobby_id="lobby_1", nickname="Ana", is_host=False, offset=0) -> Player:
    return Player(
        player_id=player_id,
        lobby_id=lobby_id,
        nickname=nickname,
        is_host=is_host,
        joined_at=datetime.now(timezone.utc) + timedelta(seconds=offset),
    )


def _round(lobby_id="lobby_1", round_number=1, round_id="round_1") -> Round:
    return Round(
        round_id=round_id,
        lobby_id=lobby_id,
        round_number=round_number,
        topic="Reflections",
        rankings=[
            Ranking(player_id="p1", nickname="Ana", rank=1, score=90, critique="Crisp"),
            Ranking(player_id="p2", nickname="Ben", rank=2, score=70, critique="Blurry"),
        ],
        completed_at=datetime.now(timezone.utc),
    )


@pytest.mark.asyncio
async def test_lobby_lookup(storage):
    await storage.create_lobby(_lobby())

    assert (await storage.get_lobby("lobby_1")).code == "1234"
    assert (await storage.get_lobby_by_code("1234")).lobby_id == "lobby_1"
    assert await storage.lobby_code_exists("1234")
    assert not await storage.lobby_code_exists("9999")
    assert await storage.get_lobby("lobby_missing") is None
    assert await storage.get_lobby_by_code("9999") is None


@pytest.mark.asyncio
async def test_room_codes_are_unique(storage):
    await storage.create_lobby(_lobby())

    with pytest.raises(DuplicateKeyError):
        await storage.create_lobby(_lobby(lobby_id="lobby_2", code="1234"))


@pytest.mark.asyncio
async def test_conditional_update(storage):
    await storage.create_lobby(_lobby())

    updated = await storage.update_lobby("lobby_1", {"status": "topic_reveal"}, expected_status="waiting")
    assert updated.status == "topic_reveal"

    with pytest.raises(ConflictError):
        await storage.update_lobby("lobby_1", {"status": "judging"}, expected_status="waiting")
    assert (await storage.get_lobby("lobby_1")).status == "topic_reveal"


@pytest.mark.asyncio
async def test_update_missing_lobby(storage):
    with pytest.raises(LobbyNotFound):
        await storage.update_lobby("lobby_missing", {"status": "judging"})


@pytest.mark.asyncio
async def test_players_host_first(storage):
    await storage.create_lobby(_lobby())
    await storage.add_player(_player("p2", nickname="Ben", offset=-10))
    await storage.add_player(_player("p1", nickname="Ana", is_host=True))

    players = await storage.get_players("lobby_1")

    assert [p.player_id for p in players] == ["p1", "p2"]


@pytest.mark.asyncio
async def test_add_player_requires_lobby(storage):
    with pytest.raises(LobbyNotFound):
        await storage.add_player(_player("p1", lobby_id="lobby_missing"))


@pytest.mark.asyncio
async def test_update_player_and_reset(storage):
    await storage.create_lobby(_lobby())
    await storage.add_player(_player("p1", is_host=True))
    await storage.add_player(_player("p2", nickname="Ben", offset=1))

    await storage.update_player("p1", {"image_url": "https://img.test/a.jpg", "is_ready": True})
    submitted = await storage.get_submitted_players("lobby_1")
    assert [p.player_id for p in submitted] == ["p1"]

    reset = await storage.reset_players_for_round("lobby_1")
    assert len(reset) == 2
    for p in await storage.get_players("lobby_1"):
        assert p.image_url is None
        assert p.is_ready is False

    with pytest.raises(PlayerNotFound):
        await storage.update_player("p_missing", {"is_ready": True})


@pytest.mark.asyncio
async def test_increment_score(storage):
    await storage.create_lobby(_lobby())
    await storage.add_player(_player("p1"))

    await storage.increment_score("p1", 90)
    player = await storage.increment_score("p1", 70)

    assert player.total_score == 160
    assert (await storage.get_player("p1")).total_score == 160

    with pytest.raises(PlayerNotFound):
        await storage.increment_score("p_missing", 10)


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost(memory_storage):
    await memory_storage.create_lobby(_lobby())
    await memory_storage.add_player(_player("p1"))

    await asyncio.gather(*[memory_storage.increment_score("p1", 5) for _ in range(20)])

    assert (await memory_storage.get_player("p1")).total_score == 100


@pytest.mark.asyncio
async def test_one_round_per_number(storage):
    await storage.create_lobby(_lobby())
    await storage.create_round(_round())

    with pytest.raises(DuplicateKeyError):
        await storage.create_round(_round(round_id="round_other"))

    stored = await storage.get_round("lobby_1", 1)
    assert stored.round_id == "round_1"
    assert [(r.nickname, r.rank, r.score) for r in stored.rankings] == [("Ana", 1, 90), ("Ben", 2, 70)]
    assert await storage.get_round("lobby_1", 2) is None

    await storage.create_round(_round(round_number=2, round_id="round_2"))
    assert (await storage.get_round("lobby_1", 2)).round_id == "round_2"


@pytest.mark.asyncio
async def test_cleanup_expired_lobbies(storage):
    stale = datetime.now(timezone.utc) - timedelta(hours=3)
    await storage.create_lobby(_lobby("lobby_old", "1111", updated_at=stale))
    await storage.create_lobby(_lobby("lobby_new", "2222"))
    await storage.add_player(_player("p_old", lobby_id="lobby_old"))
    await storage.add_player(_player("p_new", lobby_id="lobby_new"))
    await storage.create_round(_round(lobby_id="lobby_old"))

    removed = await storage.cleanup_expired_lobbies()

    assert removed == ["lobby_old"]
    assert await storage.get_lobby("lobby_old") is None
    assert not await storage.lobby_code_exists("1111")
    assert await storage.get_player("p_old") is None
    assert await storage.get_round("lobby_old", 1) is None
    assert await storage.get_lobby("lobby_new") is not None
    assert await storage.get_player("p_new") is not None


@pytest.mark.asyncio
async def test_mutations_are_published(storage, bus):
    sub = bus.subscribe("players")
    await storage.create_lobby(_lobby())
    await storage.add_player(_player("p1"))
    await storage.update_player("p1", {"is_ready": True})

    inserted = await sub.get()
    updated = await sub.get()

    assert inserted.event_type == "INSERT"
    assert inserted.old is None
    assert updated.event_type == "UPDATE"
    assert updated.old["is_ready"] is False
    assert updated.new["is_ready"] is True
    assert updated.record["lobby_id"] == "lobby_1"
    sub.close()


@pytest.mark.asyncio
async def test_storage_without_bus():
    storage = InMemoryStorage()
    lobby = await storage.create_lobby(_lobby())
    assert lobby.lobby_id == "lobby_1"
