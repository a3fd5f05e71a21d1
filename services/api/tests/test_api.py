"""Tests for the REST API."""
import asyncio

import pytest
from httpx import ASGITransport, AsyncClient

from snapjudge import dependencies
from snapjudge.main import app

from tests.conftest import StubJudge


API_BASE_URL = "http://test/api"


@pytest.fixture
async def client(bus, memory_storage):
    dependencies.configure(bus=bus, storage=memory_storage, judge=StubJudge({"Ana": 90, "Ben": 70}))

    async with AsyncClient(transport=ASGITransport(app=app), base_url=API_BASE_URL) as client:
        yield client

    await dependencies.get_registry().close_all()
    dependencies.configure()


async def _create(client, nickname="Ana", **extra):
    response = await client.post("/lobbies", json={"nickname": nickname, **extra})
    assert response.status_code == 201
    return response.json()


async def _join(client, code, nickname="Ben"):
    response = await client.post(f"/lobbies/{code}/players", json={"nickname": nickname})
    assert response.status_code == 201
    return response.json()


async def _wait_for_status(client, code, status, timeout=3.0):
    for _ in range(int(timeout / 0.02)):
        response = await client.get(f"/lobbies/{code}")
        if response.json()["lobby"]["status"] == status:
            return True
        await asyncio.sleep(0.02)
    return False


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["storage"] == "memory"


@pytest.mark.asyncio
async def test_create_lobby(client):
    data = await _create(client, topic="Something Blue")

    assert len(data["lobby"]["code"]) == 4
    assert data["lobby"]["status"] == "waiting"
    assert data["lobby"]["currentTopic"] == "Something Blue"
    assert data["player"]["isHost"] is True
    assert data["lobby"]["hostId"] == data["player"]["playerId"]


@pytest.mark.asyncio
async def test_create_lobby_rejects_blank_nickname(client):
    response = await client.post("/lobbies", json={"nickname": "   "})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "VALIDATION"


@pytest.mark.asyncio
async def test_unknown_lobby(client):
    response = await client.get("/lobbies/0000")

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_join_and_get_state(client):
    created = await _create(client)
    code = created["lobby"]["code"]
    await _join(client, code)

    response = await client.get(f"/lobbies/{code}")

    assert response.status_code == 200
    assert [p["nickname"] for p in response.json()["players"]] == ["Ana", "Ben"]


@pytest.mark.asyncio
async def test_start_rules(client):
    created = await _create(client)
    code = created["lobby"]["code"]
    host_id = created["player"]["playerId"]

    response = await client.post(f"/lobbies/{code}/start", json={"playerId": host_id})
    assert response.status_code == 400

    guest = await _join(client, code)
    response = await client.post(f"/lobbies/{code}/start", json={"playerId": guest["player"]["playerId"]})
    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "UNAUTHORIZED"

    response = await client.post(f"/lobbies/{code}/start", json={"playerId": host_id})
    assert response.status_code == 200
    assert response.json()["lobby"]["status"] == "topic_reveal"

    response = await client.post(f"/lobbies/{code}/players", json={"nickname": "Late"})
    assert response.status_code == 400

    response = await client.post(f"/lobbies/{code}/start", json={"playerId": host_id})
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_full_game(client):
    created = await _create(client, topic="Something Blue")
    code = created["lobby"]["code"]
    host_id = created["player"]["playerId"]
    guest_id = (await _join(client, code))["player"]["playerId"]

    await client.post(f"/lobbies/{code}/start", json={"playerId": host_id})

    for player_id, name in ((host_id, "ana"), (guest_id, "ben")):
        response = await client.post(
            f"/lobbies/{code}/players/{player_id}/photo",
            json={"imageUrl": f"https://img.test/{name}.jpg"},
        )
        assert response.status_code == 201
        assert response.json()["gameState"] == "waiting"

    assert await _wait_for_status(client, code, "results")

    response = await client.get(f"/lobbies/{code}/rounds/1")
    assert response.status_code == 200
    rankings = response.json()["round"]["rankings"]
    assert [(r["nickname"], r["rank"], r["score"]) for r in rankings] == [("Ana", 1, 90), ("Ben", 2, 70)]

    response = await client.get(f"/lobbies/{code}/players/{guest_id}/state")
    data = response.json()
    assert data["gameState"] == "results"
    assert data["rankings"][0]["nickname"] == "Ana"

    response = await client.get(f"/lobbies/{code}")
    totals = {p["nickname"]: p["totalScore"] for p in response.json()["players"]}
    assert totals == {"Ana": 90, "Ben": 70}

    response = await client.post(f"/lobbies/{code}/next-round", json={"playerId": host_id})
    assert response.status_code == 200
    lobby = response.json()["lobby"]
    assert lobby["status"] == "topic_reveal"
    assert lobby["currentRound"] == 2

    response = await client.get(f"/lobbies/{code}/rounds/2")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_photo_before_start_is_rejected(client):
    created = await _create(client)
    code = created["lobby"]["code"]

    response = await client.post(
        f"/lobbies/{code}/players/{created['player']['playerId']}/photo",
        json={"imageUrl": "https://img.test/a.jpg"},
    )

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_player_from_another_lobby(client):
    first = await _create(client)
    second = await _create(client, nickname="Cy")

    response = await client.get(
        f"/lobbies/{first['lobby']['code']}/players/{second['player']['playerId']}/state"
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_retry_requires_judging(client):
    created = await _create(client)
    code = created["lobby"]["code"]

    response = await client.post(
        f"/lobbies/{code}/judging/retry", json={"playerId": created["player"]["playerId"]}
    )

    assert response.status_code == 409
