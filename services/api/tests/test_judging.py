"""Tests for the judging workflow."""
import asyncio
from datetime import datetime, timezone

import pytest

from snapjudge.core.judging import JudgingCoordinator
from snapjudge.core.state_machine import LobbyStateMachine
from snapjudge.errors import InvalidTransition, JudgingFailed, NoSubmissions
from snapjudge.models import Round

from tests.conftest import FailingJudge, StubJudge
from tests.helpers import lobby_with_players, submit_all


@pytest.fixture
def machine(memory_storage):
    return LobbyStateMachine(memory_storage)


async def _judging_lobby(storage, machine, *nicknames):
    lobby, players = await lobby_with_players(storage, *nicknames)
    await machine.start(lobby.lobby_id)
    await submit_all(storage, players)
    await machine.begin_judging(lobby.lobby_id)
    return lobby, players


async def _totals(storage, lobby_id):
    return {p.nickname: p.total_score for p in await storage.get_players(lobby_id)}


@pytest.mark.asyncio
async def test_round_is_recorded_and_scored(memory_storage, machine, stub_judge):
    lobby, _ = await _judging_lobby(memory_storage, machine, "Ana", "Ben")
    coordinator = JudgingCoordinator(memory_storage, stub_judge, machine)

    round_obj = await coordinator.run(lobby.lobby_id)

    assert round_obj.round_number == 1
    assert round_obj.topic == "Something Blue"
    assert [(r.nickname, r.rank, r.score) for r in round_obj.rankings] == [
        ("Ana", 1, 90),
        ("Ben", 2, 70),
    ]
    assert round_obj.rankings[0].image_url == "https://img.test/Ana.jpg"
    assert await _totals(memory_storage, lobby.lobby_id) == {"Ana": 90, "Ben": 70}
    assert (await memory_storage.get_lobby(lobby.lobby_id)).status == "results"
    assert await memory_storage.get_round(lobby.lobby_id, 1) == round_obj


@pytest.mark.asyncio
async def test_scores_accumulate_across_rounds(memory_storage, machine, stub_judge):
    lobby, players = await _judging_lobby(memory_storage, machine, "Ana", "Ben")
    await JudgingCoordinator(memory_storage, stub_judge, machine).run(lobby.lobby_id)

    await machine.next_round(lobby.lobby_id)
    await submit_all(memory_storage, players)
    await machine.begin_judging(lobby.lobby_id)
    second_judge = StubJudge({"Ana": 50, "Ben": 80})
    round_obj = await JudgingCoordinator(memory_storage, second_judge, machine).run(lobby.lobby_id)

    assert round_obj.round_number == 2
    assert round_obj.rankings[0].nickname == "Ben"
    assert await _totals(memory_storage, lobby.lobby_id) == {"Ana": 140, "Ben": 150}


@pytest.mark.asyncio
async def test_duplicate_sessions_judge_once(memory_storage, machine, stub_judge):
    lobby, _ = await _judging_lobby(memory_storage, machine, "Ana", "Ben")
    first = JudgingCoordinator(memory_storage, stub_judge, machine)
    second = JudgingCoordinator(memory_storage, stub_judge, machine)

    results = await asyncio.gather(first.run(lobby.lobby_id), second.run(lobby.lobby_id))

    assert len([r for r in results if r is not None]) == 1
    assert await _totals(memory_storage, lobby.lobby_id) == {"Ana": 90, "Ben": 70}
    assert (await memory_storage.get_lobby(lobby.lobby_id)).status == "results"


@pytest.mark.asyncio
async def test_failed_judge_leaves_lobby_judging(memory_storage, machine):
    lobby, _ = await _judging_lobby(memory_storage, machine, "Ana", "Ben")

    with pytest.raises(JudgingFailed):
        await JudgingCoordinator(memory_storage, FailingJudge(), machine).run(lobby.lobby_id)

    assert (await memory_storage.get_lobby(lobby.lobby_id)).status == "judging"
    assert await memory_storage.get_round(lobby.lobby_id, 1) is None
    assert await _totals(memory_storage, lobby.lobby_id) == {"Ana": 0, "Ben": 0}


@pytest.mark.asyncio
async def test_retry_after_failure(memory_storage, machine, stub_judge):
    lobby, _ = await _judging_lobby(memory_storage, machine, "Ana", "Ben")
    with pytest.raises(JudgingFailed):
        await JudgingCoordinator(memory_storage, FailingJudge(), machine).run(lobby.lobby_id)

    round_obj = await JudgingCoordinator(memory_storage, stub_judge, machine).retry(lobby.lobby_id)

    assert round_obj is not None
    assert (await memory_storage.get_lobby(lobby.lobby_id)).status == "results"


@pytest.mark.asyncio
async def test_no_submissions(memory_storage, machine, stub_judge):
    lobby, _ = await lobby_with_players(memory_storage, "Ana", "Ben")
    await machine.start(lobby.lobby_id)
    await machine.begin_judging(lobby.lobby_id)

    with pytest.raises(NoSubmissions):
        await JudgingCoordinator(memory_storage, stub_judge, machine).run(lobby.lobby_id)

    assert stub_judge.calls == []
    assert (await memory_storage.get_lobby(lobby.lobby_id)).status == "judging"


@pytest.mark.asyncio
async def test_only_submitted_photos_are_judged(memory_storage, machine):
    lobby, players = await lobby_with_players(memory_storage, "Ana", "Ben", "Cy")
    await machine.start(lobby.lobby_id)
    await submit_all(memory_storage, players[:2])
    await machine.begin_judging(lobby.lobby_id)
    judge = StubJudge({"Ana": 10, "Ben": 20, "Cy": 99})

    round_obj = await JudgingCoordinator(memory_storage, judge, machine).run(lobby.lobby_id)

    assert {r.nickname for r in round_obj.rankings} == {"Ana", "Ben"}
    assert (await _totals(memory_storage, lobby.lobby_id))["Cy"] == 0


@pytest.mark.asyncio
async def test_requires_judging_status(memory_storage, machine, stub_judge):
    lobby, _ = await lobby_with_players(memory_storage, "Ana", "Ben")
    await machine.start(lobby.lobby_id)

    with pytest.raises(InvalidTransition):
        await JudgingCoordinator(memory_storage, stub_judge, machine).run(lobby.lobby_id)


@pytest.mark.asyncio
async def test_already_recorded_round_just_publishes_results(memory_storage, machine, stub_judge):
    lobby, _ = await _judging_lobby(memory_storage, machine, "Ana", "Ben")
    await memory_storage.create_round(Round(
        round_id="round_existing",
        lobby_id=lobby.lobby_id,
        round_number=1,
        topic="Something Blue",
        completed_at=datetime.now(timezone.utc),
    ))

    result = await JudgingCoordinator(memory_storage, stub_judge, machine).run(lobby.lobby_id)

    assert result is None
    assert stub_judge.calls == []
    assert (await memory_storage.get_lobby(lobby.lobby_id)).status == "results"


@pytest.mark.asyncio
async def test_late_run_after_results_is_a_noop(memory_storage, machine, stub_judge):
    lobby, _ = await _judging_lobby(memory_storage, machine, "Ana", "Ben")
    coordinator = JudgingCoordinator(memory_storage, stub_judge, machine)
    await coordinator.run(lobby.lobby_id)

    assert await coordinator.run(lobby.lobby_id) is None
    assert len(stub_judge.calls) == 1
    assert await _totals(memory_storage, lobby.lobby_id) == {"Ana": 90, "Ben": 70}
