"""Pytest configuration and fixtures."""
import asyncio
import os

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Fast polling and the in-memory backend for every test
os.environ["STORAGE_TYPE"] = "memory"
os.environ["JUDGE_PROVIDER"] = "fake"
os.environ["READINESS_POLL_SECONDS"] = "0.01"

from snapjudge.bus import ChangeBus
from snapjudge.config import Settings, get_settings
from snapjudge.db.connection import create_engine_for_url, init_db
from snapjudge.errors import JudgingFailed
from snapjudge.models import Submission
from snapjudge.services.judge import JudgedEntry, Judge
from snapjudge.storage import InMemoryStorage
from snapjudge.storage.sql import SQLStorage

get_settings.cache_clear()


class StubJudge(Judge):
    """Scores each submission by nickname; records every call."""

    def __init__(self, scores: dict[str, int], timeout_seconds: float = 5.0):
        super().__init__(timeout_seconds=timeout_seconds)
        self.scores = scores
        self.calls: list[tuple[str, list[Submission]]] = []

    async def _judge(self, topic, submissions):
        self.calls.append((topic, submissions))
        ordered = sorted(submissions, key=lambda s: -self.scores.get(s.nickname, 0))
        rank_of = {s.player_id: i for i, s in enumerate(ordered, start=1)}
        return [
            JudgedEntry(
                nickname=s.nickname,
                rank=rank_of[s.player_id],
                score=self.scores.get(s.nickname, 0),
                funny_critique=f"{s.nickname} tried",
            )
            for s in submissions
        ]


class FailingJudge(Judge):
    """Always fails, like an unreachable provider."""

    def __init__(self):
        super().__init__(timeout_seconds=5.0)
        self.calls = 0

    async def _judge(self, topic, submissions):
        self.calls += 1
        raise JudgingFailed("provider unavailable")


async def wait_until(predicate, timeout: float = 3.0, interval: float = 0.01):
    """Poll an async predicate until it holds or the timeout expires."""
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        if await predicate():
            return True
        if asyncio.get_running_loop().time() > deadline:
            return False
        await asyncio.sleep(interval)


@pytest.fixture
def settings():
    return Settings(
        readiness_poll_seconds=0.01,
        min_players_to_start=2,
        judge_provider="fake",
        storage_type="memory",
    )


@pytest.fixture
def bus():
    bus = ChangeBus()
    yield bus
    bus.close()


@pytest.fixture
def memory_storage(bus):
    return InMemoryStorage(bus=bus)


@pytest.fixture(params=["memory", "sql"])
async def storage(request, bus, tmp_path):
    """Every storage backend, for contract tests."""
    if request.param == "memory":
        yield InMemoryStorage(bus=bus)
        return

    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'contract.db'}")
    await init_db(engine)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield SQLStorage(bus=bus, session_factory=factory)
    await engine.dispose()


@pytest.fixture
def stub_judge():
    return StubJudge({"Ana": 90, "Ben": 70})
