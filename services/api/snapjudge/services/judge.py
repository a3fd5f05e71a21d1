"""
AI judge service for photo submissions.

Supports Gemini (direct, with the photos inlined), a remote HTTP judging
endpoint, and a deterministic fake mode for development and testing.
Every provider returns one Ranking per submission, correlated back to the
submitting player by id.
"""
import asyncio
import hashlib
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import BaseModel, ValidationError

from ..config import Settings, get_settings
from ..errors import JudgingFailed
from ..models import Ranking, Submission
from .images import fetch_image

logger = logging.getLogger(__name__)


class JudgedEntry(BaseModel):
    """One entry of the judge's raw JSON verdict."""
    nickname: str
    rank: int
    score: int
    funny_critique: str


class JudgeResponse(BaseModel):
    """The judge's raw JSON verdict."""
    rankings: list[JudgedEntry]


def build_prompt(topic: str, nicknames: list[str]) -> str:
    """Build the judging prompt."""
    player_list = ", ".join(nicknames)

    return f"""You are a harsh but fair photography critic with a great sense of humor. The photography challenge topic was: "{topic}".

I will show you {len(nicknames)} photos from different players: {player_list}.

Your task:
1. Rank these images from best to worst based on creativity, humor, and adherence to the topic
2. Give each photo a score from 0-100
3. Write a SHORT, funny, slightly roasting critique for each (max 15 words)

Be entertaining but not mean. Make the critiques memorable!

Return ONLY a valid JSON object with this exact structure:
{{
  "rankings": [
    {{"nickname": "player_name", "rank": 1, "score": 95, "funny_critique": "Your funny comment here"}}
  ]
}}

The order should match the player order I mentioned: {player_list}. Return one ranking per player in that exact order."""


def parse_response(response_text: str) -> list[JudgedEntry]:
    """Extract and validate the JSON verdict from model output."""
    text = response_text.strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]

    match = re.search(r"\{[\s\S]*\}", text)
    if not match:
        raise JudgingFailed("Judge response contained no JSON object")

    try:
        return JudgeResponse.model_validate(json.loads(match.group(0))).rankings
    except (json.JSONDecodeError, ValidationError) as e:
        raise JudgingFailed(f"Malformed judge response: {e}") from e


def correlate_rankings(
    entries: list[JudgedEntry], submissions: list[Submission]
) -> list[Ranking]:
    """
    Match judged entries back to submissions and normalize them.

    Matching strategy (in order of preference):
    1. Positional: the judge was asked to answer in input order, so use the
       entry at the same index when its nickname agrees
    2. Name: otherwise the single unmatched submission with that nickname

    Every submission must be matched exactly once. Scores are clamped to
    0-100 and ranks rewritten to 1..K following the judge's ordering.
    """
    if len(entries) != len(submissions):
        raise JudgingFailed(
            f"Judge returned {len(entries)} rankings for {len(submissions)} submissions"
        )

    matched: dict[int, Submission] = {}  # entry index -> submission
    used: set[int] = set()  # submission indexes already claimed

    for i, entry in enumerate(entries):
        if submissions[i].nickname == entry.nickname and i not in used:
            matched[i] = submissions[i]
            used.add(i)

    for i, entry in enumerate(entries):
        if i in matched:
            continue
        candidates = [
            j for j, s in enumerate(submissions)
            if j not in used and s.nickname == entry.nickname
        ]
        if len(candidates) != 1:
            raise JudgingFailed(f"Cannot match judged nickname '{entry.nickname}'")
        matched[i] = submissions[candidates[0]]
        used.add(candidates[0])

    # Judge's rank first, higher score breaks ties, input order last
    order = sorted(
        range(len(entries)),
        key=lambda i: (entries[i].rank, -entries[i].score, i),
    )

    rankings = []
    for position, i in enumerate(order, start=1):
        entry, submission = entries[i], matched[i]
        rankings.append(Ranking(
            player_id=submission.player_id,
            nickname=submission.nickname,
            rank=position,
            score=max(0, min(100, entry.score)),
            critique=entry.funny_critique,
            image_url=submission.image_url,
        ))
    return rankings


class Judge(ABC):
    """An AI judge: ranks a round's photos against its topic."""

    def __init__(self, timeout_seconds: float = 45.0):
        self.timeout_seconds = timeout_seconds

    @abstractmethod
    async def _judge(self, topic: str, submissions: list[Submission]) -> list[JudgedEntry]:
        """Provider call returning raw entries, same order as submissions."""
        pass

    async def judge(self, topic: str, submissions: list[Submission]) -> list[Ranking]:
        """
        Rank submissions for a topic.

        Raises JudgingFailed when the provider errors, times out, or
        returns something that does not cover every submission.
        """
        try:
            entries = await asyncio.wait_for(
                self._judge(topic, submissions), timeout=self.timeout_seconds
            )
        except JudgingFailed:
            raise
        except asyncio.TimeoutError as e:
            raise JudgingFailed(f"Judge timed out after {self.timeout_seconds}s") from e
        except Exception as e:
            raise JudgingFailed(f"Judge call failed: {e}") from e

        return correlate_rankings(entries, submissions)


class FakeJudge(Judge):
    """Deterministic scores for development and testing."""

    CRITIQUES = [
        "Did you take this with your elbow?",
        "The topic called. It wants an apology.",
        "Bold of you to submit this with confidence.",
        "I've seen more creativity in a tax form.",
        "Technically a photo. Technically.",
        "Not bad. Your thumb almost stayed out of frame.",
        "Solid effort, questionable life choices.",
        "Somewhere a photography teacher just sighed.",
        "Honestly? I'd hang this in a hallway. A dark one.",
        "Okay, this one actually made me laugh.",
        "Gallery-worthy. Small gallery. Tiny, really.",
        "Nailed it. I'm almost annoyed.",
    ]

    async def _judge(self, topic: str, submissions: list[Submission]) -> list[JudgedEntry]:
        scored = []
        for sub in submissions:
            h = hashlib.md5(f"{topic}|{sub.image_url}|{sub.player_id}".encode()).hexdigest()
            score = int(h[:4], 16) % 101

            # Pick critique based on score band
            if score >= 75:
                pool = self.CRITIQUES[-3:]
            elif score >= 40:
                pool = self.CRITIQUES[5:9]
            else:
                pool = self.CRITIQUES[:5]
            scored.append((sub, score, pool[int(h[4:6], 16) % len(pool)]))

        ranked = sorted(range(len(scored)), key=lambda i: -scored[i][1])
        rank_of = {i: position for position, i in enumerate(ranked, start=1)}

        return [
            JudgedEntry(
                nickname=sub.nickname,
                rank=rank_of[i],
                score=score,
                funny_critique=critique,
            )
            for i, (sub, score, critique) in enumerate(scored)
        ]


class HttpJudge(Judge):
    """Remote judging endpoint: POST {topic, submissions} -> {rankings}."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 45.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds)
        self.url = url
        self._transport = transport

    async def _judge(self, topic: str, submissions: list[Submission]) -> list[JudgedEntry]:
        if not self.url:
            raise JudgingFailed("Judge URL not configured")

        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            response = await client.post(
                self.url,
                json={
                    "topic": topic,
                    "submissions": [
                        {"nickname": s.nickname, "imageUrl": s.image_url}
                        for s in submissions
                    ],
                },
            )

        if response.status_code >= 300:
            raise JudgingFailed(
                f"Judge endpoint returned {response.status_code}: {response.text[:200]}"
            )

        try:
            return JudgeResponse.model_validate(response.json()).rankings
        except (json.JSONDecodeError, ValidationError) as e:
            raise JudgingFailed(f"Malformed judge response: {e}") from e


class GeminiJudge(Judge):
    """Gemini vision model with the photos sent inline."""

    def __init__(
        self,
        api_key: str,
        model_name: str = "gemini-1.5-flash",
        timeout_seconds: float = 45.0,
        image_timeout_seconds: float = 15.0,
    ):
        super().__init__(timeout_seconds=timeout_seconds)
        self.api_key = api_key
        self.model_name = model_name
        self.image_timeout_seconds = image_timeout_seconds
        self._model = None

    def _get_model(self):
        """Get or create the Gemini model."""
        if self._model is None:
            if not self.api_key:
                raise JudgingFailed("Gemini API key not configured")
            import google.generativeai as genai

            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(self.model_name)
        return self._model

    async def _judge(self, topic: str, submissions: list[Submission]) -> list[JudgedEntry]:
        model = self._get_model()

        images = await asyncio.gather(*[
            fetch_image(s.image_url, timeout=self.image_timeout_seconds)
            for s in submissions
        ])
        prompt = build_prompt(topic, [s.nickname for s in submissions])

        response = await model.generate_content_async(
            [prompt, *[{"mime_type": mime, "data": data} for data, mime in images]],
            generation_config={"temperature": 0.9, "max_output_tokens": 1024},
        )

        text = response.text
        if not text:
            raise JudgingFailed("No response from AI")
        return parse_response(text)


def build_judge(settings: Optional[Settings] = None) -> Judge:
    """Create the judge configured by `judge_provider`."""
    settings = settings or get_settings()

    if settings.judge_provider == "gemini":
        return GeminiJudge(
            api_key=settings.gemini_api_key,
            model_name=settings.gemini_model,
            timeout_seconds=settings.judge_timeout_seconds,
            image_timeout_seconds=settings.image_fetch_timeout_seconds,
        )
    if settings.judge_provider == "http":
        return HttpJudge(settings.judge_url, timeout_seconds=settings.judge_timeout_seconds)
    return FakeJudge(timeout_seconds=settings.judge_timeout_seconds)
