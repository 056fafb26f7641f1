"""Shared fakes for the scheduler and pipeline tests."""

import asyncio
import json
from datetime import datetime, timedelta
from typing import List, Optional

import pytest

from worktrail.daemon.analysis import AnalysisRequest, AnalysisResult
from worktrail.daemon.config import Config
from worktrail.daemon.models import Evidence
from worktrail.daemon.store import JsonRecordStore


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float = 0, seconds: float = 0) -> datetime:
        self.now += timedelta(minutes=minutes, seconds=seconds)
        return self.now


class FakeEvidenceSource:
    """Returns queued evidence batches; the last batch repeats."""

    def __init__(self, batches: Optional[List[List[Evidence]]] = None):
        self.batches = list(batches or [])
        self.calls = 0

    async def get_recent_evidence(self, window_minutes: int, max_count: int) -> List[Evidence]:
        self.calls += 1
        if not self.batches:
            return []
        if len(self.batches) > 1:
            return self.batches.pop(0)
        return self.batches[0]


class FakeAnalyzer:
    """Answers with queued replies and records every request.

    With ``block=True`` each call waits on ``release`` so tests can hold an
    execution in flight.
    """

    def __init__(self, replies=None, block: bool = False, error: Optional[Exception] = None):
        self.replies = list(replies or [])
        self.error = error
        self.requests: List[AnalysisRequest] = []
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        if not block:
            self.release.set()
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.set()
        try:
            await self.release.wait()
            if self.error is not None:
                raise self.error
            reply = self.replies.pop(0) if len(self.replies) > 1 else (self.replies[0] if self.replies else {})
            text = reply if isinstance(reply, str) else json.dumps(reply)
            return AnalysisResult(text=text, usage={"promptTokenCount": 10, "totalTokenCount": 12})
        finally:
            self.in_flight -= 1

    async def close(self) -> None:
        self.closed = True


def frame(payload: bytes, at: datetime) -> Evidence:
    return Evidence(payload=payload, timestamp=at)


BASE_REPLY = {
    "category_type": ["task"],
    "category_name": ["Write report"],
    "subtask_name": ["Draft intro"],
    "core_action": "Typing the introduction",
    "context": "editor",
    "duration_minutes": 2,
}


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 10, 0, 0))


@pytest.fixture
def config(tmp_path):
    config = Config()
    config.summary.directory = tmp_path / "summaries"
    config.screenshot.directory = tmp_path / "screenshots"
    return config


@pytest.fixture
def store(config):
    return JsonRecordStore(config.summary.directory)
