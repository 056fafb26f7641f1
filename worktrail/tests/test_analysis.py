"""Tests for the Gemini client and retry policy."""

import json

import httpx
import pytest

from worktrail.daemon.analysis import AnalysisRequest, GeminiAnalyzer, ImagePart
from worktrail.daemon.config import GeminiConfig
from worktrail.daemon.error_handling import AnalysisError, RetryPolicy, TransientAnalysisError
from worktrail.daemon.models import Tier


def reply(text: str) -> dict:
    return {
        "candidates": [{"content": {"parts": [{"text": text}]}}],
        "usageMetadata": {"promptTokenCount": 100, "candidatesTokenCount": 20, "totalTokenCount": 120},
    }


def make_analyzer(handler, attempts: int = 3) -> GeminiAnalyzer:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiAnalyzer(
        api_key="test-key",
        model="gemini-test",
        endpoint="https://example.test/v1beta",
        retry_policy=RetryPolicy(max_attempts=attempts, base_delay=0),
        client=client,
    )


def request() -> AnalysisRequest:
    return AnalysisRequest(tier=Tier.BASE, parts=["Summarize", ImagePart(data=b"\x89PNG", mime_type="image/png")])


@pytest.mark.asyncio
async def test_successful_call():
    seen = []

    def handler(req: httpx.Request) -> httpx.Response:
        seen.append(req)
        return httpx.Response(200, json=reply('{"core_action": "typing"}'))

    analyzer = make_analyzer(handler)
    result = await analyzer.analyze(request())
    await analyzer.close()

    assert result.text == '{"core_action": "typing"}'
    assert result.usage["totalTokenCount"] == 120

    assert len(seen) == 1
    assert str(seen[0].url) == "https://example.test/v1beta/models/gemini-test:generateContent"
    assert seen[0].headers["x-goog-api-key"] == "test-key"
    body = json.loads(seen[0].content)
    parts = body["contents"][0]["parts"]
    assert parts[0] == {"text": "Summarize"}
    assert parts[1]["inline_data"] == {"mime_type": "image/png", "data": "iVBORw=="}


@pytest.mark.asyncio
async def test_server_error_is_retried():
    statuses = [503, 200]

    def handler(req: httpx.Request) -> httpx.Response:
        status = statuses.pop(0)
        if status != 200:
            return httpx.Response(status, text="unavailable")
        return httpx.Response(200, json=reply("ok"))

    analyzer = make_analyzer(handler)
    result = await analyzer.analyze(request())

    assert result.text == "ok"
    assert statuses == []


@pytest.mark.asyncio
async def test_rate_limit_exhausts_retries():
    calls = []

    def handler(req: httpx.Request) -> httpx.Response:
        calls.append(req)
        return httpx.Response(429, text="slow down")

    analyzer = make_analyzer(handler, attempts=3)
    with pytest.raises(TransientAnalysisError):
        await analyzer.analyze(request())

    assert len(calls) == 3


@pytest.mark.asyncio
async def test_client_error_is_not_retried():
    calls = []

    def handler(req: httpx.Request) -> httpx.Response:
        calls.append(req)
        return httpx.Response(400, text="bad request")

    analyzer = make_analyzer(handler)
    with pytest.raises(AnalysisError) as excinfo:
        await analyzer.analyze(request())

    assert not isinstance(excinfo.value, TransientAnalysisError)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_empty_reply_is_transient():
    replies = [{"candidates": []}, reply("second try")]

    def handler(req: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=replies.pop(0))

    analyzer = make_analyzer(handler)
    result = await analyzer.analyze(request())

    assert result.text == "second try"


@pytest.mark.asyncio
async def test_timeout_is_transient():
    def handler(req: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=req)

    analyzer = make_analyzer(handler, attempts=2)
    with pytest.raises(TransientAnalysisError):
        await analyzer.analyze(request())


@pytest.mark.asyncio
async def test_thought_parts_are_skipped():
    def handler(req: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [
            {"text": "thinking...", "thought": True},
            {"text": "answer"},
        ]}}]})

    result = await make_analyzer(handler).analyze(request())
    assert result.text == "answer"
    assert result.usage is None


def test_from_config():
    analyzer = GeminiAnalyzer.from_config(GeminiConfig(api_key="k", model="m", max_retries=5, retry_delay=1.5))

    assert analyzer.url.endswith("/models/m:generateContent")
    assert analyzer.retry_policy.max_attempts == 5
    assert analyzer.retry_policy.base_delay == 1.5


class TestRetryPolicy:
    """Backoff delays."""

    def test_delays_grow(self):
        policy = RetryPolicy(base_delay=2.0, exponential_base=2.0, max_delay=60.0)
        assert policy.calculate_delay(1) == 2.0
        assert policy.calculate_delay(2) == 4.0
        assert policy.calculate_delay(10) == 60.0

    def test_retry_after_hint(self):
        policy = RetryPolicy(base_delay=1.0)
        error = TransientAnalysisError("rate limited", retry_after=7)
        assert policy.calculate_delay(1, error) == 7.0

    @pytest.mark.asyncio
    async def test_other_errors_propagate_immediately(self):
        calls = []

        async def boom():
            calls.append(1)
            raise KeyError("nope")

        with pytest.raises(KeyError):
            await RetryPolicy(base_delay=0).execute(boom)
        assert len(calls) == 1
