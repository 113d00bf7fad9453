"""
Unit tests for semantic judges and verdict parsing.
"""
from types import SimpleNamespace

import httpx
import openai
import pytest

from lingodrill.judge import (
    ExactMatchJudge,
    JudgeError,
    MalformedResponse,
    OpenAIJudge,
    parse_verdict,
)


def completion(content):
    message = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeCompletions:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return completion(outcome)


def fake_client(*outcomes):
    completions = FakeCompletions(outcomes)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def auth_error():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return openai.AuthenticationError(
        "Invalid API key", response=httpx.Response(401, request=request), body=None
    )


class TestParseVerdict:
    def test_plain_json(self):
        verdict = parse_verdict('{"correct": true, "feedback": "Synonym of hello"}')
        assert verdict.correct is True
        assert verdict.feedback == "Synonym of hello"

    def test_code_fenced_json(self):
        verdict = parse_verdict('```json\n{"correct": false, "feedback": "No"}\n```')
        assert verdict.correct is False

    def test_missing_feedback_defaults_to_empty(self):
        assert parse_verdict('{"correct": false}').feedback == ""

    @pytest.mark.parametrize(
        "content",
        [None, "", "not json", "[true]", '{"feedback": "ok"}', '{"correct": "yes"}'],
    )
    def test_malformed(self, content):
        with pytest.raises(MalformedResponse):
            parse_verdict(content)


class TestExactMatchJudge:
    @pytest.mark.asyncio
    async def test_accepts_normalized_equal(self):
        verdict = await ExactMatchJudge()(" Thank You ", "thank you", "arabic")
        assert verdict.correct is True

    @pytest.mark.asyncio
    async def test_rejects_anything_else(self):
        verdict = await ExactMatchJudge()("thanks", "thank you", "arabic")
        assert verdict.correct is False
        assert "thank you" in verdict.feedback


class TestOpenAIJudge:
    @pytest.mark.asyncio
    async def test_builds_json_request(self):
        client, completions = fake_client('{"correct": true, "feedback": "Greeting"}')
        judge = OpenAIJudge(client=client, model="gpt-test", base_delay=0)

        verdict = await judge("hi", "hello", "arabic")

        assert verdict.correct is True
        request = completions.requests[0]
        assert request["model"] == "gpt-test"
        assert request["response_format"] == {"type": "json_object"}
        prompt = request["messages"][1]["content"]
        assert 'Expected Translation: "hello"' in prompt
        assert 'User Answer: "hi"' in prompt
        assert "Language: arabic" in prompt

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self):
        client, completions = fake_client(
            httpx.ConnectError("reset"), "garbage", '{"correct": false, "feedback": "No"}'
        )
        judge = OpenAIJudge(client=client, max_retries=3, base_delay=0)

        verdict = await judge("casa", "house", "spanish")

        assert verdict.correct is False
        assert len(completions.requests) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        client, completions = fake_client("garbage", "garbage")
        judge = OpenAIJudge(client=client, max_retries=2, base_delay=0)

        with pytest.raises(JudgeError):
            await judge("casa", "house", "spanish")
        assert len(completions.requests) == 2

    @pytest.mark.asyncio
    async def test_auth_errors_are_not_retried(self):
        client, completions = fake_client(auth_error(), '{"correct": true}')
        judge = OpenAIJudge(client=client, base_delay=0)

        with pytest.raises(openai.AuthenticationError):
            await judge("casa", "house", "spanish")
        assert len(completions.requests) == 1

    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        judge = OpenAIJudge(base_delay=0)

        with pytest.raises(JudgeError):
            await judge("casa", "house", "spanish")
