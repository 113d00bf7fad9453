import asyncio
import json
import logging
import os
from typing import Optional, Protocol

import openai
from openai import AsyncOpenAI
from pydantic import ValidationError

from .config import settings
from .models import JudgeVerdict

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "Return valid json only."

JUDGE_PROMPT = """
Expected Translation: "{correct_answer}"
User Answer: "{user_answer}"
Language: {language}

Is the user's answer a valid translation? Be GENEROUS - accept:
- Minor typos and spelling variations
- Synonyms and semantically equivalent words
- Alternative meanings (e.g., "salaam" = both "peace" AND "hello")
- Greetings used interchangeably (hello/hi/hey, goodbye/bye)
- Different but correct translations for the same word

Mark correct if the user's answer is ANY valid translation of the word.

Return ONLY JSON:
{{
  "correct": boolean,
  "feedback": "Brief explanation (max 10 words)"
}}
"""


class MalformedResponse(ValueError):
    """The model replied with something that is not a verdict."""


class JudgeError(RuntimeError):
    pass


class SemanticJudge(Protocol):
    async def __call__(
        self, user_answer: str, correct_answer: str, language: str
    ) -> JudgeVerdict: ...


def normalize_answer(text: str) -> str:
    return text.strip().casefold()


def _strip_code_fence(content: str) -> str:
    text = content.strip()
    if text.startswith("```"):
        first_nl = text.find("\n")
        text = text[first_nl + 1 :] if first_nl != -1 else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def parse_verdict(content: Optional[str]) -> JudgeVerdict:
    """Validates a raw model reply into a JudgeVerdict."""
    if not content:
        raise MalformedResponse("Empty response from judge")
    try:
        data = json.loads(_strip_code_fence(content))
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"Judge response is not JSON: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("correct"), bool):
        raise MalformedResponse("Judge response lacks a boolean 'correct' field")
    try:
        return JudgeVerdict.model_validate(data)
    except ValidationError as e:
        raise MalformedResponse(str(e)) from e


# --- Judges ---
class ExactMatchJudge:
    """Offline judge: accepts only normalized equality."""

    async def __call__(
        self, user_answer: str, correct_answer: str, language: str
    ) -> JudgeVerdict:
        if normalize_answer(user_answer) == normalize_answer(correct_answer):
            return JudgeVerdict(correct=True, feedback="Correct!")
        return JudgeVerdict(correct=False, feedback=f"Expected: {correct_answer}")


class OpenAIJudge:
    """Asks a chat model whether a non-identical answer is still acceptable."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: str = settings.OPENAI_MODEL,
        max_retries: int = settings.JUDGE_MAX_RETRIES,
        base_delay: float = settings.JUDGE_RETRY_BASE_DELAY,
    ):
        self._client = client
        self.model = model
        self.max_retries = max_retries
        self.base_delay = base_delay

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not os.getenv("OPENAI_API_KEY"):
                raise JudgeError("OPENAI_API_KEY not set")
            self._client = AsyncOpenAI(timeout=settings.JUDGE_TIMEOUT)
        return self._client

    async def _ask(self, prompt: str) -> JudgeVerdict:
        rsp = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            response_format={"type": "json_object"},
        )
        return parse_verdict(rsp.choices[0].message.content)

    async def __call__(
        self, user_answer: str, correct_answer: str, language: str
    ) -> JudgeVerdict:
        prompt = JUDGE_PROMPT.format(
            correct_answer=correct_answer, user_answer=user_answer, language=language
        )
        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                return await self._ask(prompt)
            except (openai.AuthenticationError, JudgeError):
                raise
            except Exception as e:
                last_error = e
                logger.warning(f"Judge attempt {attempt + 1} failed: {e}")
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.base_delay * 2**attempt)
        raise JudgeError(f"Judge failed after {self.max_retries} attempts") from last_error


def default_judge() -> SemanticJudge:
    if os.getenv("OPENAI_API_KEY"):
        return OpenAIJudge()
    logger.warning("OPENAI_API_KEY not set, falling back to exact-match judging")
    return ExactMatchJudge()
