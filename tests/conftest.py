"""
Shared fixtures for exercise engine tests.
"""
import pytest

from lingodrill.models import JudgeVerdict, VocabItem
from lingodrill.progress import MemoryProgressStore

NOW = 1_800_000_000.0


class FakeJudge:
    """Records every call and answers with a fixed verdict or error."""

    def __init__(self, verdict=None, error=None):
        self.verdict = verdict or JudgeVerdict(correct=False, feedback="Not quite")
        self.error = error
        self.calls = []

    async def __call__(self, user_answer, correct_answer, language):
        self.calls.append((user_answer, correct_answer, language))
        if self.error:
            raise self.error
        return self.verdict


class FakeRedis:
    """Dict-backed stand-in for the redis client that remembers expiries."""

    def __init__(self):
        self.data = {}
        self.expiry = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex

    def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0


class FailingStore(MemoryProgressStore):
    """A store whose reads and/or writes blow up."""

    def __init__(self, fail_reads=False, fail_writes=False):
        super().__init__()
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes

    def read(self, key):
        if self.fail_reads:
            raise ConnectionError("store unavailable")
        return super().read(key)

    def write(self, key, value):
        if self.fail_writes:
            raise ConnectionError("quota exceeded")
        super().write(key, value)


@pytest.fixture
def items():
    return [
        VocabItem(id="item-a", word="مرحبا", translation="hello", transliteration="marhaba", language="arabic"),
        VocabItem(id="item-b", word="شكرا", translation="thank you", transliteration="shukran", language="arabic"),
        VocabItem(id="item-c", word="نعم", translation="yes", transliteration="naam", language="arabic"),
    ]


@pytest.fixture
def abc_items():
    """Items whose expected answers are simply 'a', 'b' and 'c'."""
    return [
        VocabItem(id="A", word="uno", translation="a", language="spanish"),
        VocabItem(id="B", word="dos", translation="b", language="spanish"),
        VocabItem(id="C", word="tres", translation="c", language="spanish"),
    ]


@pytest.fixture
def judge():
    return FakeJudge()


@pytest.fixture
def store():
    return MemoryProgressStore()


@pytest.fixture
def clock():
    return lambda: NOW
