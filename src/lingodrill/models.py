from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Models ---
class VocabItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    word: str
    translation: str
    transliteration: Optional[str] = None
    language: str = "arabic"


class AnswerRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    item_id: str = Field(alias="itemId")
    correct: bool
    user_answer: str = Field(alias="userAnswer")
    correct_answer: str = Field(alias="correctAnswer")
    feedback: Optional[str] = None


class PersistedProgress(BaseModel):
    """Serialized exercise progress, as written to the progress store."""

    model_config = ConfigDict(populate_by_name=True)

    version: int
    queue: List[str]
    answers: List[AnswerRecord]
    saved_at: int = Field(alias="savedAt")


class JudgeVerdict(BaseModel):
    correct: bool
    feedback: str = ""


class ExerciseState(BaseModel):
    phase: str
    current_item: Optional[VocabItem]
    current_index: Optional[int]
    total_items: int
    answers: List[AnswerRecord]
    last_answer: Optional[AnswerRecord]
    correct_count: int
    is_validating: bool
    has_saved_progress: bool
    is_hydrated: bool


class MasteryLevel(str, Enum):
    NEW = "new"
    LEARNING = "learning"
    PRACTICED = "practiced"
    MASTERED = "mastered"


class MasteryRecord(BaseModel):
    item_id: str
    level: MasteryLevel = MasteryLevel.NEW
    times_practiced: int = 0
    last_reviewed: Optional[datetime] = None
    next_review: Optional[datetime] = None


class LessonResult(BaseModel):
    lesson_id: str
    language: str
    score: int
    items_practiced: int
    completed_at: datetime
