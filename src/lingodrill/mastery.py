import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from .config import settings
from .models import AnswerRecord, LessonResult, MasteryLevel, MasteryRecord
from .progress import ProgressStore

logger = logging.getLogger(__name__)

# Cumulative practice count required to leave each level on a correct answer.
PROMOTION_THRESHOLDS = {
    MasteryLevel.NEW: (2, MasteryLevel.LEARNING),
    MasteryLevel.LEARNING: (5, MasteryLevel.PRACTICED),
    MasteryLevel.PRACTICED: (10, MasteryLevel.MASTERED),
}

REVIEW_INTERVALS = {
    MasteryLevel.NEW: timedelta(hours=1),
    MasteryLevel.LEARNING: timedelta(hours=24),
    MasteryLevel.PRACTICED: timedelta(hours=72),
    MasteryLevel.MASTERED: timedelta(hours=168),
}


def advance(
    record: MasteryRecord, correct: bool, now: Optional[datetime] = None
) -> MasteryRecord:
    """Applies one practice outcome and schedules the next review."""
    now = now or datetime.now()
    times_practiced = record.times_practiced + 1
    level = record.level

    if correct and level in PROMOTION_THRESHOLDS:
        threshold, promoted = PROMOTION_THRESHOLDS[level]
        if times_practiced >= threshold:
            level = promoted

    return MasteryRecord(
        item_id=record.item_id,
        level=level,
        times_practiced=times_practiced,
        last_reviewed=now,
        next_review=now + REVIEW_INTERVALS[level],
    )


def lesson_score(answers: List[AnswerRecord]) -> int:
    if not answers:
        return 0
    correct = sum(1 for a in answers if a.correct)
    return round(correct / len(answers) * 100)


# --- Service Layer: Mastery Tracking ---
class MasteryTracker:
    """Keeps per-item mastery records and lesson results in a key/value store."""

    def __init__(self, store: ProgressStore):
        self.store = store

    def _key(self, item_id: str) -> str:
        return f"{settings.MASTERY_KEY_PREFIX}{item_id}"

    def get(self, item_id: str) -> MasteryRecord:
        raw = self.store.read(self._key(item_id))
        if raw is None:
            return MasteryRecord(item_id=item_id)
        return MasteryRecord.model_validate(raw)

    def update(
        self, item_id: str, correct: bool, now: Optional[datetime] = None
    ) -> MasteryRecord:
        record = advance(self.get(item_id), correct, now)
        self.store.write(self._key(item_id), record.model_dump(mode="json"))
        return record

    def record_results(
        self, answers: Iterable[AnswerRecord], now: Optional[datetime] = None
    ) -> List[MasteryRecord]:
        updated = []
        for answer in answers:
            try:
                updated.append(self.update(answer.item_id, answer.correct, now))
            except Exception as e:
                logger.error(f"Error updating mastery for {answer.item_id}: {e}")
        return updated

    def save_lesson_result(
        self,
        lesson_id: str,
        language: str,
        answers: List[AnswerRecord],
        now: Optional[datetime] = None,
    ) -> LessonResult:
        result = LessonResult(
            lesson_id=lesson_id,
            language=language,
            score=lesson_score(answers),
            items_practiced=len(answers),
            completed_at=now or datetime.now(),
        )
        key = f"{settings.LESSON_RESULT_KEY_PREFIX}{lesson_id}"
        try:
            self.store.write(key, result.model_dump(mode="json"))
        except Exception as e:
            logger.error(f"Error saving lesson result {lesson_id}: {e}")
        return result

    def get_lesson_result(self, lesson_id: str) -> Optional[LessonResult]:
        raw = self.store.read(f"{settings.LESSON_RESULT_KEY_PREFIX}{lesson_id}")
        return LessonResult.model_validate(raw) if raw else None
