"""Practice session engine.

An ``ExerciseEngine`` walks a learner through a queue of vocabulary items.
Answers are checked by exact match first and by a semantic judge otherwise;
skipped items rotate to the back of the queue; progress is written to a
progress store after every step so an interrupted session can be resumed
within a freshness window.

The queue is a list of item ids with a cursor. The logical queue starts at
the cursor and wraps around, so skipping only advances the cursor and
answering removes the id under it. Persisted progress stores the logical
order, which makes a reload resume at the same item.
"""

import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError

from .config import settings
from .judge import SemanticJudge, default_judge, normalize_answer
from .models import (
    AnswerRecord,
    ExerciseState,
    JudgeVerdict,
    PersistedProgress,
    VocabItem,
)
from .progress import ProgressStore, progress_key
from .redis_session import redis_progress_store

logger = logging.getLogger(__name__)

OnComplete = Callable[[List[AnswerRecord]], None]


class Phase(str, Enum):
    PROMPTING = "prompting"
    FEEDBACK = "feedback"
    COMPLETE = "complete"


class ExerciseEngine:
    def __init__(
        self,
        items: Sequence[VocabItem],
        judge: SemanticJudge,
        store: Optional[ProgressStore] = None,
        session_key: Optional[str] = None,
        on_complete: Optional[OnComplete] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.items: List[VocabItem] = list(items)
        self._by_id: Dict[str, VocabItem] = {item.id: item for item in self.items}
        if len(self._by_id) != len(self.items):
            raise ValueError("Vocabulary item ids must be unique")
        self._positions = {item.id: i for i, item in enumerate(self.items)}

        self.judge = judge
        self.store = store
        self.session_key = session_key
        self.on_complete = on_complete
        self._clock = clock

        self.phase = Phase.PROMPTING
        self._queue: List[str] = [item.id for item in self.items]
        self._cursor = 0
        self._answers: List[AnswerRecord] = []

        self.is_validating = False
        self.has_saved_progress = False
        # Without a durable key there is nothing to hydrate from.
        self.is_hydrated = not self.persistent
        self._generation = 0
        self._closed = False
        self._completion_fired = False

    # --- Observable state ---
    @property
    def persistent(self) -> bool:
        return self.store is not None and bool(self.session_key)

    @property
    def total_items(self) -> int:
        return len(self.items)

    @property
    def queue(self) -> List[str]:
        return self._queue[self._cursor :] + self._queue[: self._cursor]

    @property
    def answers(self) -> List[AnswerRecord]:
        return list(self._answers)

    @property
    def answered_ids(self) -> List[str]:
        return [a.item_id for a in self._answers]

    @property
    def current_item(self) -> Optional[VocabItem]:
        if self.phase is Phase.COMPLETE or not self._queue:
            return None
        return self._by_id[self._queue[self._cursor]]

    @property
    def current_index(self) -> Optional[int]:
        item = self.current_item
        return self._positions[item.id] if item else None

    @property
    def last_answer(self) -> Optional[AnswerRecord]:
        return self._answers[-1] if self._answers else None

    @property
    def correct_count(self) -> int:
        return sum(1 for a in self._answers if a.correct)

    def summary(self) -> Dict[str, int]:
        answered = len(self._answers)
        score = round(self.correct_count / answered * 100) if answered else 0
        return {
            "correct_count": self.correct_count,
            "answered": answered,
            "total_items": self.total_items,
            "score_percentage": score,
        }

    def state(self) -> ExerciseState:
        return ExerciseState(
            phase=self.phase.value,
            current_item=self.current_item,
            current_index=self.current_index,
            total_items=self.total_items,
            answers=self.answers,
            last_answer=self.last_answer,
            correct_count=self.correct_count,
            is_validating=self.is_validating,
            has_saved_progress=self.has_saved_progress,
            is_hydrated=self.is_hydrated,
        )

    # --- Hydration ---
    def hydrate(self) -> bool:
        """Reads saved progress once. Returns True if a usable record was found.

        A found record populates the queue and answers, but the caller still
        has to choose between ``resume()`` and ``start_fresh()``.
        """
        if self.is_hydrated:
            return self.has_saved_progress
        record = self._load_progress()
        if record is not None:
            self._queue = list(record.queue)
            self._cursor = 0
            self._answers = list(record.answers)
            answered = set(self.answered_ids)
            if not self._queue:
                # Completed before cleanup; the callback already ran.
                self.phase = Phase.COMPLETE
                self._completion_fired = True
            elif self._queue[0] in answered:
                self.phase = Phase.FEEDBACK
            else:
                self.phase = Phase.PROMPTING
            self.has_saved_progress = True
            logger.info(
                f"Found saved progress for {self.session_key}: "
                f"{len(self._answers)} answered, {len(self._queue)} queued"
            )
        self.is_hydrated = True
        return self.has_saved_progress

    def _load_progress(self) -> Optional[PersistedProgress]:
        key = progress_key(self.session_key)
        try:
            raw = self.store.read(key)
        except Exception as e:
            logger.error(f"Failed to read progress {key}: {e}")
            return None
        if not raw:
            return None

        try:
            record = PersistedProgress.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed progress {key}: {e}")
            return None
        if record.version != settings.PROGRESS_VERSION:
            logger.warning(f"Ignoring progress {key} with version {record.version}")
            return None

        age_ms = self._now_ms() - record.saved_at
        if age_ms >= settings.PROGRESS_MAX_AGE_HOURS * 3600 * 1000:
            logger.info(f"Ignoring stale progress {key}")
            return None
        if not self._is_consistent(record):
            logger.warning(f"Ignoring progress {key}: items do not match")
            return None
        return record

    def _is_consistent(self, record: PersistedProgress) -> bool:
        queued = record.queue
        answered = [a.item_id for a in record.answers]
        if len(set(queued)) != len(queued) or len(set(answered)) != len(answered):
            return False
        known = set(self._by_id)
        if not set(queued) <= known or not set(answered) <= known:
            return False
        if set(queued) | set(answered) != known:
            return False
        # Only the item awaiting continue, the latest answer, may be both
        # queued and answered.
        overlap = set(queued) & set(answered)
        return not overlap or overlap == {queued[0]} == {answered[-1]}

    # --- Persistence ---
    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _persist(self):
        if not self.persistent or self._closed:
            return
        key = progress_key(self.session_key)
        progress = PersistedProgress(
            version=settings.PROGRESS_VERSION,
            queue=self.queue,
            answers=self._answers,
            saved_at=self._now_ms(),
        )
        try:
            self.store.write(key, progress.model_dump(by_alias=True, mode="json"))
        except Exception as e:
            logger.error(f"Failed to save progress {key}: {e}")

    def _clear_progress(self):
        if not self.persistent:
            return
        key = progress_key(self.session_key)
        try:
            self.store.delete(key)
        except Exception as e:
            logger.error(f"Failed to delete progress {key}: {e}")

    # --- Guards ---
    def _accepts(self, operation: str, *phases: Phase) -> bool:
        if self._closed:
            logger.warning(f"Ignored {operation}: exercise is closed")
            return False
        if not self.is_hydrated:
            logger.warning(f"Ignored {operation}: progress not hydrated yet")
            return False
        if phases and self.phase not in phases:
            logger.warning(f"Ignored {operation} during {self.phase.value}")
            return False
        return True

    # --- Operations ---
    async def submit_answer(self, text: str) -> Optional[AnswerRecord]:
        if not self._accepts("submit_answer", Phase.PROMPTING):
            return None
        if self.is_validating:
            logger.warning("Ignored submit_answer: validation already in progress")
            return None
        item = self.current_item
        if item is None:
            return None

        if normalize_answer(text) == normalize_answer(item.translation):
            correct, feedback = True, None
        else:
            generation = self._generation
            self.is_validating = True
            try:
                verdict = _as_verdict(
                    await self.judge(text, item.translation, item.language)
                )
            except Exception as e:
                logger.error(f"Judge failed for item {item.id}: {e}")
                verdict = JudgeVerdict(
                    correct=False, feedback=settings.JUDGE_FAILURE_FEEDBACK
                )
            finally:
                if generation == self._generation:
                    self.is_validating = False
            if self._closed or generation != self._generation:
                logger.info(f"Discarded judge result for item {item.id}")
                return None
            correct, feedback = verdict.correct, verdict.feedback

        record = AnswerRecord(
            item_id=item.id,
            correct=correct,
            user_answer=text.strip(),
            correct_answer=item.translation,
            feedback=feedback,
        )
        self._answers.append(record)
        self.phase = Phase.FEEDBACK
        self._persist()
        return record

    def skip_question(self):
        if not self._accepts("skip_question", Phase.PROMPTING) or self.is_validating:
            return
        if not self._queue:
            return
        self._cursor = (self._cursor + 1) % len(self._queue)
        self._persist()

    def continue_to_next(self):
        if not self._accepts("continue_to_next", Phase.FEEDBACK):
            return
        del self._queue[self._cursor]
        if self._cursor >= len(self._queue):
            self._cursor = 0

        if self._queue:
            self.phase = Phase.PROMPTING
            self._persist()
            return

        self.phase = Phase.COMPLETE
        self._persist()
        summary = self.summary()
        logger.info(
            f"Exercise {self.session_key or '<memory>'} complete: "
            f"{summary['correct_count']}/{summary['answered']} correct"
        )
        self._fire_completion()

    def _fire_completion(self):
        if self._completion_fired:
            return
        self._completion_fired = True
        if self.on_complete is None:
            return
        try:
            self.on_complete(self.answers)
        except Exception as e:
            logger.error(f"Completion callback failed: {e}")

    def go_to_item(self, index: int):
        """Makes the item at ``index`` of the original list current.

        Only items still queued can be selected; the queue keeps its cyclic
        order.
        """
        if not self._accepts("go_to_item", Phase.PROMPTING) or self.is_validating:
            return
        if not (0 <= index < self.total_items):
            return
        item_id = self.items[index].id
        if item_id not in self._queue:
            return
        self._cursor = self._queue.index(item_id)

    def reset(self):
        if not self._accepts("reset"):
            return
        self._generation += 1
        self.is_validating = False
        self._queue = [item.id for item in self.items]
        self._cursor = 0
        self._answers = []
        self.phase = Phase.PROMPTING
        self.has_saved_progress = False
        self._completion_fired = False

    def start_fresh(self):
        if not self._accepts("start_fresh"):
            return
        self._clear_progress()
        self.reset()
        logger.info(f"Started fresh exercise {self.session_key or '<memory>'}")

    def resume(self):
        """Accepts hydrated progress; the state itself is already restored."""
        if not self._accepts("resume"):
            return
        self.has_saved_progress = False

    def close(self):
        self._closed = True
        self._generation += 1
        self.is_validating = False


def _as_verdict(result: Any) -> JudgeVerdict:
    if isinstance(result, JudgeVerdict):
        return result
    return JudgeVerdict.model_validate(result)


def create_exercise(
    items: Sequence[VocabItem],
    session_key: Optional[str] = None,
    on_complete: Optional[OnComplete] = None,
    judge: Optional[SemanticJudge] = None,
    store: Optional[ProgressStore] = None,
    clock: Callable[[], float] = time.time,
) -> ExerciseEngine:
    """Builds an engine and hydrates it from saved progress, if any.

    Without ``session_key`` the engine runs purely in memory. With one and
    no explicit store, progress goes to redis.
    """
    if session_key and store is None:
        store = redis_progress_store()
    engine = ExerciseEngine(
        items,
        judge=judge or default_judge(),
        store=store if session_key else None,
        session_key=session_key,
        on_complete=on_complete,
        clock=clock,
    )
    engine.hydrate()
    return engine
