import logging
import os
import random
import threading
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import (
    Cookie,
    Depends,
    FastAPI,
    Form,
    Response,
)
from fastapi.responses import JSONResponse

from .config import settings
from .exercise import ExerciseEngine, Phase, create_exercise
from .judge import SemanticJudge, default_judge
from .mastery import MasteryTracker
from .models import AnswerRecord, VocabItem
from .progress import ProgressStore, progress_key
from .redis_session import redis_progress_store
from .vocabulary import VocabularyManager

# --- Logging Setup ---
logger = logging.getLogger("lingodrill")
logger.setLevel(logging.INFO)

if not os.path.exists(settings.LOG_DIR):
    os.makedirs(settings.LOG_DIR)
log_path = os.path.join(settings.LOG_DIR, settings.LOG_FILE)
file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3)
file_handler.setFormatter(
    logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
)
logger.addHandler(file_handler)


# --- Lifecycle ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    vocab_manager.load_all()
    yield
    for engine in exercises.values():
        engine.close()
    exercises.clear()


app = FastAPI(
    title=settings.PROJECT_NAME,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

vocab_manager = VocabularyManager(f"{settings.VOCAB_DIR}")
# Live engines by session id; the progress store lets a new process rebuild them.
exercises: Dict[str, ExerciseEngine] = {}
exercises_lock = threading.Lock()
judge = default_judge()


def session_meta_key(session_id: str) -> str:
    return f"exercise-session-{session_id}"


# --- Dependencies ---
def get_store() -> ProgressStore:
    return redis_progress_store(ttl=timedelta(hours=settings.PROGRESS_MAX_AGE_HOURS))


def get_judge() -> SemanticJudge:
    return judge


def get_mastery_store() -> ProgressStore:
    # Mastery spans sessions, so these keys never expire.
    return redis_progress_store()


def get_tracker(
    store: ProgressStore = Depends(get_mastery_store),
) -> MasteryTracker:
    return MasteryTracker(store)


def get_session_id(
    session_id: Optional[str] = Cookie(None, alias=settings.SESSION_COOKIE_NAME),
) -> Optional[str]:
    return session_id


def build_exercise(
    session_id: str,
    topic: str,
    items: List[VocabItem],
    store: ProgressStore,
    judge: SemanticJudge,
    tracker: MasteryTracker,
) -> ExerciseEngine:
    language = items[0].language if items else "arabic"

    def on_complete(answers: List[AnswerRecord]):
        with exercises_lock:
            exercises.pop(session_id, None)
        tracker.record_results(answers)
        result = tracker.save_lesson_result(session_id, language, answers)
        logger.info(
            f"Session {session_id} [Topic: {topic}] finished with score {result.score}"
        )

    return create_exercise(
        items, session_key=session_id, on_complete=on_complete, judge=judge, store=store
    )


def get_active_exercise(
    session_id: Optional[str] = Depends(get_session_id),
    store: ProgressStore = Depends(get_store),
    judge: SemanticJudge = Depends(get_judge),
    tracker: MasteryTracker = Depends(get_tracker),
) -> Optional[ExerciseEngine]:
    if not session_id:
        return None
    with exercises_lock:
        if session_id in exercises:
            return exercises[session_id]
        engine = rebuild_exercise(session_id, store, judge, tracker)
        # Finished sessions are rebuilt on demand, never kept.
        if engine and engine.phase is not Phase.COMPLETE:
            exercises[session_id] = engine
        return engine


def rebuild_exercise(
    session_id: str,
    store: ProgressStore,
    judge: SemanticJudge,
    tracker: MasteryTracker,
) -> Optional[ExerciseEngine]:
    try:
        meta = store.read(session_meta_key(session_id))
    except Exception as e:
        logger.error(f"Failed to read session {session_id}: {e}")
        return None
    if not meta:
        return None

    by_id = {item.id: item for item in vocab_manager.get_items(meta["topic"])}
    if not all(item_id in by_id for item_id in meta["item_ids"]):
        logger.warning(f"Session {session_id} refers to unknown items, dropping it")
        return None
    items = [by_id[item_id] for item_id in meta["item_ids"]]
    logger.info(f"Rebuilt session {session_id} [Topic: {meta['topic']}]")
    return build_exercise(session_id, meta["topic"], items, store, judge, tracker)


def exercise_payload(engine: ExerciseEngine) -> Dict[str, Any]:
    # The expected translation stays server-side until the item is answered.
    payload = engine.state().model_dump(exclude={"current_item": {"translation"}})
    payload["summary"] = engine.summary()
    return payload


def invalid_session() -> JSONResponse:
    return JSONResponse({"error": "Session invalid"}, status_code=401)


# --- Routes ---
@app.get("/api/topics")
async def get_topics():
    return vocab_manager.get_topics()


@app.post("/api/exercise/start")
def start_exercise(
    response: Response,
    topic: str = Form(...),
    session_id: Optional[str] = Depends(get_session_id),
    store: ProgressStore = Depends(get_store),
    judge: SemanticJudge = Depends(get_judge),
    tracker: MasteryTracker = Depends(get_tracker),
):
    if not vocab_manager.get_items(topic):
        topics = vocab_manager.get_topics()
        topic = topics[0]["id"] if topics else "default_dummy"

    word_list = vocab_manager.get_items(topic)
    items = random.sample(word_list, min(settings.EXERCISE_SIZE, len(word_list)))

    new_id = str(uuid.uuid4())
    try:
        store.write(
            session_meta_key(new_id),
            {"topic": topic, "item_ids": [item.id for item in items]},
        )
    except Exception as e:
        logger.error(f"Failed to save session {new_id}: {e}")
    engine = build_exercise(new_id, topic, items, store, judge, tracker)
    with exercises_lock:
        previous = exercises.pop(session_id, None) if session_id else None
        exercises[new_id] = engine
    if previous:
        previous.close()

    logger.info(f"New session: {new_id} [Topic: {topic}, Items: {len(items)}]")

    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=new_id,
        httponly=True,
        samesite="Lax",
    )
    return exercise_payload(engine)


@app.get("/api/exercise")
def get_exercise(engine: Optional[ExerciseEngine] = Depends(get_active_exercise)):
    if not engine:
        return invalid_session()
    return exercise_payload(engine)


@app.post("/api/exercise/answer")
async def submit_answer(
    answer: str = Form(...),
    engine: Optional[ExerciseEngine] = Depends(get_active_exercise),
):
    if not engine:
        return invalid_session()
    await engine.submit_answer(answer)
    return exercise_payload(engine)


@app.post("/api/exercise/skip")
def skip_question(engine: Optional[ExerciseEngine] = Depends(get_active_exercise)):
    if not engine:
        return invalid_session()
    engine.skip_question()
    return exercise_payload(engine)


@app.post("/api/exercise/continue")
def continue_to_next(
    engine: Optional[ExerciseEngine] = Depends(get_active_exercise),
):
    if not engine:
        return invalid_session()
    engine.continue_to_next()
    return exercise_payload(engine)


@app.post("/api/exercise/goto/{index}")
def go_to_item(
    index: int, engine: Optional[ExerciseEngine] = Depends(get_active_exercise)
):
    if not engine:
        return invalid_session()
    engine.go_to_item(index)
    return exercise_payload(engine)


@app.post("/api/exercise/reset")
def reset_exercise(engine: Optional[ExerciseEngine] = Depends(get_active_exercise)):
    if not engine:
        return invalid_session()
    engine.reset()
    return exercise_payload(engine)


@app.post("/api/exercise/fresh")
def start_fresh(engine: Optional[ExerciseEngine] = Depends(get_active_exercise)):
    if not engine:
        return invalid_session()
    engine.start_fresh()
    return exercise_payload(engine)


@app.post("/api/exercise/resume")
def resume_exercise(
    engine: Optional[ExerciseEngine] = Depends(get_active_exercise),
):
    if not engine:
        return invalid_session()
    engine.resume()
    return exercise_payload(engine)


@app.get("/api/mastery/{item_id}")
def get_mastery(item_id: str, tracker: MasteryTracker = Depends(get_tracker)):
    return tracker.get(item_id)


@app.post("/api/reset")
def reset_session(
    response: Response,
    session_id: Optional[str] = Depends(get_session_id),
    store: ProgressStore = Depends(get_store),
):
    if session_id:
        with exercises_lock:
            engine = exercises.pop(session_id, None)
        if engine:
            engine.close()
        store.delete(progress_key(session_id))
        store.delete(session_meta_key(session_id))
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return {"status": "success"}


if __name__ == "__main__":
    uvicorn.run("lingodrill.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
