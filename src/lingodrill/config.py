import os


class Settings:
    PROJECT_NAME: str = "lingodrill"
    DEBUG: bool = False
    LOG_DIR: str = "log"
    LOG_FILE: str = "lingodrill.log"
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    VOCAB_DIR: str = "vocabulary"
    EXERCISE_SIZE: int = 15
    SESSION_COOKIE_NAME: str = "exercise_session_id"

    PROGRESS_KEY_PREFIX: str = "exercise-progress-"
    PROGRESS_VERSION: int = 2
    PROGRESS_MAX_AGE_HOURS: int = 24
    MASTERY_KEY_PREFIX: str = "mastery-"
    LESSON_RESULT_KEY_PREFIX: str = "lesson-result-"

    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o")
    JUDGE_MAX_RETRIES: int = 3
    JUDGE_RETRY_BASE_DELAY: float = 1.0
    JUDGE_TIMEOUT: float = 30.0
    JUDGE_FAILURE_FEEDBACK: str = "Unable to verify answer."


settings = Settings()
