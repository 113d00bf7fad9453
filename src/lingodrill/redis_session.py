from datetime import timedelta
from typing import Optional

import redis

from .config import settings
from .progress import RedisProgressStore

redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)


def get_redis() -> redis.Redis:
    return redis_client


def redis_progress_store(ttl: Optional[timedelta] = None) -> RedisProgressStore:
    """Progress store on the shared client; keys expire after ``ttl`` if given."""
    return RedisProgressStore(get_redis(), ttl=ttl)
