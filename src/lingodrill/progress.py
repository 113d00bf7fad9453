import json
from datetime import timedelta
from typing import Any, Dict, Optional, Protocol

from redis import Redis

from .config import settings


def progress_key(session_key: str) -> str:
    return f"{settings.PROGRESS_KEY_PREFIX}{session_key}"


# --- Storage Layer: Progress Stores ---
class ProgressStore(Protocol):
    """Keyed persistence of JSON-serializable blobs.

    Implementations may raise on any operation; callers decide whether a
    failure is fatal.
    """

    def read(self, key: str) -> Optional[Dict[str, Any]]: ...

    def write(self, key: str, value: Dict[str, Any]) -> None: ...

    def delete(self, key: str) -> None: ...


class RedisProgressStore:
    """Stores progress blobs as JSON strings in redis."""

    def __init__(self, client: Redis, ttl: Optional[timedelta] = None):
        self.client = client
        self.ttl = ttl

    def read(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self.client.get(key)
        if not raw:
            return None
        return json.loads(raw)

    def write(self, key: str, value: Dict[str, Any]) -> None:
        self.client.set(key, json.dumps(value), ex=self.ttl)

    def delete(self, key: str) -> None:
        self.client.delete(key)


class MemoryProgressStore:
    """In-process store. Values are copied through JSON so callers never
    share mutable state with the store."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def read(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def write(self, key: str, value: Dict[str, Any]) -> None:
        self._data[key] = json.dumps(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data
