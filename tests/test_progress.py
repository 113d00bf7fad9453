"""
Unit tests for progress stores.
"""
from datetime import timedelta

from conftest import FakeRedis
from lingodrill.progress import MemoryProgressStore, RedisProgressStore


class TestRedisProgressStore:
    def test_round_trip_and_expiry(self):
        client = FakeRedis()
        store = RedisProgressStore(client, ttl=timedelta(hours=24))

        store.write("k", {"queue": ["a"], "version": 2})

        assert isinstance(client.data["k"], str)
        assert client.expiry["k"] == timedelta(hours=24)
        assert store.read("k") == {"queue": ["a"], "version": 2}

    def test_missing_and_deleted(self):
        store = RedisProgressStore(FakeRedis())
        assert store.read("k") is None

        store.write("k", {"a": 1})
        store.delete("k")
        store.delete("k")

        assert store.read("k") is None


class TestMemoryProgressStore:
    def test_values_are_copied(self):
        store = MemoryProgressStore()
        value = {"queue": ["a"]}

        store.write("k", value)
        value["queue"].append("b")
        store.read("k")["queue"].append("c")

        assert store.read("k") == {"queue": ["a"]}
        assert "k" in store
