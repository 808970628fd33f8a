import pytest

from personaflow.services.transient_cache import RedisTransientCache


class DummyRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.broken = False

    async def setex(self, key, ttl, value):
        if self.broken:
            raise ConnectionError("redis down")
        self.store[key] = value
        self.ttls[key] = ttl

    async def get(self, key):
        if self.broken:
            raise ConnectionError("redis down")
        return self.store.get(key)

    async def delete(self, key):
        if self.broken:
            raise ConnectionError("redis down")
        self.store.pop(key, None)


@pytest.mark.asyncio
async def test_set_get_delete():
    redis = DummyRedis()
    cache = RedisTransientCache(redis)

    assert await cache.set("k", {"a": 1}, 60) is True
    assert redis.ttls["k"] == 60
    assert await cache.get("k") == {"a": 1}
    assert await cache.delete("k") is True
    assert await cache.get("k") is None


@pytest.mark.asyncio
async def test_corrupted_entry_reads_as_missing():
    redis = DummyRedis()
    redis.store["k"] = "{not json"
    assert await RedisTransientCache(redis).get("k") is None


@pytest.mark.asyncio
async def test_backend_errors_are_reported_not_raised():
    redis = DummyRedis()
    redis.broken = True
    cache = RedisTransientCache(redis)

    assert await cache.set("k", 1, 60) is False
    assert await cache.get("k") is None
    assert await cache.delete("k") is False
