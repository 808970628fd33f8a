"""带 TTL 的临时缓存（亲和度画像等可随时重建的派生数据）"""
import asyncio
import json
import logging
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)


class TransientCache(Protocol):
    """临时缓存协作方接口"""

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        ...

    async def get(self, key: str) -> Optional[Any]:
        ...

    async def delete(self, key: str) -> bool:
        ...


class RedisTransientCache:
    """
    Redis 实现

    值以 JSON 存储；读取失败按"缓存不存在"处理，调用方自行回退。
    """

    def __init__(self, redis_client, timeout: float = 2.0):
        self.redis = redis_client
        self.timeout = timeout

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        try:
            payload = json.dumps(value, ensure_ascii=False)
            await asyncio.wait_for(self.redis.setex(key, int(ttl), payload), timeout=self.timeout)
            return True
        except Exception as e:
            logger.error(f"Cache set failed for {key}: {e}")
            return False

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await asyncio.wait_for(self.redis.get(key), timeout=self.timeout)
        except Exception as e:
            logger.warning(f"Cache get failed for {key}: {e}")
            return None

        if raw is None:
            return None

        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Corrupted cache entry {key}: {e}")
            return None

    async def delete(self, key: str) -> bool:
        try:
            await asyncio.wait_for(self.redis.delete(key), timeout=self.timeout)
            return True
        except Exception as e:
            logger.error(f"Cache delete failed for {key}: {e}")
            return False
