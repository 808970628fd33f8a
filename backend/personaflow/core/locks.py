"""
周期任务互斥锁

同一个任务同一时刻只允许一个实例运行：
- RedisRunLock: 跨 worker 进程的分布式锁（SET NX EX）
- InProcessRunLock: 单进程内的 asyncio 锁，用于嵌入式调用和测试

拿不到锁时 hold() 产出 False，调用方直接跳过本次运行，不排队等待。
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

logger = logging.getLogger(__name__)


class RedisRunLock:
    """基于 Redis 的单飞锁"""

    # 只删除自己持有的锁，避免误删过期后被别人重新获取的锁
    RELEASE_SCRIPT = """
    if redis.call('GET', KEYS[1]) == ARGV[1] then
        return redis.call('DEL', KEYS[1])
    end
    return 0
    """

    def __init__(self, redis_client, ttl: int = 3600, prefix: str = "locks:personaflow:"):
        self.redis = redis_client
        self.ttl = ttl
        self.prefix = prefix

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[bool]:
        key = f"{self.prefix}{name}"
        token = uuid.uuid4().hex

        try:
            acquired = await self.redis.set(key, token, nx=True, ex=self.ttl)
        except Exception as e:
            # 锁服务不可用时宁可跳过，也不能并发运行
            logger.error(f"Run lock unavailable for {name}: {e}")
            acquired = False

        if not acquired:
            logger.info(f"Job {name} skipped: another run holds the lock")
            yield False
            return

        try:
            yield True
        finally:
            try:
                await self.redis.eval(self.RELEASE_SCRIPT, 1, key, token)
            except Exception as e:
                logger.warning(f"Failed to release run lock {name}: {e}")


class InProcessRunLock:
    """进程内单飞锁"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[bool]:
        lock = self._locks.setdefault(name, asyncio.Lock())
        if lock.locked():
            logger.info(f"Job {name} skipped: previous run still executing")
            yield False
            return

        async with lock:
            yield True


# 未显式传入锁时，同一进程内的所有任务实例共用这一把
default_run_lock = InProcessRunLock()
