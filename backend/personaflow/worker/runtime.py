"""Worker 任务的公共运行时：事件循环、连接资源"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Tuple

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession

from personaflow.core.config import settings
from personaflow.core.database import AsyncSessionLocal, close_db
from personaflow.core.locks import RedisRunLock

logger = logging.getLogger(__name__)


def run_async(coro):
    """
    统一的异步任务执行器，避免事件循环冲突
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@asynccontextmanager
async def job_resources() -> AsyncIterator[Tuple[AsyncSession, "redis.Redis", RedisRunLock]]:
    """
    单次任务运行所需的数据库会话、Redis 客户端和任务锁

    每次 run_async 都是新的事件循环，连接不能跨循环复用，
    所以 Redis 客户端按次创建，结束时释放连接池。
    """
    r = redis.from_url(settings.REDIS_URL, decode_responses=True)
    lock = RedisRunLock(r, ttl=settings.JOB_LOCK_TTL_SECONDS, prefix=settings.JOB_LOCK_PREFIX)
    try:
        async with AsyncSessionLocal() as db:
            yield db, r, lock
    finally:
        try:
            await r.aclose()
        except Exception as e:
            logger.warning(f"Failed to close redis client: {e}")
        await close_db()
