"""数据库连接管理"""
import asyncio
import logging
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import text

from personaflow.core.config import settings

logger = logging.getLogger(__name__)


async def wait_for_postgres(max_retries: int = 30, delay: float = 2.0):
    """等待 PostgreSQL 就绪（带重试）"""
    for attempt in range(max_retries):
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
                logger.info(f"PostgreSQL connected (attempt {attempt + 1})")
                return True
        except Exception as e:
            logger.warning(f"Waiting for PostgreSQL... ({attempt + 1}/{max_retries}): {e}")
            await asyncio.sleep(delay)
    raise RuntimeError("PostgreSQL connection failed after max retries")

# SQLAlchemy Base
Base = declarative_base()

# PostgreSQL 异步引擎
engine = create_async_engine(
    settings.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://"),
    echo=settings.DEBUG,
    pool_size=10,
    max_overflow=20
)

# 异步会话工厂
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def init_db():
    """创建全部表（已存在的表跳过）"""
    import personaflow.models  # noqa: F401  注册全部表

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """关闭连接池"""
    await engine.dispose()
