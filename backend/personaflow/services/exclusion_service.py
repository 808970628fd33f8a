"""
访客排除规则服务

四种排除类型：
- hide_post: 隐藏某篇文章
- mute_author / block_author: 屏蔽某位作者
- dismiss_category: 不感兴趣的分类（降权而非移除）

设计原则：
- 唯一键 (visitor_hash, exclusion_type, target_id)，重复添加只刷新 created_at
- 删除必须校验归属，防止跨访客删除
- 列表缓存由调用方传入的 ExclusionCache 承载，生命周期为一次打分过程
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Protocol

from sqlalchemy import select, delete, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from personaflow.core.clock import utcnow
from personaflow.core.errors import ExclusionNotFound, InvalidExclusionType
from personaflow.models.user_exclusion import UserExclusion

logger = logging.getLogger(__name__)


class ExclusionType(str, Enum):
    """排除类型"""
    HIDE_POST = "hide_post"
    MUTE_AUTHOR = "mute_author"
    BLOCK_AUTHOR = "block_author"
    DISMISS_CATEGORY = "dismiss_category"


ALLOWED_EXCLUSION_TYPES = frozenset(t.value for t in ExclusionType)


def validate_exclusion_type(exclusion_type) -> ExclusionType:
    """校验排除类型，非法时抛出 InvalidExclusionType"""
    try:
        return ExclusionType(exclusion_type)
    except ValueError:
        raise InvalidExclusionType(str(exclusion_type))


@dataclass(frozen=True)
class ExclusionRule:
    """排除规则"""
    id: int
    visitor_hash: str
    exclusion_type: str
    target_id: int
    created_at: datetime
    user_id: Optional[int] = None


class ExclusionCache:
    """
    请求级排除列表缓存

    由调用方创建并在一次推荐计算内传递，不挂在长生命周期对象上。
    """

    def __init__(self):
        self._entries: Dict[str, List[ExclusionRule]] = {}

    def get(self, visitor_hash: str) -> Optional[List[ExclusionRule]]:
        return self._entries.get(visitor_hash)

    def put(self, visitor_hash: str, rules: List[ExclusionRule]) -> None:
        self._entries[visitor_hash] = rules

    def invalidate(self, visitor_hash: str) -> None:
        self._entries.pop(visitor_hash, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, visitor_hash: str) -> bool:
        return visitor_hash in self._entries


class ExclusionRepository(Protocol):
    """排除规则存储接口（行级原子 upsert / delete）"""

    async def upsert(
        self, visitor_hash: str, exclusion_type: str, target_id: int,
        user_id: Optional[int], created_at: datetime
    ) -> None:
        ...

    async def delete(self, exclusion_id: int, visitor_hash: str) -> None:
        ...

    async def list_for_visitor(self, visitor_hash: str) -> List[ExclusionRule]:
        ...

    async def count_for_visitor(self, visitor_hash: str) -> int:
        ...

    async def count_by_type(self) -> Dict[str, int]:
        ...


def _to_rule(row: UserExclusion) -> ExclusionRule:
    return ExclusionRule(
        id=int(row.id),
        visitor_hash=row.visitor_hash,
        exclusion_type=row.exclusion_type,
        target_id=int(row.target_id),
        created_at=row.created_at,
        user_id=row.user_id or None,
    )


class SqlExclusionRepository:
    """基于 PostgreSQL 的排除规则存储"""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def upsert(
        self, visitor_hash: str, exclusion_type: str, target_id: int,
        user_id: Optional[int], created_at: datetime
    ) -> None:
        stmt = pg_insert(UserExclusion).values(
            visitor_hash=visitor_hash,
            user_id=user_id or 0,
            exclusion_type=exclusion_type,
            target_id=target_id,
            created_at=created_at,
        )
        # 并发写同一个键时后写者生效
        stmt = stmt.on_conflict_do_update(
            constraint="user_type_target",
            set_={"created_at": stmt.excluded.created_at, "user_id": stmt.excluded.user_id},
        )
        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def delete(self, exclusion_id: int, visitor_hash: str) -> None:
        try:
            result = await self.db.execute(
                delete(UserExclusion).where(
                    UserExclusion.id == exclusion_id,
                    UserExclusion.visitor_hash == visitor_hash,
                )
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if not result.rowcount:
            raise ExclusionNotFound(exclusion_id, visitor_hash)

    async def list_for_visitor(self, visitor_hash: str) -> List[ExclusionRule]:
        result = await self.db.execute(
            select(UserExclusion)
            .where(UserExclusion.visitor_hash == visitor_hash)
            .order_by(UserExclusion.created_at.desc(), UserExclusion.id.desc())
        )
        return [_to_rule(row) for row in result.scalars().all()]

    async def count_for_visitor(self, visitor_hash: str) -> int:
        result = await self.db.execute(
            select(func.count(UserExclusion.id)).where(UserExclusion.visitor_hash == visitor_hash)
        )
        return int(result.scalar() or 0)

    async def count_by_type(self) -> Dict[str, int]:
        result = await self.db.execute(
            select(UserExclusion.exclusion_type, func.count(UserExclusion.id))
            .group_by(UserExclusion.exclusion_type)
        )
        return {row[0]: int(row[1]) for row in result.all()}


class ExclusionService:
    """
    排除规则服务

    对外提供 add / remove / list，负责校验和请求级缓存失效。
    """

    def __init__(self, repository: ExclusionRepository):
        self.repository = repository

    async def add_exclusion(
        self,
        visitor_hash: str,
        exclusion_type: str,
        target_id: int,
        user_id: Optional[int] = None,
        cache: Optional[ExclusionCache] = None,
    ) -> bool:
        """
        添加排除规则（upsert）

        Returns:
            是否写入成功；类型非法或目标无效时返回 False 且不写入
        """
        try:
            kind = validate_exclusion_type(exclusion_type)
        except InvalidExclusionType as e:
            logger.warning(f"Rejected exclusion for {visitor_hash}: {e}")
            return False

        target_id = int(target_id)
        if target_id <= 0:
            logger.warning(f"Rejected exclusion for {visitor_hash}: invalid target_id {target_id}")
            return False

        await self.repository.upsert(visitor_hash, kind.value, target_id, user_id, utcnow())

        if cache is not None:
            cache.invalidate(visitor_hash)

        logger.info(f"Exclusion upserted: visitor={visitor_hash}, type={kind.value}, target={target_id}")
        return True

    async def remove_exclusion(
        self,
        exclusion_id: int,
        visitor_hash: str,
        cache: Optional[ExclusionCache] = None,
    ) -> bool:
        """
        删除排除规则（仅限本人）

        Returns:
            是否删除；不存在或不属于该访客时返回 False
        """
        try:
            await self.repository.delete(int(exclusion_id), visitor_hash)
        except ExclusionNotFound as e:
            logger.info(str(e))
            return False
        finally:
            if cache is not None:
                cache.invalidate(visitor_hash)

        logger.info(f"Exclusion removed: id={exclusion_id}, visitor={visitor_hash}")
        return True

    async def list_exclusions(
        self,
        visitor_hash: str,
        cache: Optional[ExclusionCache] = None,
    ) -> List[ExclusionRule]:
        """获取访客的排除规则（按创建时间倒序）"""
        if cache is not None:
            cached = cache.get(visitor_hash)
            if cached is not None:
                return cached

        rules = await self.repository.list_for_visitor(visitor_hash)

        if cache is not None:
            cache.put(visitor_hash, rules)
        return rules

    async def count_exclusions(self, visitor_hash: str) -> int:
        return await self.repository.count_for_visitor(visitor_hash)
