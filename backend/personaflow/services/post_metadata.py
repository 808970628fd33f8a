"""内容元数据（作者 / 分类）查询"""
import logging
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from personaflow.models.post import Post, PostCategory

logger = logging.getLogger(__name__)


class PostMetadata(Protocol):
    """内容元数据协作方接口"""

    async def get_author(self, post_id: int) -> Optional[int]:
        ...

    async def get_categories(self, post_id: int) -> FrozenSet[int]:
        ...


class SqlPostMetadata:
    """
    基于 posts / post_categories 镜像表的实现

    同一实例内对结果做记忆化，实例生命周期应限定在一次请求或一次批处理内。
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session
        self._authors: Dict[int, Optional[int]] = {}
        self._categories: Dict[int, FrozenSet[int]] = {}

    async def get_author(self, post_id: int) -> Optional[int]:
        if post_id in self._authors:
            return self._authors[post_id]

        result = await self.db.execute(select(Post.author_id).where(Post.id == post_id))
        author_id = result.scalar_one_or_none()
        author_id = int(author_id) if author_id else None
        self._authors[post_id] = author_id
        return author_id

    async def get_categories(self, post_id: int) -> FrozenSet[int]:
        if post_id in self._categories:
            return self._categories[post_id]

        result = await self.db.execute(
            select(PostCategory.category_id).where(PostCategory.post_id == post_id)
        )
        categories = frozenset(int(c) for c in result.scalars().all())
        self._categories[post_id] = categories
        return categories


class StaticPostMetadata:
    """内存映射实现（预加载的元数据或测试）"""

    def __init__(
        self,
        authors: Optional[Mapping[int, int]] = None,
        categories: Optional[Mapping[int, Iterable[int]]] = None,
    ):
        self.authors = dict(authors or {})
        self.categories = {pid: frozenset(cats) for pid, cats in (categories or {}).items()}

    async def get_author(self, post_id: int) -> Optional[int]:
        return self.authors.get(post_id)

    async def get_categories(self, post_id: int) -> FrozenSet[int]:
        return self.categories.get(post_id, frozenset())
