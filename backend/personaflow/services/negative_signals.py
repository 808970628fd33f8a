"""
负面信号 -> 排除规则

事件入库后调用：
- hide_post                   -> 隐藏该文章
- mute_author / block_author  -> 屏蔽该文章作者（作者未知时跳过）
- dismiss                     -> 对该文章主分类（id 最小者）不感兴趣
"""
import logging
from typing import Dict, Optional

from personaflow.services.event_store import Event
from personaflow.services.exclusion_service import ExclusionCache, ExclusionService, ExclusionType
from personaflow.services.post_metadata import PostMetadata

logger = logging.getLogger(__name__)

EXCLUSION_SIGNALS: Dict[str, ExclusionType] = {
    "hide_post": ExclusionType.HIDE_POST,
    "mute_author": ExclusionType.MUTE_AUTHOR,
    "block_author": ExclusionType.BLOCK_AUTHOR,
    "dismiss": ExclusionType.DISMISS_CATEGORY,
}


class NegativeSignalProcessor:
    """把显式负面信号转换成持久的排除规则"""

    def __init__(
        self,
        exclusions: ExclusionService,
        post_metadata: PostMetadata,
        enabled: bool = True,
    ):
        self.exclusions = exclusions
        self.post_metadata = post_metadata
        self.enabled = enabled

    async def _resolve_target(self, kind: ExclusionType, post_id: int) -> Optional[int]:
        if kind is ExclusionType.HIDE_POST:
            return post_id
        if kind in (ExclusionType.MUTE_AUTHOR, ExclusionType.BLOCK_AUTHOR):
            return await self.post_metadata.get_author(post_id)

        categories = await self.post_metadata.get_categories(post_id)
        return min(categories) if categories else None

    async def process_event(self, event: Event, cache: Optional[ExclusionCache] = None) -> bool:
        """
        处理一条已入库事件

        Returns:
            是否写入了排除规则
        """
        if not self.enabled:
            return False

        kind = EXCLUSION_SIGNALS.get(event.event_type)
        if kind is None or not event.target_id:
            return False

        target_id = await self._resolve_target(kind, int(event.target_id))
        if not target_id:
            logger.debug(f"No {kind.value} target for post {event.target_id}, skipping")
            return False

        return await self.exclusions.add_exclusion(
            event.visitor_hash,
            kind.value,
            target_id,
            cache=cache,
        )

    async def __call__(self, event: Event) -> None:
        await self.process_event(event)
