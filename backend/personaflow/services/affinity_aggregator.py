"""
亲和度聚合（周期任务，默认每 6 小时）

流程：
1. 选出最近 7 天事件数 >= 10 的访客，每次最多 100 个，按游标轮转
2. 每个访客取最近 30 天按文章汇总权重最高的 50 篇文章
3. 每篇文章的汇总权重完整地累加到它的每个分类和作者上（扇出，不均分）
4. 写入临时缓存，TTL 6 小时，整条覆盖；没有文章互动的访客不写

单个访客计算失败只记录日志并跳过，未覆盖到的访客由下一次运行补上。
"""
import bisect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from personaflow.core.clock import utcnow
from personaflow.core.config import Settings
from personaflow.core.locks import default_run_lock
from personaflow.services.event_store import EventQuery, EventStore
from personaflow.services.post_metadata import PostMetadata
from personaflow.services.transient_cache import TransientCache

logger = logging.getLogger(__name__)

JOB_NAME = "aggregate_affinities"


def _int_keyed(weights: Optional[Dict[Any, Any]]) -> Dict[int, float]:
    # JSON 往返后 key 会变成字符串
    return {int(k): float(v) for k, v in (weights or {}).items()}


@dataclass
class AffinityProfile:
    """访客亲和度画像（缓存条目，不存在即"尚无数据"）"""
    visitor_hash: str
    category_weights: Dict[int, float] = field(default_factory=dict)
    author_weights: Dict[int, float] = field(default_factory=dict)
    computed_at: datetime = field(default_factory=utcnow)

    @property
    def is_empty(self) -> bool:
        return not self.category_weights and not self.author_weights

    def to_dict(self) -> Dict[str, Any]:
        return {
            "visitor_hash": self.visitor_hash,
            "category_weights": {str(k): v for k, v in self.category_weights.items()},
            "author_weights": {str(k): v for k, v in self.author_weights.items()},
            "computed_at": self.computed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AffinityProfile":
        computed_at = data.get("computed_at")
        return cls(
            visitor_hash=data["visitor_hash"],
            category_weights=_int_keyed(data.get("category_weights")),
            author_weights=_int_keyed(data.get("author_weights")),
            computed_at=datetime.fromisoformat(computed_at) if computed_at else utcnow(),
        )


@dataclass
class AggregationReport:
    """单次运行结果"""
    started_at: datetime
    skipped: bool = False
    visitors_selected: int = 0
    profiles_written: int = 0
    empty_profiles: int = 0
    failed_visitors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "skipped" if self.skipped else "success",
            "visitors_selected": self.visitors_selected,
            "profiles_written": self.profiles_written,
            "empty_profiles": self.empty_profiles,
            "failed": len(self.failed_visitors),
            "timestamp": self.started_at.isoformat(),
        }


class AffinityAggregator:
    """访客亲和度聚合器"""

    def __init__(
        self,
        event_store: EventStore,
        cache: TransientCache,
        post_metadata: PostMetadata,
        settings: Settings,
        run_lock=None,
    ):
        self.event_store = event_store
        self.cache = cache
        self.post_metadata = post_metadata
        self.settings = settings
        self.run_lock = run_lock or default_run_lock

    def cache_key(self, visitor_hash: str) -> str:
        return f"{self.settings.AFFINITY_CACHE_PREFIX}{visitor_hash}"

    @property
    def cursor_key(self) -> str:
        return f"{self.settings.AFFINITY_CACHE_PREFIX}{JOB_NAME}:cursor"

    async def select_visitors(self, now: datetime) -> List[str]:
        """
        最近活跃且达到事件数阈值的访客

        按 visitor_hash 排序后从上次运行停下的位置继续取，到末尾后回绕，
        超出单次上限的访客在后续运行中轮到。
        """
        rows = await self.event_store.query(EventQuery(
            since=now - timedelta(days=self.settings.AFFINITY_ACTIVITY_WINDOW_DAYS),
            until=now,
            group_by=("visitor_hash",),
            min_count=self.settings.AFFINITY_MIN_EVENTS,
        ))
        eligible = sorted(row["visitor_hash"] for row in rows)

        cursor = await self.cache.get(self.cursor_key)
        start = bisect.bisect_right(eligible, cursor) if isinstance(cursor, str) else 0
        rotated = eligible[start:] + eligible[:start]
        return rotated[:self.settings.AFFINITY_MAX_VISITORS_PER_RUN]

    async def _save_cursor(self, last_visitor: str) -> None:
        ttl = self.settings.AFFINITY_ACTIVITY_WINDOW_DAYS * 24 * 3600
        if not await self.cache.set(self.cursor_key, last_visitor, ttl):
            logger.warning(f"Failed to save affinity cursor at {last_visitor}")

    async def compute_for_visitor(self, visitor_hash: str, now: Optional[datetime] = None) -> AffinityProfile:
        """
        计算单个访客的亲和度画像（不写缓存）

        Args:
            visitor_hash: 访客标识
            now: 计算时间点，默认当前 UTC 时间

        Returns:
            AffinityProfile
        """
        now = now or utcnow()
        rows = await self.event_store.query(EventQuery(
            visitor_hash=visitor_hash,
            require_target=True,
            since=now - timedelta(days=self.settings.AFFINITY_INTERACTION_WINDOW_DAYS),
            until=now,
            group_by=("target_id",),
            order_by="total_weight_desc",
            limit=self.settings.AFFINITY_MAX_POSTS,
        ))

        category_weights: Dict[int, float] = {}
        author_weights: Dict[int, float] = {}

        for row in rows:
            post_id = int(row["target_id"])
            weight = float(row["total_weight"])

            for category_id in await self.post_metadata.get_categories(post_id):
                category_weights[category_id] = category_weights.get(category_id, 0.0) + weight

            author_id = await self.post_metadata.get_author(post_id)
            if author_id:
                author_weights[author_id] = author_weights.get(author_id, 0.0) + weight

        return AffinityProfile(
            visitor_hash=visitor_hash,
            category_weights=category_weights,
            author_weights=author_weights,
            computed_at=now,
        )

    async def run(self, now: Optional[datetime] = None) -> AggregationReport:
        """执行一次聚合；上一次运行未结束时直接跳过"""
        now = now or utcnow()
        report = AggregationReport(started_at=now)

        async with self.run_lock.hold(JOB_NAME) as acquired:
            if not acquired:
                report.skipped = True
                return report

            visitors = await self.select_visitors(now)
            report.visitors_selected = len(visitors)
            logger.info(f"Aggregating affinities for {len(visitors)} visitors")

            for visitor_hash in visitors:
                try:
                    profile = await self.compute_for_visitor(visitor_hash, now)
                    if profile.is_empty:
                        # 没有文章互动时不写条目，读取方按"尚无数据"处理
                        report.empty_profiles += 1
                        continue
                    stored = await self.cache.set(
                        self.cache_key(visitor_hash),
                        profile.to_dict(),
                        self.settings.AFFINITY_CACHE_TTL_SECONDS,
                    )
                    if not stored:
                        raise RuntimeError("cache write rejected")
                    report.profiles_written += 1
                except Exception as e:
                    logger.error(f"Affinity aggregation failed for visitor {visitor_hash}: {e}")
                    report.failed_visitors.append(visitor_hash)

            if visitors:
                await self._save_cursor(visitors[-1])

        logger.info(
            f"Affinity aggregation complete: {report.profiles_written}/{report.visitors_selected} written, "
            f"{len(report.failed_visitors)} failed"
        )
        return report

    async def get_profile(self, visitor_hash: str) -> Optional[AffinityProfile]:
        """读取缓存中的画像，不存在或已损坏时返回 None"""
        data = await self.cache.get(self.cache_key(visitor_hash))
        if not data:
            return None
        try:
            return AffinityProfile.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed affinity entry for {visitor_hash}: {e}")
            return None

    async def invalidate(self, visitor_hash: str) -> bool:
        """完整画像重新计算后删除缓存条目，避免读到旧数据"""
        deleted = await self.cache.delete(self.cache_key(visitor_hash))
        if deleted:
            logger.debug(f"Affinity cache invalidated for {visitor_hash}")
        return deleted
