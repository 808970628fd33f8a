"""信号与排除规则的汇总统计（管理后台用）"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from personaflow.core.clock import utcnow
from personaflow.services.event_store import EventQuery, EventStore
from personaflow.services.exclusion_service import ExclusionRepository
from personaflow.services.signal_catalog import (
    BASE_SIGNAL_TYPES,
    NEGATIVE_SIGNAL_TYPES,
    SOCIAL_SIGNAL_TYPES,
)

logger = logging.getLogger(__name__)

RECENT_WINDOW_DAYS = 7
TOP_SIGNALS_WINDOW_DAYS = 30
TOP_SIGNALS_LIMIT = 10


class SignalStatsService:
    """汇总统计"""

    def __init__(self, event_store: EventStore, exclusions: ExclusionRepository):
        self.event_store = event_store
        self.exclusions = exclusions

    async def get_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        获取统计数据

        Returns:
            {
                "total_exclusions": int,
                "exclusions_by_type": [{"exclusion_type", "count"}...]  按数量倒序,
                "negative_events_7d": int,
                "social_events_7d": int,
                "top_extended_signals": [{"event_type", "count"}...]  最近 30 天前 10,
            }
        """
        now = now or utcnow()
        recent = now - timedelta(days=RECENT_WINDOW_DAYS)

        by_type = await self.exclusions.count_by_type()
        exclusions_by_type = [
            {"exclusion_type": kind, "count": count}
            for kind, count in sorted(by_type.items(), key=lambda item: (-item[1], item[0]))
        ]

        negative_events = await self.event_store.count(
            EventQuery(event_types=NEGATIVE_SIGNAL_TYPES, since=recent, until=now)
        )
        social_events = await self.event_store.count(
            EventQuery(event_types=SOCIAL_SIGNAL_TYPES, since=recent, until=now)
        )

        rows = await self.event_store.query(EventQuery(
            exclude_types=BASE_SIGNAL_TYPES,
            since=now - timedelta(days=TOP_SIGNALS_WINDOW_DAYS),
            until=now,
            group_by=("event_type",),
            order_by="event_count_desc",
            limit=TOP_SIGNALS_LIMIT,
        ))

        return {
            "total_exclusions": sum(by_type.values()),
            "exclusions_by_type": exclusions_by_type,
            "negative_events_7d": negative_events,
            "social_events_7d": social_events,
            "top_extended_signals": [
                {"event_type": row["event_type"], "count": row["event_count"]} for row in rows
            ],
        }
