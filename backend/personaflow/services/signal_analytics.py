"""
信号分析报表（管理后台用）

- 互动漏斗：浏览 -> 停留 15s+ -> 滚动 50%+ -> 读完 -> 推荐点击/互动
- 电商漏斗：商品浏览 -> 加购 -> 开始结账 -> 下单，附放弃加购率和热门商品
- 会话洞察：设备、来源、会话深度、回访占比
- 内容排行、按天时间线

所有报表都以 DateRange 为统计区间（首日 00:00 到末日 23:59:59.999999，含两端）。
"""
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Optional

from personaflow.core.clock import utcnow
from personaflow.services.event_store import EventQuery, EventStore

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_DAYS = 30
PERIOD_PATTERN = re.compile(r"^(\d+)d$")

DWELL_THRESHOLD_S = 15
SCROLL_THRESHOLD_PCT = 50
CONTENT_LIMIT = 25
TOP_PRODUCTS_LIMIT = 10

PURCHASE_TYPES = frozenset({"purchase_complete", "checkout_complete"})
RECOMMENDATION_ACTION_TYPES = frozenset({"related_post_click", "like", "bookmark_save"})
PRODUCT_SIGNAL_TYPES = frozenset({
    "product_view", "add_to_cart", "add_to_wishlist",
    "purchase_complete", "checkout_complete", "product_review",
    "product_rating", "cross_sell_click", "product_tab_switch",
})

DEVICE_TYPES = ("desktop", "mobile", "tablet")
REFERRAL_SOURCES = ("organic", "direct", "social", "referral", "email", "internal")

CONTENT_SORTS = {
    "signals": "total_signals",
    "visitors": "unique_visitors",
    "dwell": "avg_dwell_time",
    "read_rate": "read_completion_rate",
}


@dataclass(frozen=True)
class DateRange:
    """按天计的统计区间（两端都包含）"""
    start: date
    end: date

    @property
    def since(self) -> datetime:
        return datetime.combine(self.start, time.min)

    @property
    def until(self) -> datetime:
        return datetime.combine(self.end, time.max)

    def days(self) -> List[date]:
        return [self.start + timedelta(days=i) for i in range((self.end - self.start).days + 1)]


def _parse_day(value: str) -> date:
    return datetime.fromisoformat(value.strip()).date()


def parse_date_range(
    period: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    today: Optional[date] = None,
) -> DateRange:
    """
    解析统计区间

    - start 和 end 都给出时按自定义区间处理，解析失败或 start 晚于 end 时回退到最近 30 天
    - 否则按 period（"7d"、"90d" 这类）取最近 N 天（含今天），格式不对或 N < 1 时取 30 天
    """
    today = today or utcnow().date()

    if start and end:
        try:
            start_day, end_day = _parse_day(start), _parse_day(end)
        except ValueError:
            logger.warning(f"Invalid analytics range {start!r}..{end!r}, falling back to {DEFAULT_PERIOD_DAYS}d")
        else:
            if start_day <= end_day:
                return DateRange(start_day, end_day)
            logger.warning(f"Analytics range start {start_day} is after end {end_day}, falling back")
        return DateRange(today - timedelta(days=DEFAULT_PERIOD_DAYS - 1), today)

    days = DEFAULT_PERIOD_DAYS
    match = PERIOD_PATTERN.match(period or "")
    if match and int(match.group(1)) >= 1:
        days = int(match.group(1))
    return DateRange(today - timedelta(days=days - 1), today)


def _mean(values: Iterable[float]) -> float:
    values = list(values)
    return round(sum(values) / len(values), 2) if values else 0.0


class SignalAnalyticsService:
    """信号分析报表"""

    def __init__(self, event_store: EventStore):
        self.event_store = event_store

    def _query(self, date_range: DateRange, **kwargs) -> EventQuery:
        return EventQuery(since=date_range.since, until=date_range.until, **kwargs)

    async def _count(self, date_range: DateRange, event_types: Iterable[str], **kwargs) -> int:
        return await self.event_store.count(
            self._query(date_range, event_types=frozenset(event_types), **kwargs)
        )

    async def _group_counts(self, date_range: DateRange, field: str, **kwargs) -> Dict[Any, int]:
        rows = await self.event_store.query(self._query(date_range, group_by=(field,), **kwargs))
        return {row[field]: row["event_count"] for row in rows}

    async def _meta_breakdown(self, date_range: DateRange, event_type: str, key: str, buckets) -> Dict[str, int]:
        counts = {bucket: 0 for bucket in buckets}
        events = await self.event_store.fetch(self._query(date_range, event_types=frozenset({event_type})))
        for event in events:
            value = str((event.meta or {}).get(key) or "").lower()
            if value in counts:
                counts[value] += 1
        return counts

    async def get_funnel(self, date_range: DateRange) -> Dict[str, Any]:
        """内容互动漏斗"""
        steps = [
            ("Page Views", await self._count(date_range, {"page_view"})),
            ("15s+ Dwell Time", await self._count(date_range, {"dwell_time"}, min_value=DWELL_THRESHOLD_S)),
            ("50%+ Scroll Depth", await self._count(date_range, {"scroll_depth"}, min_value=SCROLL_THRESHOLD_PCT)),
            ("Read Completion", await self._count(date_range, {"read_completion"})),
            ("Rec Click / Action", await self._count(date_range, RECOMMENDATION_ACTION_TYPES)),
        ]
        return {"steps": [{"label": label, "count": count} for label, count in steps]}

    async def get_commerce(self, date_range: DateRange) -> Dict[str, Any]:
        """
        电商漏斗

        Returns:
            {
                "funnel": [{"label", "count"}...],
                "cart_abandonment_rate": 1 - 下单数 / 加购数，限定在 0-1,
                "avg_order_signals": 下单访客在区间内的平均事件数,
                "top_products": [{"post_id", "signals", "purchases"}...] 前 10,
            }
        """
        product_views = await self._count(date_range, {"product_view"})
        add_to_cart = await self._count(date_range, {"add_to_cart"})
        checkout_start = await self._count(date_range, {"checkout_start"})
        purchases = await self._count(date_range, PURCHASE_TYPES)

        abandonment_rate = 0.0
        if add_to_cart > 0:
            abandonment_rate = max(0.0, min(1.0, round(1.0 - purchases / add_to_cart, 4)))

        purchasers = await self._group_counts(date_range, "visitor_hash", event_types=PURCHASE_TYPES)
        avg_order_signals = 0.0
        if purchasers:
            per_visitor = await self._group_counts(date_range, "visitor_hash")
            avg_order_signals = _mean(per_visitor[v] for v in purchasers if v in per_visitor)

        top_rows = await self.event_store.query(self._query(
            date_range,
            event_types=PRODUCT_SIGNAL_TYPES,
            require_target=True,
            group_by=("target_id",),
            order_by="event_count_desc",
            limit=TOP_PRODUCTS_LIMIT,
        ))
        purchases_by_product = await self._group_counts(
            date_range, "target_id", event_types=PURCHASE_TYPES, require_target=True
        )

        return {
            "funnel": [
                {"label": "Product Views", "count": product_views},
                {"label": "Add to Cart", "count": add_to_cart},
                {"label": "Checkout Start", "count": checkout_start},
                {"label": "Purchase Complete", "count": purchases},
            ],
            "cart_abandonment_rate": abandonment_rate,
            "avg_order_signals": avg_order_signals,
            "top_products": [
                {
                    "post_id": int(row["target_id"]),
                    "signals": row["event_count"],
                    "purchases": purchases_by_product.get(row["target_id"], 0),
                }
                for row in top_rows
            ],
        }

    async def get_sessions(self, date_range: DateRange) -> Dict[str, Any]:
        """会话洞察"""
        devices = await self._meta_breakdown(date_range, "device_type", "device", DEVICE_TYPES)
        referrals = await self._meta_breakdown(date_range, "referral_source", "source", REFERRAL_SOURCES)

        depth_events = await self.event_store.fetch(
            self._query(date_range, event_types=frozenset({"session_depth"}))
        )
        avg_session_depth = _mean(e.event_value for e in depth_events if e.event_value is not None)

        returning = await self._group_counts(date_range, "visitor_hash", event_types=frozenset({"return_visitor"}))
        visitors = await self._group_counts(date_range, "visitor_hash")
        return_visitor_pct = round(len(returning) / len(visitors), 4) if visitors else 0.0

        total_events = await self.event_store.count(self._query(date_range))
        sessions = await self._group_counts(date_range, "session_id")
        avg_signals_per_session = round(total_events / len(sessions), 2) if sessions else 0.0

        return {
            "devices": devices,
            "referrals": referrals,
            "avg_session_depth": avg_session_depth,
            "return_visitor_pct": return_visitor_pct,
            "avg_signals_per_session": avg_signals_per_session,
            "total_sessions": len(sessions),
        }

    async def get_content(self, date_range: DateRange, sort: str = "signals") -> Dict[str, Any]:
        """
        内容排行（前 25）

        Args:
            sort: signals / visitors / dwell / read_rate

        Raises:
            ValueError: 不支持的排序方式
        """
        if sort not in CONTENT_SORTS:
            raise ValueError(f"Unsupported content sort: {sort}")

        totals = await self._group_counts(date_range, "target_id", require_target=True)
        pairs = await self.event_store.query(self._query(
            date_range, require_target=True, group_by=("target_id", "visitor_hash"),
        ))
        unique_visitors: Dict[int, int] = {}
        for row in pairs:
            unique_visitors[row["target_id"]] = unique_visitors.get(row["target_id"], 0) + 1

        dwell_events = await self.event_store.fetch(self._query(
            date_range, event_types=frozenset({"dwell_time"}), require_target=True,
        ))
        dwell_values: Dict[int, List[float]] = {}
        for event in dwell_events:
            if event.event_value is not None:
                dwell_values.setdefault(event.target_id, []).append(event.event_value)

        views = await self._group_counts(date_range, "target_id", event_types=frozenset({"page_view"}))
        reads = await self._group_counts(date_range, "target_id", event_types=frozenset({"read_completion"}))

        posts = []
        for post_id, signals in totals.items():
            page_views = views.get(post_id, 0)
            posts.append({
                "post_id": int(post_id),
                "total_signals": signals,
                "unique_visitors": unique_visitors.get(post_id, 0),
                "avg_dwell_time": _mean(dwell_values.get(post_id, [])),
                "read_completion_rate": round(reads.get(post_id, 0) / page_views, 2) if page_views else 0.0,
            })

        metric = CONTENT_SORTS[sort]
        posts.sort(key=lambda p: (-p[metric], p["post_id"]))
        return {"posts": posts[:CONTENT_LIMIT]}

    async def get_timeline(self, date_range: DateRange) -> Dict[str, Any]:
        """按天的事件数和独立访客数，没有数据的日期补 0"""
        labels, events, visitors = [], [], []
        for day in date_range.days():
            day_range = DateRange(day, day)
            labels.append(day.isoformat())
            events.append(await self.event_store.count(self._query(day_range)))
            visitors.append(len(await self._group_counts(day_range, "visitor_hash")))

        return {"labels": labels, "datasets": {"events": events, "visitors": visitors}}
