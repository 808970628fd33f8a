"""
事件存储

- Event: 不可变的行为信号事件
- EventQuery: 通用查询条件（类型过滤、时间范围、访客/会话过滤、分组聚合）
- EventStore / EventSink: 协作方接口，批处理任务和信号生产方只依赖接口
- SqlEventStore: 基于 SQLAlchemy 异步会话的实现
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Protocol, Tuple

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from personaflow.core.clock import utcnow
from personaflow.models.signal_event import SignalEvent

logger = logging.getLogger(__name__)

GROUPABLE_FIELDS = ("visitor_hash", "session_id", "event_type", "target_id")
ORDERINGS = (
    "total_weight_desc",
    "event_count_desc",
    "first_seen_asc",
    "created_at_asc",
    "created_at_desc",
)


@dataclass(frozen=True)
class Event:
    """行为信号事件（入库后不可变）"""
    visitor_hash: str
    session_id: str
    event_type: str
    target_id: int = 0
    weight: float = 0.0
    event_value: Optional[float] = None
    meta: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None


@dataclass(frozen=True)
class EventQuery:
    """
    事件查询条件

    时间范围: since（默认含边界，since_inclusive=False 时不含）~ until（含边界）
    min_value: 只保留 event_value >= min_value 的事件
    分组: group_by 非空时 query() 返回聚合行，
          每行包含分组字段 + event_count / total_weight / first_seen / last_seen
    """
    event_types: Optional[FrozenSet[str]] = None
    exclude_types: Optional[FrozenSet[str]] = None
    visitor_hash: Optional[str] = None
    session_id: Optional[str] = None
    target_id: Optional[int] = None
    require_target: bool = False
    min_value: Optional[float] = None
    since: Optional[datetime] = None
    since_inclusive: bool = True
    until: Optional[datetime] = None
    group_by: Tuple[str, ...] = ()
    min_count: Optional[int] = None
    order_by: Optional[str] = None
    limit: Optional[int] = None

    def __post_init__(self):
        unknown = set(self.group_by) - set(GROUPABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported group_by fields: {sorted(unknown)}")
        if self.order_by is not None and self.order_by not in ORDERINGS:
            raise ValueError(f"Unsupported order_by: {self.order_by}")
        if self.min_count is not None and not self.group_by:
            raise ValueError("min_count requires group_by")


class EventSink(Protocol):
    """事件写入方"""

    async def append(self, event: Event) -> int:
        ...


class EventStore(EventSink, Protocol):
    """事件存储协作方接口"""

    async def fetch(self, query: EventQuery) -> List[Event]:
        ...

    async def count(self, query: EventQuery) -> int:
        ...

    async def query(self, query: EventQuery) -> List[Dict[str, Any]]:
        ...


def _column(name: str):
    return SignalEvent.post_id if name == "target_id" else getattr(SignalEvent, name)


def _to_event(row: SignalEvent) -> Event:
    return Event(
        id=row.id,
        visitor_hash=row.visitor_hash,
        session_id=row.session_id,
        event_type=row.event_type,
        target_id=int(row.post_id or 0),
        weight=float(row.weight or 0.0),
        event_value=row.event_value,
        meta=row.meta,
        created_at=row.created_at,
    )


class SqlEventStore:
    """基于 PostgreSQL 的事件存储"""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    def _conditions(self, q: EventQuery) -> list:
        conditions = []
        if q.event_types is not None:
            conditions.append(SignalEvent.event_type.in_(sorted(q.event_types)))
        if q.exclude_types:
            conditions.append(SignalEvent.event_type.not_in(sorted(q.exclude_types)))
        if q.visitor_hash is not None:
            conditions.append(SignalEvent.visitor_hash == q.visitor_hash)
        if q.session_id is not None:
            conditions.append(SignalEvent.session_id == q.session_id)
        if q.target_id is not None:
            conditions.append(SignalEvent.post_id == q.target_id)
        if q.require_target:
            conditions.append(SignalEvent.post_id > 0)
        if q.min_value is not None:
            conditions.append(SignalEvent.event_value >= q.min_value)
        if q.since is not None:
            if q.since_inclusive:
                conditions.append(SignalEvent.created_at >= q.since)
            else:
                conditions.append(SignalEvent.created_at > q.since)
        if q.until is not None:
            conditions.append(SignalEvent.created_at <= q.until)
        return conditions

    async def append(self, event: Event) -> int:
        row = SignalEvent(
            visitor_hash=event.visitor_hash,
            session_id=event.session_id,
            event_type=event.event_type,
            post_id=int(event.target_id or 0),
            event_value=event.event_value,
            weight=float(event.weight),
            meta=event.meta,
            created_at=event.created_at,
        )
        try:
            self.db.add(row)
            await self.db.commit()
            await self.db.refresh(row)
        except Exception as e:
            logger.error(f"Failed to append {event.event_type} event for {event.visitor_hash}: {e}")
            await self.db.rollback()
            raise
        return row.id

    async def fetch(self, query: EventQuery) -> List[Event]:
        stmt = select(SignalEvent).where(and_(*self._conditions(query)))
        if query.order_by == "created_at_desc":
            stmt = stmt.order_by(SignalEvent.created_at.desc(), SignalEvent.id.desc())
        else:
            stmt = stmt.order_by(SignalEvent.created_at.asc(), SignalEvent.id.asc())
        if query.limit is not None:
            stmt = stmt.limit(query.limit)

        result = await self.db.execute(stmt)
        return [_to_event(row) for row in result.scalars().all()]

    async def count(self, query: EventQuery) -> int:
        stmt = select(func.count(SignalEvent.id)).where(and_(*self._conditions(query)))
        result = await self.db.execute(stmt)
        return int(result.scalar() or 0)

    async def query(self, query: EventQuery) -> List[Dict[str, Any]]:
        group_columns = [_column(name).label(name) for name in query.group_by]
        event_count = func.count(SignalEvent.id).label("event_count")
        total_weight = func.coalesce(func.sum(SignalEvent.weight), 0.0).label("total_weight")
        first_seen = func.min(SignalEvent.created_at).label("first_seen")
        last_seen = func.max(SignalEvent.created_at).label("last_seen")

        stmt = select(*group_columns, event_count, total_weight, first_seen, last_seen).where(
            and_(*self._conditions(query))
        )
        if query.group_by:
            stmt = stmt.group_by(*[_column(name) for name in query.group_by])
        if query.min_count is not None:
            stmt = stmt.having(func.count(SignalEvent.id) >= query.min_count)

        if query.order_by == "total_weight_desc":
            stmt = stmt.order_by(total_weight.desc())
        elif query.order_by == "event_count_desc":
            stmt = stmt.order_by(event_count.desc())
        elif query.order_by in ("first_seen_asc", "created_at_asc"):
            stmt = stmt.order_by(first_seen.asc())
        elif query.order_by == "created_at_desc":
            stmt = stmt.order_by(last_seen.desc())

        if query.limit is not None:
            stmt = stmt.limit(query.limit)

        result = await self.db.execute(stmt)
        rows = []
        for row in result.mappings().all():
            item = dict(row)
            item["event_count"] = int(item["event_count"] or 0)
            item["total_weight"] = float(item["total_weight"] or 0.0)
            rows.append(item)
        return rows
