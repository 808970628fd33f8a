"""Pytest 配置和 Fixtures（内存版协作方）"""
import json
from collections import OrderedDict
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest

from personaflow.core.config import Settings
from personaflow.core.errors import ExclusionNotFound
from personaflow.services.event_store import Event, EventQuery
from personaflow.services.exclusion_service import ExclusionRule
from personaflow.services.post_metadata import StaticPostMetadata


class InMemoryEventStore:
    """按 EventQuery 语义过滤 / 分组的内存事件存储"""

    def __init__(self, events=None):
        self.events: List[Event] = []
        self.fail_on_append = False
        for event in events or []:
            self._insert(event)

    def _insert(self, event: Event) -> int:
        event_id = len(self.events) + 1
        self.events.append(replace(event, id=event_id))
        return event_id

    def add(self, **kwargs) -> Event:
        event_id = self._insert(Event(**kwargs))
        return self.events[event_id - 1]

    def of_type(self, event_type: str) -> List[Event]:
        return [e for e in self.events if e.event_type == event_type]

    @staticmethod
    def _matches(e: Event, q: EventQuery) -> bool:
        if q.event_types is not None and e.event_type not in q.event_types:
            return False
        if q.exclude_types and e.event_type in q.exclude_types:
            return False
        if q.visitor_hash is not None and e.visitor_hash != q.visitor_hash:
            return False
        if q.session_id is not None and e.session_id != q.session_id:
            return False
        if q.target_id is not None and e.target_id != q.target_id:
            return False
        if q.require_target and not e.target_id > 0:
            return False
        if q.min_value is not None and (e.event_value is None or e.event_value < q.min_value):
            return False
        if q.since is not None:
            if q.since_inclusive and e.created_at < q.since:
                return False
            if not q.since_inclusive and e.created_at <= q.since:
                return False
        if q.until is not None and e.created_at > q.until:
            return False
        return True

    def _select(self, q: EventQuery) -> List[Event]:
        return [e for e in self.events if self._matches(e, q)]

    async def append(self, event: Event) -> int:
        if self.fail_on_append:
            raise RuntimeError("event store unavailable")
        return self._insert(event)

    async def fetch(self, query: EventQuery) -> List[Event]:
        events = sorted(self._select(query), key=lambda e: (e.created_at, e.id))
        if query.order_by == "created_at_desc":
            events.reverse()
        return events[:query.limit] if query.limit is not None else events

    async def count(self, query: EventQuery) -> int:
        return len(self._select(query))

    async def query(self, query: EventQuery) -> List[Dict[str, Any]]:
        groups: "OrderedDict[tuple, List[Event]]" = OrderedDict()
        for e in self._select(query):
            key = tuple(getattr(e, name) for name in query.group_by)
            groups.setdefault(key, []).append(e)
        if not query.group_by and not groups:
            groups[()] = []

        rows = []
        for key, events in groups.items():
            if query.min_count is not None and len(events) < query.min_count:
                continue
            row = dict(zip(query.group_by, key))
            row["event_count"] = len(events)
            row["total_weight"] = float(sum(e.weight for e in events))
            row["first_seen"] = min((e.created_at for e in events), default=None)
            row["last_seen"] = max((e.created_at for e in events), default=None)
            rows.append(row)

        if query.order_by == "total_weight_desc":
            rows.sort(key=lambda r: -r["total_weight"])
        elif query.order_by == "event_count_desc":
            rows.sort(key=lambda r: -r["event_count"])
        elif query.order_by in ("first_seen_asc", "created_at_asc"):
            rows.sort(key=lambda r: r["first_seen"])
        elif query.order_by == "created_at_desc":
            rows.sort(key=lambda r: r["last_seen"], reverse=True)

        return rows[:query.limit] if query.limit is not None else rows


class InMemoryExclusionRepository:
    """唯一键 (visitor_hash, exclusion_type, target_id) 的内存排除规则存储"""

    def __init__(self):
        self.rows: Dict[tuple, ExclusionRule] = {}
        self.list_calls = 0
        self._next_id = 1

    async def upsert(self, visitor_hash, exclusion_type, target_id, user_id, created_at) -> None:
        key = (visitor_hash, exclusion_type, target_id)
        existing = self.rows.get(key)
        if existing is not None:
            self.rows[key] = replace(existing, created_at=created_at, user_id=user_id)
            return
        self.rows[key] = ExclusionRule(
            id=self._next_id,
            visitor_hash=visitor_hash,
            exclusion_type=exclusion_type,
            target_id=target_id,
            created_at=created_at,
            user_id=user_id,
        )
        self._next_id += 1

    async def delete(self, exclusion_id: int, visitor_hash: str) -> None:
        for key, rule in list(self.rows.items()):
            if rule.id == exclusion_id and rule.visitor_hash == visitor_hash:
                del self.rows[key]
                return
        raise ExclusionNotFound(exclusion_id, visitor_hash)

    async def list_for_visitor(self, visitor_hash: str) -> List[ExclusionRule]:
        self.list_calls += 1
        rules = [r for r in self.rows.values() if r.visitor_hash == visitor_hash]
        return sorted(rules, key=lambda r: (r.created_at, r.id), reverse=True)

    async def count_for_visitor(self, visitor_hash: str) -> int:
        return sum(1 for r in self.rows.values() if r.visitor_hash == visitor_hash)

    async def count_by_type(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for rule in self.rows.values():
            counts[rule.exclusion_type] = counts.get(rule.exclusion_type, 0) + 1
        return counts


class InMemoryTransientCache:
    """JSON 往返的内存缓存，行为与 Redis 实现一致"""

    def __init__(self):
        self.entries: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.reject_keys = set()

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        if key in self.reject_keys:
            return False
        self.entries[key] = json.dumps(value)
        self.ttls[key] = ttl
        return True

    async def get(self, key: str) -> Optional[Any]:
        raw = self.entries.get(key)
        return json.loads(raw) if raw is not None else None

    async def delete(self, key: str) -> bool:
        self.entries.pop(key, None)
        self.ttls.pop(key, None)
        return True


class CountingPostMetadata(StaticPostMetadata):
    """记录查询次数"""

    def __init__(self, authors=None, categories=None):
        super().__init__(authors, categories)
        self.author_lookups = 0
        self.category_lookups = 0

    async def get_author(self, post_id: int):
        self.author_lookups += 1
        return await super().get_author(post_id)

    async def get_categories(self, post_id: int):
        self.category_lookups += 1
        return await super().get_categories(post_id)


@pytest.fixture
def settings() -> Settings:
    """不读取 .env 的默认配置"""
    return Settings(_env_file=None)


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture
def event_store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def exclusion_repo() -> InMemoryExclusionRepository:
    return InMemoryExclusionRepository()


@pytest.fixture
def transient_cache() -> InMemoryTransientCache:
    return InMemoryTransientCache()


@pytest.fixture
def post_metadata() -> CountingPostMetadata:
    # 文章 -> 作者 / 分类
    return CountingPostMetadata(
        authors={101: 7, 102: 7, 103: 8, 104: 9},
        categories={101: {3, 5}, 102: {5}, 103: {4, 6, 9}, 104: set()},
    )
