"""
信号采集入口

所有信号生产方（前端上报、服务端电商钩子、批处理合成事件）都经过这里：
校验类型 -> 解析权重 -> 入库 -> 执行入库后钩子（如负面信号转排除规则）。
钩子失败只记录日志，不影响事件本身的写入结果。
"""
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

from personaflow.core.clock import utcnow
from personaflow.core.errors import SignalError, UnknownSignalType
from personaflow.services.event_store import Event, EventSink
from personaflow.services.signal_catalog import SignalCatalog

logger = logging.getLogger(__name__)

EventHook = Callable[[Event], Awaitable[Any]]


class SignalTracker:
    """行为信号采集器"""

    def __init__(
        self,
        store: EventSink,
        catalog: Optional[SignalCatalog] = None,
        hooks: Optional[Iterable[EventHook]] = None,
    ):
        self.store = store
        self.catalog = catalog or SignalCatalog()
        self.hooks: List[EventHook] = list(hooks or [])

    def add_hook(self, hook: EventHook) -> None:
        self.hooks.append(hook)

    async def _run_hooks(self, event: Event) -> None:
        for hook in self.hooks:
            try:
                await hook(event)
            except Exception as e:
                logger.error(
                    f"Post-store hook {getattr(hook, '__name__', type(hook).__name__)} failed "
                    f"for {event.event_type} event {event.id}: {e}"
                )

    async def append(self, event: Event) -> int:
        """写入已构造好的事件（批处理任务的合成事件走这里）"""
        if not self.catalog.is_known(event.event_type):
            raise UnknownSignalType(event.event_type)

        event_id = await self.store.append(event)
        await self._run_hooks(replace(event, id=event_id))
        return event_id

    async def record(
        self,
        visitor_hash: str,
        session_id: str,
        event_type: str,
        target_id: int = 0,
        event_value: Optional[float] = None,
        meta: Optional[Dict[str, Any]] = None,
        weight: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> Event:
        """
        记录一条信号

        Args:
            weight: 服务端显式指定的权重；为 None 时按信号目录解析

        Returns:
            入库后的事件（带 id）

        Raises:
            UnknownSignalType: 类型不在目录中
            InvalidRatingValue: 评分不在 1-5
        """
        if weight is None:
            weight = self.catalog.resolve_weight(event_type, event_value)
        elif not self.catalog.is_known(event_type):
            raise UnknownSignalType(event_type)

        event = Event(
            visitor_hash=visitor_hash,
            session_id=session_id,
            event_type=event_type,
            target_id=int(target_id or 0),
            weight=float(weight),
            event_value=event_value,
            meta=meta,
            created_at=now or utcnow(),
        )
        event_id = await self.store.append(event)
        stored = replace(event, id=event_id)

        await self._run_hooks(stored)
        return stored

    async def record_batch(self, payloads: Iterable[Mapping[str, Any]]) -> int:
        """
        批量记录（前端一次上报多条）

        被拒绝的条目（类型未知、评分非法、字段缺失）跳过，不影响其余条目。

        Returns:
            成功写入的条数
        """
        stored = 0
        for payload in payloads:
            try:
                await self.record(
                    visitor_hash=payload["visitor_hash"],
                    session_id=payload["session_id"],
                    event_type=payload["event_type"],
                    target_id=payload.get("target_id", 0),
                    event_value=payload.get("event_value"),
                    meta=payload.get("meta"),
                )
                stored += 1
            except (SignalError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Rejected signal {payload.get('event_type')!r}: {e}")
        return stored
