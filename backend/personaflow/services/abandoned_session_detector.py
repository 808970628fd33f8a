"""
放弃结账检测（周期任务，每小时）

checkout_start 发生在 (now - 2h, now - 1h] 且同一 (visitor_hash, session_id)
在开始之后没有 checkout_complete / purchase_complete 的，判定为放弃结账，
写入一条 checkout_abandon 合成事件（weight -5.0, event_value 0）。

按 (visitor_hash, post_id, session_id) 分组，每次最多 50 条。
1 小时的延迟保证仍在进行中的会话不会被误判，2 小时的上界保证
任务偶尔延迟时不会漏掉。
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from personaflow.core.clock import utcnow
from personaflow.core.config import Settings
from personaflow.core.locks import default_run_lock
from personaflow.services.event_store import Event, EventQuery, EventSink, EventStore

logger = logging.getLogger(__name__)

JOB_NAME = "detect_abandoned_checkouts"

CHECKOUT_START = "checkout_start"
CHECKOUT_ABANDON = "checkout_abandon"
COMPLETION_TYPES = frozenset({"checkout_complete", "purchase_complete"})


@dataclass
class DetectionReport:
    """单次运行结果"""
    started_at: datetime
    skipped: bool = False
    candidates: int = 0
    emitted: int = 0
    already_flagged: int = 0
    failed: int = 0
    event_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "skipped" if self.skipped else "success",
            "candidates": self.candidates,
            "emitted": self.emitted,
            "already_flagged": self.already_flagged,
            "failed": self.failed,
            "timestamp": self.started_at.isoformat(),
        }


class AbandonedSessionDetector:
    """放弃结账检测器"""

    def __init__(
        self,
        event_store: EventStore,
        sink: EventSink,
        settings: Settings,
        run_lock=None,
    ):
        self.event_store = event_store
        self.sink = sink
        self.settings = settings
        self.run_lock = run_lock or default_run_lock

    async def _completed_after(self, row: Dict[str, Any], started_at: datetime, now: datetime) -> bool:
        count = await self.event_store.count(EventQuery(
            event_types=COMPLETION_TYPES,
            visitor_hash=row["visitor_hash"],
            session_id=row["session_id"],
            since=started_at,
            until=now,
        ))
        return count > 0

    async def _already_flagged(self, row: Dict[str, Any], started_at: datetime, now: datetime) -> bool:
        count = await self.event_store.count(EventQuery(
            event_types=frozenset({CHECKOUT_ABANDON}),
            visitor_hash=row["visitor_hash"],
            session_id=row["session_id"],
            target_id=int(row["target_id"]),
            since=started_at,
            until=now,
        ))
        return count > 0

    async def find_candidates(self, now: datetime) -> List[Dict[str, Any]]:
        """窗口内的 checkout_start 分组（尚未检查是否完成）"""
        return await self.event_store.query(EventQuery(
            event_types=frozenset({CHECKOUT_START}),
            since=now - timedelta(minutes=self.settings.ABANDON_MAX_AGE_MINUTES),
            since_inclusive=False,
            until=now - timedelta(minutes=self.settings.ABANDON_MIN_AGE_MINUTES),
            group_by=("visitor_hash", "target_id", "session_id"),
            order_by="first_seen_asc",
        ))

    async def run(self, now: Optional[datetime] = None) -> DetectionReport:
        """执行一次检测；上一次运行未结束时直接跳过"""
        now = now or utcnow()
        report = DetectionReport(started_at=now)

        async with self.run_lock.hold(JOB_NAME) as acquired:
            if not acquired:
                report.skipped = True
                return report

            candidates = await self.find_candidates(now)
            report.candidates = len(candidates)

            for row in candidates:
                if report.emitted >= self.settings.ABANDON_MAX_PER_RUN:
                    break

                try:
                    # 同一分组多次开始结账时以最后一次为准
                    started_at = row["last_seen"]
                    if await self._completed_after(row, started_at, now):
                        continue
                    if await self._already_flagged(row, started_at, now):
                        report.already_flagged += 1
                        continue

                    event_id = await self.sink.append(Event(
                        visitor_hash=row["visitor_hash"],
                        session_id=row["session_id"],
                        event_type=CHECKOUT_ABANDON,
                        target_id=int(row["target_id"]),
                        weight=self.settings.ABANDON_SIGNAL_WEIGHT,
                        event_value=0.0,
                        meta={"checkout_started_at": started_at.isoformat()},
                        created_at=now,
                    ))
                    report.emitted += 1
                    report.event_ids.append(event_id)
                except Exception as e:
                    logger.error(
                        f"Abandoned checkout emission failed for visitor {row.get('visitor_hash')} "
                        f"session {row.get('session_id')}: {e}"
                    )
                    report.failed += 1

        logger.info(
            f"Abandoned checkout detection complete: {report.emitted} emitted, "
            f"{report.candidates} candidates, {report.failed} failed"
        )
        return report
