"""
放弃结账检测 Celery 任务

调度：每小时整点
"""
import logging

from personaflow.core.config import settings
from personaflow.services.abandoned_session_detector import AbandonedSessionDetector
from personaflow.services.event_store import SqlEventStore
from personaflow.services.signal_tracker import SignalTracker
from personaflow.worker import celery_app
from personaflow.worker.runtime import job_resources, run_async

logger = logging.getLogger(__name__)


@celery_app.task(name="signals.detect_abandoned_checkouts", bind=True, max_retries=3)
def detect_abandoned_checkouts(self):
    """检测 1-2 小时前开始但未完成的结账，写入 checkout_abandon 信号"""
    try:
        return run_async(_detect_abandoned_checkouts_async())
    except Exception as e:
        logger.error(f"Abandoned checkout detection failed: {e}")
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))


async def _detect_abandoned_checkouts_async():
    logger.info("Starting abandoned checkout detection...")

    async with job_resources() as (db, r, lock):
        store = SqlEventStore(db)
        detector = AbandonedSessionDetector(
            event_store=store,
            sink=SignalTracker(store),
            settings=settings,
            run_lock=lock,
        )
        report = await detector.run()

    return report.to_dict()
