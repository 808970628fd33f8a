"""
手动触发信号周期任务（不经过 Celery）

用法：
    python trigger_signal_jobs.py affinities
    python trigger_signal_jobs.py abandoned
    python trigger_signal_jobs.py all
    python trigger_signal_jobs.py init-db   # 建表
"""
import asyncio
import logging
import sys

from personaflow.core.config import settings
from personaflow.core.database import close_db, init_db, wait_for_postgres
from personaflow.core.startup_checks import validate_settings
from personaflow.services.abandoned_session_detector import AbandonedSessionDetector
from personaflow.services.affinity_aggregator import AffinityAggregator
from personaflow.services.event_store import SqlEventStore
from personaflow.services.post_metadata import SqlPostMetadata
from personaflow.services.signal_tracker import SignalTracker
from personaflow.services.transient_cache import RedisTransientCache
from personaflow.worker.runtime import job_resources

# 配置日志
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

JOBS = ("affinities", "abandoned")


async def main(jobs):
    """主函数"""
    validate_settings(settings)
    await wait_for_postgres(max_retries=5)

    if "init-db" in jobs:
        await init_db()
        logger.info("Signal tables created")
        await close_db()
        return []

    async with job_resources() as (db, r, lock):
        store = SqlEventStore(db)

        failed = []

        # 单个任务失败不影响后续任务
        if "affinities" in jobs:
            try:
                aggregator = AffinityAggregator(
                    event_store=store,
                    cache=RedisTransientCache(r),
                    post_metadata=SqlPostMetadata(db),
                    settings=settings,
                    run_lock=lock,
                )
                report = await aggregator.run()
                logger.info(f"Affinity aggregation: {report.to_dict()}")
            except Exception as e:
                logger.error(f"Affinity aggregation failed: {e}", exc_info=True)
                await db.rollback()
                failed.append("affinities")

        if "abandoned" in jobs:
            try:
                detector = AbandonedSessionDetector(
                    event_store=store,
                    sink=SignalTracker(store),
                    settings=settings,
                    run_lock=lock,
                )
                report = await detector.run()
                logger.info(f"Abandoned checkout detection: {report.to_dict()}")
            except Exception as e:
                logger.error(f"Abandoned checkout detection failed: {e}", exc_info=True)
                failed.append("abandoned")

    return failed


if __name__ == "__main__":
    target = sys.argv[1] if len(sys.argv) > 1 else "all"
    if target == "init-db":
        selected = (target,)
    elif target == "all":
        selected = JOBS
    elif target in JOBS:
        selected = (target,)
    else:
        logger.error(f"Unknown job {target!r}, expected one of: all, init-db, {', '.join(JOBS)}")
        sys.exit(2)

    failed_jobs = asyncio.run(main(selected))
    if failed_jobs:
        sys.exit(1)
