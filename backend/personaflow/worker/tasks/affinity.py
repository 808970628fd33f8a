"""
亲和度 Celery 任务

定时任务：
1. aggregate_affinities - 每 6 小时聚合活跃访客的分类 / 作者亲和度

手动任务：
1. invalidate_affinity - 完整画像重新计算后删除访客的亲和度缓存
"""
import logging

from personaflow.core.config import settings
from personaflow.services.affinity_aggregator import AffinityAggregator
from personaflow.services.event_store import SqlEventStore
from personaflow.services.post_metadata import SqlPostMetadata
from personaflow.services.transient_cache import RedisTransientCache
from personaflow.worker import celery_app
from personaflow.worker.runtime import job_resources, run_async

logger = logging.getLogger(__name__)


@celery_app.task(name="signals.aggregate_affinities", bind=True, max_retries=3)
def aggregate_affinities(self):
    """
    亲和度聚合任务

    调度：每 6 小时
    """
    try:
        return run_async(_aggregate_affinities_async())
    except Exception as e:
        logger.error(f"Affinity aggregation failed: {e}")
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))


async def _aggregate_affinities_async():
    logger.info("Starting affinity aggregation...")

    async with job_resources() as (db, r, lock):
        aggregator = AffinityAggregator(
            event_store=SqlEventStore(db),
            cache=RedisTransientCache(r),
            post_metadata=SqlPostMetadata(db),
            settings=settings,
            run_lock=lock,
        )
        report = await aggregator.run()

    return report.to_dict()


@celery_app.task(name="signals.invalidate_affinity", bind=True, max_retries=3)
def invalidate_affinity(self, visitor_hash: str):
    """
    删除访客亲和度缓存

    Args:
        visitor_hash: 访客标识
    """
    try:
        return run_async(_invalidate_affinity_async(visitor_hash))
    except Exception as e:
        logger.error(f"Affinity invalidation failed for {visitor_hash}: {e}")
        raise self.retry(exc=e, countdown=10 * (2 ** self.request.retries))


async def _invalidate_affinity_async(visitor_hash: str):
    async with job_resources() as (db, r, lock):
        aggregator = AffinityAggregator(
            event_store=SqlEventStore(db),
            cache=RedisTransientCache(r),
            post_metadata=SqlPostMetadata(db),
            settings=settings,
        )
        deleted = await aggregator.invalidate(visitor_hash)

    return {"visitor_hash": visitor_hash, "invalidated": deleted}
