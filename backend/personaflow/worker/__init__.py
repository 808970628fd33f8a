"""Celery Worker 模块"""
from celery import Celery
from celery.schedules import crontab

from personaflow.core.config import settings

# 创建 Celery 应用
celery_app = Celery(
    "personaflow",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "personaflow.worker.tasks.affinity",  # 亲和度聚合
        "personaflow.worker.tasks.abandoned_checkout",  # 放弃结账检测
    ]
)

# Celery 配置
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=900,  # 15 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Celery Beat 定时任务配置
celery_app.conf.beat_schedule = {
    # 每6小时聚合访客亲和度
    "aggregate_affinities": {
        "task": "signals.aggregate_affinities",
        "schedule": crontab(minute=0, hour=f"*/{settings.AFFINITY_INTERVAL_HOURS}"),
        "options": {"queue": "signals"}
    },

    # 每小时检测放弃结账
    "detect_abandoned_checkouts": {
        "task": "signals.detect_abandoned_checkouts",
        "schedule": crontab(minute=0),
        "options": {"queue": "signals"}
    },
}

# 队列路由
celery_app.conf.task_routes = {
    "signals.*": {"queue": "signals"},
}
