"""Celery 应用：订单维护任务（过期清理）

broker/backend 复用 redis 配置；开发与测试环境下任务同步执行。
"""
from __future__ import annotations

import os

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import get_logger
from .beat import CELERY_BEAT_SCHEDULE, ORDERS_QUEUE

TASK_PACKAGES = ("infrastructure.tasks.tasks",)
EAGER_ENVIRONMENTS = {"development", "dev", "test", "testing"}

logger = get_logger(__name__)

celery_app = Celery("checkout")

celery_app.conf.update(
    broker_url=settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # 清理任务可重入（CAS），worker 丢失时重新投递即可
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=3600,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_queues=(Queue("default"), Queue(ORDERS_QUEUE)),
    task_routes={"orders.*": {"queue": ORDERS_QUEUE}},
    beat_schedule=CELERY_BEAT_SCHEDULE,
    imports=TASK_PACKAGES,
    task_always_eager=(settings.ENVIRONMENT or "production").lower() in EAGER_ENVIRONMENTS,
)

celery_app.autodiscover_tasks(packages=TASK_PACKAGES)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info("celery_configured", broker=sender.conf.broker_url, beat_entries=sorted(sender.conf.beat_schedule))
