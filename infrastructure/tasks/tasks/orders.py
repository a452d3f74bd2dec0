"""Order lifecycle Celery tasks"""
from __future__ import annotations

import asyncio
import functools
from datetime import datetime
from typing import Optional

from celery import shared_task

from ..utils.base_task import BaseTask
from application.services.order_service import OrderApplicationService
from core.config import settings
from core.logging_config import get_logger
from infrastructure.database import build_engine, build_session_factory
from infrastructure.external.cache import init_redis_client, shutdown_redis_client
from infrastructure.external.payments import get_payment_gateway
from infrastructure.locks import get_order_lock
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

logger = get_logger(__name__)


async def expire_stale_orders(now: Optional[datetime] = None) -> int:
    """在独立的事件循环资源上运行一次过期清理（引擎、Redis 与处理方客户端用完即关）"""
    engine = build_engine(settings.database.url, echo=settings.database.echo)
    gateway = get_payment_gateway()
    redis_ready = False
    try:
        if settings.redis.url:
            await init_redis_client()
            redis_ready = True
        service = OrderApplicationService(
            uow_factory=functools.partial(SQLAlchemyUnitOfWork, session_factory=build_session_factory(engine)),
            gateway=gateway,
            locks=get_order_lock(),
        )
        return await service.expire_stale_orders(now=now)
    finally:
        await gateway.aclose()
        if redis_ready:
            await shutdown_redis_client()
        await engine.dispose()


@shared_task(
    name="orders.expire_stale",
    bind=True,
    base=BaseTask,
    autoretry_for=(ConnectionError, TimeoutError),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
)
def expire_stale_orders_task(self) -> dict:
    """把超过支付窗口的 awaiting_payment 订单置为 failed"""
    expired = asyncio.run(expire_stale_orders())
    logger.info("expire_stale_orders_task_done", task_id=self.request.id, expired=expired)
    return {"expired": expired}
