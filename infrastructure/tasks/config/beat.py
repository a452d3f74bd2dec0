"""Celery beat schedule; cadence comes from ``settings.store``."""
from __future__ import annotations

from core.config import settings

ORDERS_QUEUE = "orders"

CELERY_BEAT_SCHEDULE = {
    # 过期未支付订单清理；未执行的旧调度在下一轮开始前作废
    "orders-expire-stale": {
        "task": "orders.expire_stale",
        "schedule": float(settings.store.expiry_sweep_interval_seconds),
        "options": {"queue": ORDERS_QUEUE, "expires": settings.store.expiry_sweep_interval_seconds},
    },
}
