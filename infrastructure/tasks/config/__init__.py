from .beat import CELERY_BEAT_SCHEDULE, ORDERS_QUEUE
from .celery import celery_app

__all__ = ["celery_app", "CELERY_BEAT_SCHEDULE", "ORDERS_QUEUE"]
