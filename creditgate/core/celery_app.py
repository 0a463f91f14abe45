"""
Celery application: broker and result backend from settings.
Tasks are in creditgate.workers.tasks (broadcast, token sweeper) and creditgate.referral.tasks.
"""
from celery import Celery
from celery.schedules import crontab

from creditgate.core.config import settings

celery_app = Celery(
    "creditgate",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "creditgate.workers.tasks.broadcast",
        "creditgate.workers.tasks.expire_tokens",
        "creditgate.workers.tasks.notify",
        "creditgate.referral.tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=3600,
    result_expires=86400,
    beat_schedule={
        "expire-stale-verification-tokens": {
            "task": "creditgate.workers.tasks.expire_tokens.expire_stale_tokens",
            "schedule": crontab(minute="*/10"),
        },
    },
)
