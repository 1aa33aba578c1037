"""
Celery application: broker and result backend from settings.
Tasks live in lawnet.workers.tasks (grant sweeping).
"""
from datetime import timedelta

from celery import Celery

from lawnet.core.config import settings


def sweep_schedule() -> timedelta:
    return timedelta(minutes=max(1, settings.grant_sweep_interval_minutes))


celery_app = Celery(
    "lawnet",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "lawnet.workers.tasks.sweep_grants",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=600,
    result_expires=86400,
    beat_schedule={
        "sweep-expired-grants": {
            "task": "lawnet.workers.tasks.sweep_grants.sweep_expired_grants",
            "schedule": sweep_schedule(),
        },
    },
)

celery_app.autodiscover_tasks(["lawnet.workers.tasks"])
