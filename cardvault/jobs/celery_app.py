"""Celery configuration for import queues and scheduled jobs."""

from __future__ import annotations

import os

from celery import Celery
from celery.schedules import crontab

from cardvault.utils.dates import timezone_name

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")

celery_app = Celery(
    "cardvault",
    broker=broker_url,
    backend=backend_url,
    include=["cardvault.jobs.psa", "cardvault.jobs.troll", "cardvault.jobs.inventory", "cardvault.jobs.tracking"],
)
celery_app.conf.timezone = timezone_name()
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True
celery_app.conf.worker_prefetch_multiplier = 1
celery_app.conf.worker_concurrency = int(os.environ.get("WORKER_CONCURRENCY", "1"))
celery_app.conf.task_routes = {
    "cardvault.jobs.psa.import_cert": {"queue": "psa"},
    "cardvault.jobs.troll.import_item": {"queue": "troll"},
}
celery_app.conf.beat_schedule = {
    "hourly-draft-sweep": {
        "task": "cardvault.jobs.inventory.draft_sweep",
        "schedule": crontab(minute=0),
    },
    "daily-tracking-update": {
        "task": "cardvault.jobs.tracking.update_tracking",
        "schedule": crontab(hour=int(os.environ.get("TRACKING_HOUR", "9")), minute=0),
    },
    "daily-store-value": {
        "task": "cardvault.jobs.inventory.store_value",
        "schedule": crontab(hour=int(os.environ.get("STORE_VALUE_HOUR", "23")), minute=30),
    },
    "daily-psa-quota-reset": {
        "task": "cardvault.jobs.psa.reset_quota",
        "schedule": crontab(hour=0, minute=5),
    },
}
