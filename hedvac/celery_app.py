"""Hedvac Tip Bot - Celery configuration.

Uses Celery with Redis as message broker for the periodic jobs.

Usage:
    # Start the worker (one process is enough; cycles are also guarded by a Redis lock)
    celery -A hedvac.celery_app worker -Q deposits,common -l info -c 1

    # Start beat scheduler
    celery -A hedvac.celery_app beat -l info

Deployments without Celery run ``python -m hedvac.scripts.deposit_monitor``
instead.
"""

from celery import Celery

from hedvac.core.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "hedvac_workers",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "hedvac.workers.tasks.deposits",
        "hedvac.workers.tasks.loot_expiry",
    ],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task routing
    task_routes={
        "hedvac.workers.tasks.deposits.*": {"queue": "deposits"},
        "hedvac.workers.tasks.*": {"queue": "common"},
    },
    # Task result expiration
    result_expires=3600,  # 1 hour
    # Worker settings
    worker_prefetch_multiplier=1,  # Process one task at a time per worker
    task_acks_late=True,  # Acknowledge after task completes
    task_reject_on_worker_lost=True,
    # Beat schedule (periodic tasks)
    beat_schedule={
        "poll-deposits": {
            "task": "hedvac.workers.tasks.deposits.poll_deposits",
            "schedule": float(settings.deposit_poll_interval_seconds),
        },
        "sweep-expired-loot": {
            "task": "hedvac.workers.tasks.loot_expiry.sweep_expired_loot",
            "schedule": float(settings.loot_sweep_interval_seconds),
        },
    },
)
