from celery import Celery

from stockwatch.config import settings

# Only notification delivery runs on Celery; there is no beat schedule because
# the dispatch cycle ticks inside the API process.
celery_app = Celery(
    "stockwatch",
    broker=settings.redis_url,
    include=["stockwatch.workers.notification_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_ignore_result=True,
    worker_prefetch_multiplier=1,
    task_default_queue="notifications",
    task_routes={
        "stockwatch.workers.notification_tasks.*": {"queue": "notifications"},
    },
    broker_connection_retry_on_startup=True,
)
