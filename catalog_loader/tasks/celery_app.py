"""
Celery Application Configuration
"""

import logging

from celery import Celery
from celery.schedules import crontab

from catalog_loader.config.settings import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Create Celery app
app = Celery(
    "catalog_loader",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "catalog_loader.tasks.ingestion",
    ],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=60 * 60,  # 1 hour, large catalogs
    task_soft_time_limit=55 * 60,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
)

# Configure periodic tasks with Celery Beat
app.conf.beat_schedule = {
    # Reclaim abandoned uploads (hourly)
    "reclaim-stale-uploads-hourly": {
        "task": "tasks.reclaim_stale_uploads",
        "schedule": crontab(minute=15),
    },
}

if __name__ == "__main__":
    app.start()
