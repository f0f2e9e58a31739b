from celery import Celery
from celery.schedules import crontab
from adsync.config import get_settings

settings = get_settings()

celery_app = Celery(
    "adsync",
    broker=settings.effective_celery_broker_url,
    backend=settings.effective_celery_result_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=86400,  # 24 hours
    task_routes={
        "adsync.tasks.sync_tasks.*": {"queue": "sync"},
    },
)

# Same cadence as the in-process scheduler, staggered so exclusive jobs don't overlap
celery_app.conf.beat_schedule = {
    "sync-insights": {
        "task": "adsync.tasks.sync_tasks.sync_insights",
        "schedule": crontab(minute=0),  # hourly
    },
    "sync-campaigns": {
        "task": "adsync.tasks.sync_tasks.sync_campaigns",
        "schedule": crontab(minute=10, hour="*/2"),
    },
    "sync-ad-structure": {
        "task": "adsync.tasks.sync_tasks.sync_ad_structure",
        "schedule": crontab(minute=20, hour="*/2"),
    },
    "sync-accounts": {
        "task": "adsync.tasks.sync_tasks.sync_accounts",
        "schedule": crontab(minute=30, hour="*/6"),
    },
    "cleanup-cache": {
        "task": "adsync.tasks.sync_tasks.cleanup_cache",
        "schedule": crontab(minute=40, hour="*/4"),
    },
}

# Auto-discover tasks
celery_app.autodiscover_tasks(["adsync.tasks"], related_name="sync_tasks")
