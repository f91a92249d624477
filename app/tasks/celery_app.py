from celery import Celery
from celery.schedules import crontab

from app.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "healthconnect",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.tasks.job_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
)

celery_app.conf.beat_schedule = {
    "send-consultation-reminders": {
        "task": "app.tasks.job_tasks.send_reminders_task",
        "schedule": crontab(minute=0),
    },
    "reconcile-payments": {
        "task": "app.tasks.job_tasks.reconcile_payments_task",
        "schedule": crontab(hour=2, minute=0),
    },
}
