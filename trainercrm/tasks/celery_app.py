"""Celery app and beat schedule; beat is the external caller of the daily run."""

from celery import Celery
from celery.schedules import crontab

from trainercrm.config import get_settings

settings = get_settings()

celery_app = Celery(
    "trainercrm",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["trainercrm.tasks.outreach_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "generate-daily-drafts": {
            "task": "trainercrm.tasks.outreach_tasks.generate_daily_drafts_task",
            "schedule": crontab(hour=settings.draft_generation_hour_utc, minute=0),
        },
        "dispatch-due-messages": {
            "task": "trainercrm.tasks.outreach_tasks.dispatch_due_messages_task",
            "schedule": crontab(minute=f"*/{settings.dispatch_interval_minutes}"),
        },
        "auto-approve-drafts": {
            "task": "trainercrm.tasks.outreach_tasks.auto_approve_drafts_task",
            "schedule": crontab(minute=f"*/{settings.auto_approval_interval_minutes}"),
        },
    },
)
