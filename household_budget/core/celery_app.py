from celery import Celery
from celery.schedules import crontab
from household_budget.core.config import settings

# Create Celery app
celery_app = Celery(
    "household_budget",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["household_budget.tasks.adjustment_tasks"]
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.BUDGET_TIMEZONE,
    enable_utc=True,
    broker_connection_retry_on_startup=True,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    worker_max_tasks_per_child=50,
    beat_schedule={
        "apply-due-budget-adjustments": {
            "task": "household_budget.tasks.adjustment_tasks.apply_due_adjustments_task",
            # Daily, shortly after midnight in the budget timezone
            "schedule": crontab(minute=settings.ADJUSTMENT_APPLY_MINUTE, hour=settings.ADJUSTMENT_APPLY_HOUR),
            "options": {"queue": "default"},
        },
    },
)

if __name__ == "__main__":
    celery_app.start()
