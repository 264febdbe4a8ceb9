"""Celery application with a periodic task running the ETL."""

from celery import Celery

from .config import settings


celery_app = Celery(
    "balancer_apr",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.beat_schedule = {
    "run-etl-pipeline": {
        "task": "balancer_apr.tasks.run_etl_pipeline",
        "schedule": settings.schedule_frequency,
    }
}
celery_app.conf.timezone = "UTC"
