from celery import Celery
from portal.core.config import settings

celery_app = Celery(
    "portal_workers",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_time_limit=60,
    task_acks_late=True,
    task_ignore_result=True,
    broker_connection_retry_on_startup=True,
)

celery_app.autodiscover_tasks(["portal.workers"])
