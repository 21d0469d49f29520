from celery import Celery

from daycare.config import settings

celery_app = Celery(
    "daycare_payments",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "daycare.infrastructure.tasks.receipt_tasks",
        "daycare.infrastructure.tasks.ledger_audit_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
)
