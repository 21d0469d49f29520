from daycare.application.services.receipt_service import build_receipt_payload, mark_receipt_dispatched
from daycare.config import settings
from daycare.infrastructure.db.models import Payment
from daycare.infrastructure.db.session import SessionLocal
from daycare.infrastructure.logging import get_logger
from daycare.infrastructure.tasks.celery_app import celery_app

logger = get_logger(__name__)


def publish_receipt(payload: dict) -> str:
    """Hand the receipt to the notification service, which owns email/SMS delivery."""
    result = celery_app.send_task(
        settings.receipt_delivery_task,
        kwargs={"receipt": payload},
        queue=settings.notifications_queue,
    )
    return str(result.id)


@celery_app.task(name="payments.send_payment_receipt")
def send_payment_receipt_task(payment_id: int) -> dict:
    db = SessionLocal()
    logger.info("payment_receipt_task_started", payment_id=payment_id)
    try:
        payload = build_receipt_payload(db, payment_id=payment_id)
        if payload is None:
            logger.warning("payment_receipt_task_skipped", payment_id=payment_id)
            return {"payment_id": payment_id, "sent": False}
        delivery_id = publish_receipt(payload)
        sent = mark_receipt_dispatched(db, payment_id=payment_id)
        logger.info("payment_receipt_task_completed", payment_id=payment_id, delivery_id=delivery_id, sent=sent)
        return {"payment_id": payment_id, "sent": sent, "delivery_id": delivery_id, "receipt": payload}
    except Exception as exc:
        logger.error("payment_receipt_task_failed", payment_id=payment_id, error=str(exc))
        raise
    finally:
        db.close()


def enqueue_payment_receipt_task(*, payment_id: int) -> str:
    task = send_payment_receipt_task.delay(payment_id=payment_id)
    return str(task.id)


class CeleryReceiptNotifier:
    def payment_completed(self, payment: Payment) -> None:
        task_id = enqueue_payment_receipt_task(payment_id=payment.id)
        logger.info("payment_receipt_enqueued", payment_id=payment.id, task_id=task_id)
