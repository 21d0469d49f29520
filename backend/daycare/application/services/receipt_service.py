from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from daycare.domain.payment_enums import PaymentStatus
from daycare.infrastructure.db.models import Payment
from daycare.infrastructure.logging import get_logger

logger = get_logger(__name__)


def build_receipt_payload(db: Session, *, payment_id: int) -> dict | None:
    payment = db.execute(
        select(Payment).where(Payment.id == payment_id, Payment.deleted_at.is_(None))
    ).scalar_one_or_none()
    if payment is None or payment.status != PaymentStatus.completed or payment.receipt_sent:
        return None
    invoice = payment.invoice
    return {
        "payment_id": payment.id,
        "reference_number": payment.reference_number,
        "amount": str(payment.amount),
        "currency": payment.currency,
        "payment_method": payment.payment_method,
        "processed_at": payment.processed_at.isoformat() if payment.processed_at else None,
        "paid_by_email": payment.paid_by_email,
        "invoice_number": invoice.invoice_number,
        "balance_remaining": str(invoice.balance_remaining),
    }


def mark_receipt_dispatched(db: Session, *, payment_id: int, sent_at: datetime | None = None) -> bool:
    """Flag the receipt as handed to the notification service.

    Returns False when it was already flagged.
    """
    result = db.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.receipt_sent.is_(False))
        .values(receipt_sent=True, receipt_sent_at=sent_at or datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    db.commit()
    dispatched = result.rowcount == 1
    if not dispatched:
        logger.info("payment_receipt_already_sent", payment_id=payment_id)
    return dispatched
