from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from daycare.application.gateway import PaymentGateway
from daycare.application.services.payment_service import PaymentReconciliationService, ReceiptNotifier
from daycare.infrastructure.db.session import get_db
from daycare.infrastructure.gateway.paystack_client import PaystackClient
from daycare.infrastructure.tasks.receipt_tasks import CeleryReceiptNotifier


@lru_cache
def get_payment_gateway() -> PaymentGateway:
    return PaystackClient.from_settings()


def get_receipt_notifier() -> ReceiptNotifier:
    return CeleryReceiptNotifier()


def get_reconciliation_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: ReceiptNotifier = Depends(get_receipt_notifier),
) -> PaymentReconciliationService:
    return PaymentReconciliationService(db, gateway, notifier=notifier)
