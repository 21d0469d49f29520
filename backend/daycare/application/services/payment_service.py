import json
import secrets
import string
from collections.abc import Callable
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from daycare.application.errors import (
    ConflictError,
    GatewayError,
    NotFoundError,
    PaymentFailedError,
    RefundFailedError,
    SignatureError,
    ValidationError,
)
from daycare.application.gateway import PaymentGateway
from daycare.application.services.payment_stats_service import invalidate_payment_stats_cache
from daycare.config import settings
from daycare.domain.invoice_status import InvoiceStatus, derive_invoice_status, is_overdue
from daycare.domain.money import ZERO, Money, quantize_amount
from daycare.domain.payment_enums import (
    OPEN_STATUSES,
    SETTLEABLE_STATUSES,
    CardProvider,
    OnlinePaymentMethod,
    PaymentMethod,
    PaymentStatus,
)
from daycare.infrastructure.db.models import Invoice, Payment
from daycare.infrastructure.logging import get_logger
from daycare.interfaces.api.v1.schemas.payment import OnlinePaymentInitiate, PaymentCreate

logger = get_logger(__name__)

PAYSTACK_GATEWAY = "paystack"
CHARGE_SUCCESS_EVENT = "charge.success"
REFERENCE_ALPHABET = string.digits + string.ascii_uppercase

STATUS_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.pending: {PaymentStatus.processing, PaymentStatus.completed, PaymentStatus.failed},
    PaymentStatus.processing: {PaymentStatus.completed, PaymentStatus.failed},
}


class ReceiptNotifier(Protocol):
    def payment_completed(self, payment: Payment) -> None: ...


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_reference_number(now: datetime | None = None) -> str:
    timestamp_ms = int((now or utc_now()).timestamp() * 1000)
    suffix = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(8))
    return f"PAY-{timestamp_ms}-{suffix}"


def _is_gateway_settled(payment: Payment) -> bool:
    return (
        payment.gateway is not None
        or payment.card_provider == CardProvider.paystack.value
        or bool(payment.confirmation_code)
    )


def _ledger_currency(requested: str | None) -> str:
    # Invoices carry no currency of their own; every ledger amount is in the default.
    currency = (requested or settings.default_currency).upper()
    if currency != settings.default_currency.upper():
        raise ValidationError(f"Currency must be {settings.default_currency.upper()}")
    return currency


def serialize_payment_response(payment: Payment, *, today: date | None = None) -> dict:
    today = today or utc_now().date()
    invoice = payment.invoice
    return {
        "id": payment.id,
        "tenant_id": payment.tenant_id,
        "center_id": payment.center_id,
        "invoice_id": payment.invoice_id,
        "reference_number": payment.reference_number,
        "amount": payment.amount,
        "currency": payment.currency,
        "payment_method": payment.payment_method,
        "status": payment.status,
        "mobile_money_provider": payment.mobile_money_provider,
        "mobile_money_phone": payment.mobile_money_phone,
        "bank_name": payment.bank_name,
        "account_number": payment.account_number,
        "transaction_id": payment.transaction_id,
        "gateway": payment.gateway,
        "card_provider": payment.card_provider,
        "card_last_four_digits": payment.card_last_four_digits,
        "cash_received_by": payment.cash_received_by,
        "processed_at": payment.processed_at,
        "failure_reason": payment.failure_reason,
        "confirmation_code": payment.confirmation_code,
        "is_refunded": payment.is_refunded,
        "refund_amount": payment.refund_amount,
        "refunded_at": payment.refunded_at,
        "refund_reason": payment.refund_reason,
        "paid_by": payment.paid_by,
        "paid_by_phone": payment.paid_by_phone,
        "paid_by_email": payment.paid_by_email,
        "notes": payment.notes,
        "created_at": payment.created_at,
        "updated_at": payment.updated_at,
        "invoice": (
            {
                "id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "child_id": invoice.child_id,
                "total_amount": invoice.total_amount,
                "amount_paid": invoice.amount_paid,
                "balance_remaining": invoice.balance_remaining,
                "status": invoice.status,
                "is_overdue": is_overdue(status=invoice.status, due_date=invoice.due_date, today=today),
            }
            if invoice is not None
            else None
        ),
    }


def get_invoice_by_id(db: Session, *, invoice_id: int, tenant_id: int) -> Invoice | None:
    return db.execute(
        select(Invoice).where(Invoice.id == invoice_id, Invoice.tenant_id == tenant_id, Invoice.deleted_at.is_(None))
    ).scalar_one_or_none()


def get_payment_by_id(db: Session, *, payment_id: int, tenant_id: int) -> Payment | None:
    return db.execute(
        select(Payment)
        .where(Payment.id == payment_id, Payment.tenant_id == tenant_id, Payment.deleted_at.is_(None))
        .options(selectinload(Payment.invoice))
    ).scalar_one_or_none()


def get_payment_by_reference(db: Session, *, reference: str, tenant_id: int) -> Payment | None:
    return db.execute(
        select(Payment)
        .where(
            Payment.reference_number == reference,
            Payment.tenant_id == tenant_id,
            Payment.deleted_at.is_(None),
        )
        .options(selectinload(Payment.invoice))
    ).scalar_one_or_none()


def list_invoice_payments(db: Session, *, invoice_id: int, tenant_id: int) -> list[Payment]:
    return list(
        db.execute(
            select(Payment)
            .where(
                Payment.invoice_id == invoice_id,
                Payment.tenant_id == tenant_id,
                Payment.deleted_at.is_(None),
            )
            .options(selectinload(Payment.invoice))
            .order_by(Payment.created_at.desc(), Payment.id.desc())
        )
        .scalars()
        .all()
    )


def build_payments_query(
    *,
    tenant_id: int,
    center_id: int | None = None,
    invoice_id: int | None = None,
    status: PaymentStatus | None = None,
    payment_method: PaymentMethod | None = None,
):
    query = (
        select(Payment)
        .where(Payment.tenant_id == tenant_id, Payment.deleted_at.is_(None))
        .options(selectinload(Payment.invoice))
        .order_by(Payment.created_at.desc(), Payment.id.desc())
    )
    if center_id is not None:
        query = query.where(Payment.center_id == center_id)
    if invoice_id is not None:
        query = query.where(Payment.invoice_id == invoice_id)
    if status is not None:
        query = query.where(Payment.status == status)
    if payment_method is not None:
        query = query.where(Payment.payment_method == payment_method.value)
    return query


def soft_delete_payment(db: Session, *, payment_id: int, tenant_id: int) -> None:
    payment = get_payment_by_id(db, payment_id=payment_id, tenant_id=tenant_id)
    if payment is None:
        raise NotFoundError("Payment not found")
    if payment.status in (PaymentStatus.completed, PaymentStatus.refunded):
        raise ValidationError("Cannot delete completed payment. Please refund instead.")
    payment.deleted_at = utc_now()
    db.commit()
    invalidate_payment_stats_cache(tenant_id=payment.tenant_id, center_id=payment.center_id)
    logger.info("payment_soft_deleted", tenant_id=tenant_id, payment_id=payment_id)


class PaymentReconciliationService:
    """Sole authority for mutating invoice ledgers from payment events.

    Every path that moves a payment into ``completed`` goes through a
    compare-and-set UPDATE on the payment row, followed by a locked update of
    the parent invoice in the same transaction. Losing the compare-and-set means
    another caller already applied the payment.
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        *,
        notifier: ReceiptNotifier | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.clock = clock

    def _lock_invoice(self, *, invoice_id: int, tenant_id: int) -> Invoice | None:
        return self.db.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id, Invoice.tenant_id == tenant_id, Invoice.deleted_at.is_(None))
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _reload_payment(self, payment_id: int) -> Payment:
        return self.db.execute(
            select(Payment)
            .where(Payment.id == payment_id)
            .options(selectinload(Payment.invoice))
            .execution_options(populate_existing=True)
        ).scalar_one()

    def _get_payable_invoice(self, *, invoice_id: int, tenant_id: int, amount: Decimal) -> Invoice:
        invoice = self._lock_invoice(invoice_id=invoice_id, tenant_id=tenant_id)
        if invoice is None:
            raise ValidationError("Invoice not found")
        if invoice.status == InvoiceStatus.paid:
            raise ValidationError("Invoice is already fully paid")
        if invoice.status == InvoiceStatus.cancelled:
            raise ValidationError("Cancelled invoices cannot receive payments")
        if amount > invoice.balance_remaining:
            raise ValidationError("Payment amount exceeds balance remaining")
        return invoice

    def _apply_ledger_delta(self, invoice: Invoice, delta: Decimal) -> None:
        amount_paid = quantize_amount(invoice.amount_paid + delta)
        balance_remaining = quantize_amount(invoice.total_amount - amount_paid)
        if amount_paid < ZERO or balance_remaining < ZERO:
            logger.error(
                "invoice_ledger_update_blocked",
                invoice_id=invoice.id,
                amount_paid=str(invoice.amount_paid),
                total_amount=str(invoice.total_amount),
                delta=str(delta),
            )
            raise ConflictError("Payment amount exceeds balance remaining")

        now = self.clock()
        status = derive_invoice_status(
            current_status=invoice.status,
            amount_paid=amount_paid,
            balance_remaining=balance_remaining,
            due_date=invoice.due_date,
            today=now.date(),
        )
        invoice.amount_paid = amount_paid
        invoice.balance_remaining = balance_remaining
        if status == InvoiceStatus.paid and invoice.status != InvoiceStatus.paid:
            invoice.paid_date = now.date()
        elif status != InvoiceStatus.paid:
            invoice.paid_date = None
        invoice.status = status

    def _complete(
        self,
        payment: Payment,
        *,
        from_statuses: tuple[PaymentStatus, ...],
        processed_at: datetime,
        extra_values: dict[str, Any] | None = None,
    ) -> bool:
        """Move ``payment`` to ``completed`` and apply it to its invoice.

        Returns False when the compare-and-set finds the row no longer in
        ``from_statuses``. The caller owns commit/rollback.
        """
        values = {
            "status": PaymentStatus.completed,
            "processed_at": processed_at,
            "failure_reason": None,
            **(extra_values or {}),
        }
        result = self.db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status.in_(from_statuses))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        invoice = self._lock_invoice(invoice_id=payment.invoice_id, tenant_id=payment.tenant_id)
        if invoice is None:
            raise NotFoundError("Invoice not found")
        self._apply_ledger_delta(invoice, payment.amount)
        return True

    def _mark_failed(self, *, payment_id: int, reason: str) -> Payment:
        self.db.rollback()
        self.db.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status.in_(SETTLEABLE_STATUSES))
            .values(status=PaymentStatus.failed, failure_reason=reason)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return self._reload_payment(payment_id)

    def _after_ledger_change(self, payment: Payment, *, notify: bool) -> None:
        invalidate_payment_stats_cache(tenant_id=payment.tenant_id, center_id=payment.center_id)
        if not notify or self.notifier is None:
            return
        try:
            self.notifier.payment_completed(payment)
        except Exception as exc:
            # Receipts are fire-and-forget; the ledger is already committed.
            logger.warning(
                "payment_receipt_notification_failed",
                payment_id=payment.id,
                reference=payment.reference_number,
                error=str(exc),
            )

    def _persist_new_payment(self, payment: Payment) -> None:
        self.db.add(payment)
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning("payment_reference_collision", reference=payment.reference_number)
            raise ConflictError("Payment reference already exists, please retry") from exc

    def create_manual_payment(self, *, tenant_id: int, center_id: int, payload: PaymentCreate) -> Payment:
        amount = quantize_amount(payload.amount)
        logger.info(
            "payment_creation_started",
            tenant_id=tenant_id,
            invoice_id=payload.invoice_id,
            amount=str(amount),
            payment_method=payload.payment_method.value,
        )
        try:
            currency = _ledger_currency(payload.currency)
            self._get_payable_invoice(invoice_id=payload.invoice_id, tenant_id=tenant_id, amount=amount)
        except ValidationError as exc:
            self.db.rollback()
            logger.warning(
                "payment_creation_rejected",
                tenant_id=tenant_id,
                invoice_id=payload.invoice_id,
                reason=str(exc),
            )
            raise

        payment = Payment(
            tenant_id=tenant_id,
            center_id=center_id,
            invoice_id=payload.invoice_id,
            reference_number=generate_reference_number(self.clock()),
            amount=amount,
            currency=currency,
            payment_method=payload.payment_method.value,
            mobile_money_provider=payload.mobile_money_provider.value if payload.mobile_money_provider else None,
            mobile_money_phone=payload.mobile_money_phone,
            bank_name=payload.bank_name,
            account_number=payload.account_number,
            transaction_id=payload.transaction_id,
            card_provider=payload.card_provider.value if payload.card_provider else None,
            cash_received_by=payload.cash_received_by,
            paid_by=payload.paid_by,
            paid_by_phone=payload.paid_by_phone,
            paid_by_email=payload.paid_by_email,
            notes=payload.notes,
            status=PaymentStatus.pending,
            is_refunded=False,
            receipt_sent=False,
        )
        self._persist_new_payment(payment)

        completed = False
        if payload.payment_method == PaymentMethod.cash:
            try:
                completed = self._complete(payment, from_statuses=OPEN_STATUSES, processed_at=self.clock())
            except Exception:
                self.db.rollback()
                raise
        self.db.commit()
        payment = self._reload_payment(payment.id)
        self._after_ledger_change(payment, notify=completed)
        logger.info(
            "payment_creation_completed",
            tenant_id=tenant_id,
            invoice_id=payment.invoice_id,
            payment_id=payment.id,
            reference=payment.reference_number,
            status=payment.status.value,
        )
        return payment

    def initiate_online_payment(
        self, *, tenant_id: int, center_id: int, payload: OnlinePaymentInitiate
    ) -> dict[str, Any]:
        if not self.gateway.is_configured():
            raise ValidationError("Payment gateway not configured")
        amount = quantize_amount(payload.amount)
        try:
            invoice = self._get_payable_invoice(invoice_id=payload.invoice_id, tenant_id=tenant_id, amount=amount)
        except ValidationError as exc:
            self.db.rollback()
            logger.warning(
                "payment_initiation_rejected",
                tenant_id=tenant_id,
                invoice_id=payload.invoice_id,
                reason=str(exc),
            )
            raise

        is_card = payload.payment_method == OnlinePaymentMethod.card
        money = Money(amount, settings.default_currency)
        reference = generate_reference_number(self.clock())
        payment = Payment(
            tenant_id=tenant_id,
            center_id=center_id,
            invoice_id=invoice.id,
            reference_number=reference,
            amount=money.amount,
            currency=money.currency,
            payment_method=PaymentMethod.card.value if is_card else PaymentMethod.mobile_money.value,
            gateway=PAYSTACK_GATEWAY,
            card_provider=CardProvider.paystack.value if is_card else None,
            mobile_money_provider=payload.provider.value if payload.provider else None,
            mobile_money_phone=payload.phone,
            paid_by_email=payload.email,
            status=PaymentStatus.pending,
            is_refunded=False,
            receipt_sent=False,
        )
        self._persist_new_payment(payment)
        invoice_number = invoice.invoice_number
        child_id = invoice.child_id
        self.db.commit()
        invalidate_payment_stats_cache(tenant_id=tenant_id, center_id=center_id)

        metadata = {
            **(payload.metadata or {}),
            "invoice_id": payload.invoice_id,
            "invoice_number": invoice_number,
            "child_id": child_id,
            "tenant_id": tenant_id,
            "center_id": center_id,
        }
        try:
            initialization = self.gateway.initialize_transaction(
                email=payload.email,
                amount_minor=money.to_minor_units(),
                reference=reference,
                currency=money.currency,
                metadata=metadata,
                channels=["card"] if is_card else ["mobile_money"],
            )
        except GatewayError as exc:
            self._mark_failed(payment_id=payment.id, reason=str(exc))
            logger.error(
                "payment_initiation_gateway_failed",
                tenant_id=tenant_id,
                payment_id=payment.id,
                reference=reference,
                error=str(exc),
            )
            raise

        logger.info(
            "payment_initiation_completed",
            tenant_id=tenant_id,
            payment_id=payment.id,
            reference=reference,
            amount_minor=money.to_minor_units(),
        )
        return {
            "payment": self._reload_payment(payment.id),
            "authorization_url": initialization.authorization_url,
            "access_code": initialization.access_code,
            "reference": reference,
        }

    def reconcile(self, *, reference: str, tenant_id: int) -> Payment:
        """Apply the gateway's authoritative outcome for ``reference`` exactly once."""
        payment = get_payment_by_reference(self.db, reference=reference, tenant_id=tenant_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        if payment.status in (PaymentStatus.completed, PaymentStatus.refunded):
            logger.info("payment_reconcile_already_applied", reference=reference, payment_id=payment.id)
            return payment
        if payment.gateway is None:
            raise ValidationError("Payment is not processed through the payment gateway")

        payment_id = payment.id
        logger.info("payment_reconcile_started", reference=reference, payment_id=payment_id)
        try:
            verification = self.gateway.verify_transaction(reference)
        except GatewayError as exc:
            refreshed = self._mark_failed(payment_id=payment_id, reason=str(exc))
            if refreshed.status == PaymentStatus.completed:
                return refreshed
            logger.error("payment_reconcile_gateway_failed", reference=reference, error=str(exc))
            raise

        if not verification.success:
            reason = verification.gateway_response or "Payment failed"
            refreshed = self._mark_failed(payment_id=payment_id, reason=reason)
            if refreshed.status == PaymentStatus.completed:
                return refreshed
            logger.warning("payment_reconcile_declined", reference=reference, reason=reason)
            raise PaymentFailedError(reason)

        extra_values: dict[str, Any] = {"confirmation_code": verification.reference}
        if verification.transaction_id:
            extra_values["transaction_id"] = verification.transaction_id
        if verification.card_last_four_digits:
            extra_values["card_last_four_digits"] = verification.card_last_four_digits
        try:
            applied = self._complete(
                payment,
                from_statuses=SETTLEABLE_STATUSES,
                processed_at=verification.settled_at or self.clock(),
                extra_values=extra_values,
            )
        except Exception:
            self.db.rollback()
            raise

        if not applied:
            self.db.rollback()
            current = self._reload_payment(payment_id)
            logger.info(
                "payment_reconcile_lost_race",
                reference=reference,
                payment_id=payment_id,
                status=current.status.value,
            )
            if current.status in (PaymentStatus.completed, PaymentStatus.refunded):
                return current
            raise ConflictError("Payment state changed during reconciliation")

        self.db.commit()
        payment = self._reload_payment(payment_id)
        self._after_ledger_change(payment, notify=True)
        logger.info(
            "payment_reconcile_completed",
            reference=reference,
            payment_id=payment_id,
            invoice_id=payment.invoice_id,
            amount=str(payment.amount),
        )
        return payment

    def handle_webhook(self, *, raw_body: bytes, signature: str | None) -> dict[str, Any]:
        if not self.gateway.verify_webhook_signature(raw_body, signature):
            logger.warning("payment_webhook_signature_rejected", has_signature=bool(signature))
            raise SignatureError("Invalid signature")
        try:
            event = json.loads(raw_body)
        except ValueError as exc:
            raise ValidationError("Malformed webhook payload") from exc

        event_name = event.get("event") if isinstance(event, dict) else None
        if event_name != CHARGE_SUCCESS_EVENT:
            logger.info("payment_webhook_event_ignored", webhook_event=event_name)
            return {"received": True, "event": event_name, "reconciled": False}

        data = event.get("data") if isinstance(event.get("data"), dict) else {}
        reference = data.get("reference")
        metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
        try:
            tenant_id = int(metadata["tenant_id"])
        except (KeyError, TypeError, ValueError):
            tenant_id = None
        if not reference or tenant_id is None:
            logger.warning("payment_webhook_missing_context", webhook_event=event_name, reference=reference)
            return {"received": True, "event": event_name, "reconciled": False}

        try:
            payment = self.reconcile(reference=reference, tenant_id=tenant_id)
        except (NotFoundError, PaymentFailedError, ValidationError) as exc:
            logger.warning("payment_webhook_reconcile_skipped", reference=reference, reason=str(exc))
            return {"received": True, "event": event_name, "reconciled": False}
        return {
            "received": True,
            "event": event_name,
            "reconciled": payment.status in (PaymentStatus.completed, PaymentStatus.refunded),
        }

    def update_payment_status(
        self,
        *,
        payment_id: int,
        tenant_id: int,
        status: PaymentStatus,
        notes: str | None = None,
    ) -> Payment:
        payment = get_payment_by_id(self.db, payment_id=payment_id, tenant_id=tenant_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        current = payment.status
        if status == PaymentStatus.refunded:
            raise ValidationError("Use the refund operation to refund payments")
        if status != current and status not in STATUS_TRANSITIONS.get(current, set()):
            raise ValidationError(f"Cannot change payment status from {current.value} to {status.value}")

        if status == current:
            if notes:
                payment.notes = notes
                self.db.commit()
            return self._reload_payment(payment.id)

        if status == PaymentStatus.completed:
            extra_values = {"notes": notes} if notes else None
            try:
                applied = self._complete(
                    payment,
                    from_statuses=(current,),
                    processed_at=self.clock(),
                    extra_values=extra_values,
                )
            except Exception:
                self.db.rollback()
                raise
            if not applied:
                self.db.rollback()
                raise ConflictError("Payment status changed concurrently")
            self.db.commit()
            payment = self._reload_payment(payment.id)
            self._after_ledger_change(payment, notify=True)
        else:
            values: dict[str, Any] = {"status": status}
            if notes:
                values["notes"] = notes
            result = self.db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                raise ConflictError("Payment status changed concurrently")
            self.db.commit()
            payment = self._reload_payment(payment.id)
            invalidate_payment_stats_cache(tenant_id=payment.tenant_id, center_id=payment.center_id)

        logger.info(
            "payment_status_updated",
            tenant_id=tenant_id,
            payment_id=payment.id,
            from_status=current.value,
            to_status=status.value,
        )
        return payment

    def refund(
        self,
        *,
        payment_id: int,
        tenant_id: int,
        refund_amount: Decimal | None = None,
        reason: str | None = None,
    ) -> Payment:
        payment = get_payment_by_id(self.db, payment_id=payment_id, tenant_id=tenant_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        if payment.is_refunded:
            raise ValidationError("Payment already refunded")
        if payment.status != PaymentStatus.completed:
            raise ValidationError("Can only refund completed payments")
        amount_to_refund = quantize_amount(refund_amount) if refund_amount is not None else payment.amount
        if amount_to_refund <= ZERO:
            raise ValidationError("Refund amount must be positive")
        if amount_to_refund > payment.amount:
            raise ValidationError("Refund amount cannot exceed payment amount")

        logger.info(
            "payment_refund_started",
            tenant_id=tenant_id,
            payment_id=payment.id,
            refund_amount=str(amount_to_refund),
        )
        refund_minor = Money(amount_to_refund, payment.currency).to_minor_units()
        call_gateway = _is_gateway_settled(payment)
        # The claiming UPDATE holds the payment row until commit, so a second
        # refund blocks here and then finds the row already refunded.
        try:
            result = self.db.execute(
                update(Payment)
                .where(
                    Payment.id == payment.id,
                    Payment.status == PaymentStatus.completed,
                    Payment.is_refunded.is_(False),
                )
                .values(
                    status=PaymentStatus.refunded,
                    is_refunded=True,
                    refund_amount=amount_to_refund,
                    refunded_at=self.clock(),
                    refund_reason=reason or "Refund requested",
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.warning("payment_refund_lost_race", payment_id=payment_id)
                raise ConflictError("Payment was refunded concurrently")
            invoice = self._lock_invoice(invoice_id=payment.invoice_id, tenant_id=payment.tenant_id)
            if invoice is None:
                raise NotFoundError("Invoice not found")
            self._apply_ledger_delta(invoice, -amount_to_refund)
            self.db.flush()
            if call_gateway:
                try:
                    self.gateway.refund_transaction(payment.reference_number, refund_minor)
                except GatewayError as exc:
                    logger.error("payment_refund_gateway_failed", payment_id=payment_id, error=str(exc))
                    raise RefundFailedError(f"Refund failed: {exc}") from exc
        except Exception:
            self.db.rollback()
            raise
        self.db.commit()

        payment = self._reload_payment(payment_id)
        self._after_ledger_change(payment, notify=False)
        logger.info(
            "payment_refund_completed",
            tenant_id=tenant_id,
            payment_id=payment.id,
            invoice_id=payment.invoice_id,
            refund_amount=str(amount_to_refund),
        )
        return payment
