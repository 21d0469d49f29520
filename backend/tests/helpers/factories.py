import itertools
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from daycare.domain.invoice_status import InvoiceStatus
from daycare.domain.payment_enums import PaymentStatus
from daycare.infrastructure.db.models import Invoice, Payment

_invoice_numbers = itertools.count(1)
_payment_references = itertools.count(1)


def create_invoice(
    db: Session,
    *,
    tenant_id: int = 1,
    center_id: int = 1,
    child_id: int = 100,
    total_amount: Decimal | str = "500.00",
    amount_paid: Decimal | str = "0.00",
    status: InvoiceStatus = InvoiceStatus.pending,
    due_date: date = date(2099, 12, 31),
    invoice_number: str | None = None,
) -> Invoice:
    total = Decimal(total_amount)
    paid = Decimal(amount_paid)
    invoice = Invoice(
        tenant_id=tenant_id,
        center_id=center_id,
        child_id=child_id,
        invoice_number=invoice_number or f"INV-2026-10-{next(_invoice_numbers):05d}",
        invoice_date=date(2026, 10, 1),
        due_date=due_date,
        month=10,
        year=2026,
        tuition_amount=total,
        subtotal=total,
        total_amount=total,
        amount_paid=paid,
        balance_remaining=total - paid,
        status=status,
    )
    db.add(invoice)
    db.commit()
    db.refresh(invoice)
    return invoice


def create_payment(
    db: Session,
    *,
    invoice: Invoice,
    amount: Decimal | str,
    status: PaymentStatus = PaymentStatus.pending,
    payment_method: str = "card",
    gateway: str | None = "paystack",
    reference_number: str | None = None,
    refund_amount: Decimal | str | None = None,
    confirmation_code: str | None = None,
) -> Payment:
    payment = Payment(
        tenant_id=invoice.tenant_id,
        center_id=invoice.center_id,
        invoice_id=invoice.id,
        reference_number=reference_number or f"PAY-TEST-{next(_payment_references):06d}",
        amount=Decimal(amount),
        currency="GHS",
        payment_method=payment_method,
        gateway=gateway,
        card_provider="paystack" if gateway == "paystack" and payment_method == "card" else None,
        status=status,
        processed_at=datetime(2026, 10, 17, 9, 0, tzinfo=timezone.utc) if status == PaymentStatus.completed else None,
        confirmation_code=confirmation_code,
        is_refunded=status == PaymentStatus.refunded,
        refund_amount=Decimal(refund_amount) if refund_amount is not None else None,
        receipt_sent=False,
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)
    return payment


def get_invoice(db: Session, invoice_id: int) -> Invoice:
    return db.get(Invoice, invoice_id, populate_existing=True)


def get_payment(db: Session, payment_id: int) -> Payment:
    return db.get(Payment, payment_id, populate_existing=True)


def list_payments_for_invoice(db: Session, *, invoice_id: int) -> list[Payment]:
    return list(
        db.execute(
            select(Payment)
            .where(Payment.invoice_id == invoice_id)
            .order_by(Payment.id)
            .execution_options(populate_existing=True)
        )
        .scalars()
        .all()
    )


def count_payments(db: Session) -> int:
    return db.execute(select(func.count(Payment.id))).scalar_one()


def update_invoice(db: Session, invoice: Invoice, **values) -> Invoice:
    for key, value in values.items():
        setattr(invoice, key, value)
    db.commit()
    db.refresh(invoice)
    return invoice


def list_from_query(db: Session, query: Select):
    return list(db.execute(query).scalars().all())
