from datetime import date
from decimal import Decimal
from enum import Enum


class InvoiceStatus(str, Enum):
    pending = "pending"
    partial = "partial"
    paid = "paid"
    overdue = "overdue"
    cancelled = "cancelled"


def derive_invoice_status(
    *,
    current_status: InvoiceStatus,
    amount_paid: Decimal,
    balance_remaining: Decimal,
    due_date: date,
    today: date,
) -> InvoiceStatus:
    """Return the ledger status implied by the running totals.

    ``cancelled`` is set by the billing process and is never overwritten here.
    """
    if current_status == InvoiceStatus.cancelled:
        return InvoiceStatus.cancelled
    if amount_paid == Decimal("0.00"):
        return InvoiceStatus.overdue if today > due_date else InvoiceStatus.pending
    if balance_remaining <= Decimal("0.00"):
        return InvoiceStatus.paid
    return InvoiceStatus.partial


def is_overdue(*, status: InvoiceStatus, due_date: date, today: date) -> bool:
    if status in (InvoiceStatus.paid, InvoiceStatus.cancelled):
        return False
    return today > due_date


def days_overdue(*, status: InvoiceStatus, due_date: date, today: date) -> int:
    if not is_overdue(status=status, due_date=due_date, today=today):
        return 0
    return (today - due_date).days
