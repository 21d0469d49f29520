from datetime import date
from decimal import Decimal

import pytest

from daycare.domain.invoice_status import InvoiceStatus, days_overdue, derive_invoice_status, is_overdue

DUE = date(2026, 10, 31)


@pytest.mark.parametrize(
    ("current", "amount_paid", "balance", "today", "expected"),
    [
        (InvoiceStatus.pending, "0.00", "500.00", date(2026, 10, 17), InvoiceStatus.pending),
        (InvoiceStatus.pending, "0.00", "500.00", date(2026, 11, 1), InvoiceStatus.overdue),
        (InvoiceStatus.pending, "0.00", "500.00", DUE, InvoiceStatus.pending),
        (InvoiceStatus.overdue, "200.00", "300.00", date(2026, 11, 5), InvoiceStatus.partial),
        (InvoiceStatus.partial, "500.00", "0.00", date(2026, 10, 17), InvoiceStatus.paid),
        (InvoiceStatus.paid, "300.00", "200.00", date(2026, 10, 17), InvoiceStatus.partial),
        (InvoiceStatus.paid, "0.00", "500.00", date(2026, 10, 17), InvoiceStatus.pending),
        (InvoiceStatus.cancelled, "500.00", "0.00", date(2026, 10, 17), InvoiceStatus.cancelled),
    ],
)
def test_derive_invoice_status(current, amount_paid, balance, today, expected):
    """
    Validate invoice status follows the running totals.

    1. Take a current status, totals and calendar date.
    2. Derive the status once.
    3. Validate cancelled stays sticky.
    4. Validate unpaid, partial and paid states match the totals.
    """
    assert (
        derive_invoice_status(
            current_status=current,
            amount_paid=Decimal(amount_paid),
            balance_remaining=Decimal(balance),
            due_date=DUE,
            today=today,
        )
        == expected
    )


def test_overdue_helpers_ignore_settled_invoices():
    """
    Validate overdue helpers only count open invoices past due.

    1. Evaluate an open invoice five days past due.
    2. Evaluate a paid invoice past due.
    3. Validate open invoice reports five overdue days.
    4. Validate paid invoice is never overdue.
    """
    today = date(2026, 11, 5)
    assert is_overdue(status=InvoiceStatus.partial, due_date=DUE, today=today) is True
    assert days_overdue(status=InvoiceStatus.partial, due_date=DUE, today=today) == 5
    assert is_overdue(status=InvoiceStatus.paid, due_date=DUE, today=today) is False
    assert days_overdue(status=InvoiceStatus.cancelled, due_date=DUE, today=today) == 0
