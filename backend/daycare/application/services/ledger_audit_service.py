from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from daycare.domain.invoice_status import InvoiceStatus, derive_invoice_status
from daycare.domain.money import ZERO, quantize_amount
from daycare.domain.payment_enums import PaymentStatus
from daycare.infrastructure.db.models import Invoice, Payment
from daycare.infrastructure.logging import get_logger

logger = get_logger(__name__)

# Pending and overdue differ only by the calendar, not by the ledger.
_UNPAID_STATUSES = {InvoiceStatus.pending, InvoiceStatus.overdue}


def _load_invoices(db: Session, *, tenant_id: int) -> list[Invoice]:
    return list(
        db.execute(
            select(Invoice).where(Invoice.tenant_id == tenant_id, Invoice.deleted_at.is_(None)).order_by(Invoice.id)
        )
        .scalars()
        .all()
    )


def _settled_totals(db: Session, *, tenant_id: int) -> dict[int, Decimal]:
    rows = db.execute(
        select(Payment.invoice_id, Payment.amount, Payment.status, Payment.refund_amount).where(
            Payment.tenant_id == tenant_id,
            Payment.deleted_at.is_(None),
            Payment.status.in_((PaymentStatus.completed, PaymentStatus.refunded)),
        )
    ).all()
    totals: dict[int, Decimal] = defaultdict(lambda: ZERO)
    for row in rows:
        totals[row.invoice_id] += row.amount
        if row.status == PaymentStatus.refunded and row.refund_amount is not None:
            totals[row.invoice_id] -= row.refund_amount
    return {invoice_id: quantize_amount(total) for invoice_id, total in totals.items()}


def _check_balance_invariant(invoices: list[Invoice]) -> list[dict]:
    findings = []
    for invoice in invoices:
        consistent = (
            invoice.amount_paid >= ZERO
            and invoice.balance_remaining >= ZERO
            and quantize_amount(invoice.amount_paid + invoice.balance_remaining) == invoice.total_amount
        )
        if consistent:
            continue
        findings.append(
            {
                "check_code": "invoice_balance_mismatch",
                "severity": "high",
                "entity_type": "invoice",
                "entity_id": invoice.id,
                "message": "Invoice amount paid and balance remaining do not add up to the total",
                "details_json": {
                    "total_amount": str(invoice.total_amount),
                    "amount_paid": str(invoice.amount_paid),
                    "balance_remaining": str(invoice.balance_remaining),
                },
            }
        )
    return findings


def _check_payment_sum(invoices: list[Invoice], settled_totals: dict[int, Decimal]) -> list[dict]:
    findings = []
    for invoice in invoices:
        settled = settled_totals.get(invoice.id, ZERO)
        if settled == invoice.amount_paid:
            continue
        findings.append(
            {
                "check_code": "invoice_payment_sum_mismatch",
                "severity": "high",
                "entity_type": "invoice",
                "entity_id": invoice.id,
                "message": "Invoice amount paid does not match its settled payments net of refunds",
                "details_json": {"amount_paid": str(invoice.amount_paid), "settled_payments_total": str(settled)},
            }
        )
    return findings


def _check_status_consistency(invoices: list[Invoice], *, today) -> list[dict]:
    findings = []
    for invoice in invoices:
        expected = derive_invoice_status(
            current_status=invoice.status,
            amount_paid=invoice.amount_paid,
            balance_remaining=invoice.balance_remaining,
            due_date=invoice.due_date,
            today=today,
        )
        if expected == invoice.status or {expected, invoice.status} <= _UNPAID_STATUSES:
            continue
        findings.append(
            {
                "check_code": "invoice_status_mismatch",
                "severity": "medium",
                "entity_type": "invoice",
                "entity_id": invoice.id,
                "message": "Invoice status does not match its running totals",
                "details_json": {"status": invoice.status.value, "expected_status": expected.value},
            }
        )
    return findings


def run_ledger_checks(db: Session, *, tenant_id: int, as_of: datetime | None = None) -> list[dict]:
    as_of = as_of or datetime.now(timezone.utc)
    invoices = _load_invoices(db, tenant_id=tenant_id)
    settled_totals = _settled_totals(db, tenant_id=tenant_id)

    findings: list[dict] = []
    findings.extend(_check_balance_invariant(invoices))
    findings.extend(_check_payment_sum(invoices, settled_totals))
    findings.extend(_check_status_consistency(invoices, today=as_of.date()))
    logger.info(
        "ledger_audit_completed",
        tenant_id=tenant_id,
        invoices_checked=len(invoices),
        findings_total=len(findings),
    )
    return findings
