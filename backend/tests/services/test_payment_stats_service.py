from decimal import Decimal

from daycare.application.services.payment_stats_service import get_payment_stats, payment_stats_cache_key
from daycare.domain.invoice_status import InvoiceStatus
from daycare.domain.payment_enums import PaymentMethod, PaymentStatus
from daycare.interfaces.api.v1.schemas.payment import PaymentCreate
from tests.helpers.factories import create_invoice, create_payment


def test_payment_stats_cache_key_scopes_center():
    """
    Validate stats cache keys separate tenant-wide and center views.

    1. Build key without center.
    2. Build key with center.
    3. Validate tenant-wide key uses the all marker.
    4. Validate center key embeds the center id.
    """
    assert payment_stats_cache_key(tenant_id=4, center_id=None) == "payment_stats:4:all"
    assert payment_stats_cache_key(tenant_id=4, center_id=7) == "payment_stats:4:7"


def test_get_payment_stats_counts_statuses_and_completed_amount(db_session):
    """
    Validate stats aggregate counts by status and completed totals.

    1. Seed completed, pending, failed and refunded payments plus another tenant.
    2. Compute tenant stats once.
    3. Validate counts per status.
    4. Validate total amount sums completed payments only.
    """
    invoice = create_invoice(db_session, total_amount="1000.00", amount_paid="350.50", status=InvoiceStatus.partial)
    foreign_invoice = create_invoice(db_session, tenant_id=2)
    create_payment(db_session, invoice=invoice, amount="200.25", status=PaymentStatus.completed)
    create_payment(db_session, invoice=invoice, amount="150.25", status=PaymentStatus.completed)
    create_payment(db_session, invoice=invoice, amount="40.00")
    create_payment(db_session, invoice=invoice, amount="30.00", status=PaymentStatus.failed)
    create_payment(db_session, invoice=invoice, amount="20.00", status=PaymentStatus.refunded, refund_amount="20.00")
    create_payment(db_session, invoice=foreign_invoice, amount="99.00", status=PaymentStatus.completed)

    stats = get_payment_stats(db_session, tenant_id=1)

    assert stats == {
        "total": 5,
        "completed": 2,
        "pending": 1,
        "failed": 1,
        "refunded": 1,
        "total_amount": Decimal("350.50"),
    }


def test_get_payment_stats_served_from_cache_until_ledger_changes(db_session, reconciliation_service, fake_redis):
    """
    Validate stats are cached and invalidated when a payment settles.

    1. Seed an invoice and compute stats to warm the cache.
    2. Record a cash payment through the reconciliation service.
    3. Validate the cache entry was evicted by the ledger change.
    4. Validate recomputed stats include the new payment.
    """
    invoice = create_invoice(db_session, total_amount="500.00")
    assert get_payment_stats(db_session, tenant_id=1)["total"] == 0
    assert payment_stats_cache_key(tenant_id=1, center_id=None) in fake_redis.values

    reconciliation_service.create_manual_payment(
        tenant_id=1,
        center_id=1,
        payload=PaymentCreate(invoice_id=invoice.id, amount=Decimal("125.00"), payment_method=PaymentMethod.cash),
    )

    assert payment_stats_cache_key(tenant_id=1, center_id=None) not in fake_redis.values
    stats = get_payment_stats(db_session, tenant_id=1)
    assert stats["completed"] == 1
    assert stats["total_amount"] == Decimal("125.00")
