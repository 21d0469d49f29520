from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from daycare.config import settings
from daycare.domain.money import quantize_amount
from daycare.domain.payment_enums import PaymentStatus
from daycare.infrastructure.cache.redis_store import evict_cached, read_cached, write_cached
from daycare.infrastructure.db.models import Payment


def payment_stats_cache_key(*, tenant_id: int, center_id: int | None) -> str:
    return f"payment_stats:{tenant_id}:{center_id if center_id is not None else 'all'}"


def invalidate_payment_stats_cache(*, tenant_id: int, center_id: int | None) -> None:
    keys = [payment_stats_cache_key(tenant_id=tenant_id, center_id=None)]
    if center_id is not None:
        keys.append(payment_stats_cache_key(tenant_id=tenant_id, center_id=center_id))
    evict_cached(*keys)


def get_payment_stats(db: Session, *, tenant_id: int, center_id: int | None = None) -> dict:
    cache_key = payment_stats_cache_key(tenant_id=tenant_id, center_id=center_id)
    cached = read_cached(cache_key)
    if cached is not None:
        return {
            "total": int(cached["total"]),
            "completed": int(cached["completed"]),
            "pending": int(cached["pending"]),
            "failed": int(cached["failed"]),
            "refunded": int(cached["refunded"]),
            "total_amount": quantize_amount(cached["total_amount"]),
        }

    filters = [Payment.tenant_id == tenant_id, Payment.deleted_at.is_(None)]
    if center_id is not None:
        filters.append(Payment.center_id == center_id)

    counts = dict(
        db.execute(select(Payment.status, func.count(Payment.id)).where(*filters).group_by(Payment.status)).all()
    )
    completed_total = db.execute(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(*filters, Payment.status == PaymentStatus.completed)
    ).scalar_one()

    stats = {
        "total": sum(counts.values()),
        "completed": counts.get(PaymentStatus.completed, 0),
        "pending": counts.get(PaymentStatus.pending, 0),
        "failed": counts.get(PaymentStatus.failed, 0),
        "refunded": counts.get(PaymentStatus.refunded, 0),
        "total_amount": quantize_amount(Decimal(str(completed_total))),
    }
    write_cached(
        cache_key,
        {**stats, "total_amount": str(stats["total_amount"])},
        settings.payment_stats_cache_ttl_seconds,
    )
    return stats
