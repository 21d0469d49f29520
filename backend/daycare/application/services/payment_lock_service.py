from collections.abc import Iterator
from contextlib import contextmanager

from daycare.application.errors import ConflictError
from daycare.config import settings
from daycare.infrastructure.cache.redis_store import acquire_lock, release_lock
from daycare.infrastructure.logging import get_logger

logger = get_logger(__name__)


def payment_lock_key(*, tenant_id: int, invoice_id: int) -> str:
    return f"payment_lock:{tenant_id}:{invoice_id}"


@contextmanager
def payment_creation_lock(*, tenant_id: int, invoice_id: int) -> Iterator[None]:
    """Reject a second payment submission for the same invoice while one is in flight."""
    lock_key = payment_lock_key(tenant_id=tenant_id, invoice_id=invoice_id)
    lock_token = acquire_lock(lock_key, settings.payment_lock_ttl_seconds)
    if lock_token is None:
        logger.warning("payment_lock_contended", tenant_id=tenant_id, invoice_id=invoice_id)
        raise ConflictError("A payment is already being processed for this invoice")
    try:
        yield
    finally:
        release_lock(lock_key, lock_token)
