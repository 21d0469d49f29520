from daycare.application.services.ledger_audit_service import run_ledger_checks
from daycare.infrastructure.db.session import SessionLocal
from daycare.infrastructure.logging import get_logger
from daycare.infrastructure.tasks.celery_app import celery_app

logger = get_logger(__name__)


@celery_app.task(name="payments.audit_ledgers")
def audit_ledgers_task(tenant_id: int) -> dict:
    db = SessionLocal()
    logger.info("ledger_audit_task_started", tenant_id=tenant_id)
    try:
        findings = run_ledger_checks(db, tenant_id=tenant_id)
        if findings:
            logger.warning("ledger_audit_task_found_issues", tenant_id=tenant_id, findings_total=len(findings))
        return {"tenant_id": tenant_id, "findings_total": len(findings), "findings": findings}
    except Exception as exc:
        logger.error("ledger_audit_task_failed", tenant_id=tenant_id, error=str(exc))
        raise
    finally:
        db.close()


def enqueue_ledger_audit_task(*, tenant_id: int) -> str:
    task = audit_ledgers_task.delay(tenant_id=tenant_id)
    return str(task.id)
