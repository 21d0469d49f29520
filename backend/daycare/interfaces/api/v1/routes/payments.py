from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import String, cast
from sqlalchemy.orm import Session

from daycare.application.gateway import PaymentGateway
from daycare.application.services.ledger_audit_service import run_ledger_checks
from daycare.application.services.pagination_service import paginate_scalars
from daycare.application.services.payment_lock_service import payment_creation_lock
from daycare.application.services.payment_service import (
    PaymentReconciliationService,
    build_payments_query,
    get_invoice_by_id,
    get_payment_by_id,
    get_payment_by_reference,
    list_invoice_payments,
    serialize_payment_response,
    soft_delete_payment,
)
from daycare.application.services.payment_stats_service import get_payment_stats
from daycare.domain.payment_enums import MobileMoneyProvider, OnlinePaymentMethod, PaymentMethod, PaymentStatus
from daycare.infrastructure.db.models import Payment
from daycare.infrastructure.db.session import get_db
from daycare.interfaces.api.v1.dependencies.pagination import get_pagination_params
from daycare.interfaces.api.v1.dependencies.services import get_payment_gateway, get_reconciliation_service
from daycare.interfaces.api.v1.dependencies.tenant import (
    get_current_center_id,
    get_current_tenant_id,
    get_optional_center_id,
)
from daycare.interfaces.api.v1.schemas.pagination import PaginationParams
from daycare.interfaces.api.v1.schemas.payment import (
    LedgerAuditResponse,
    OnlinePaymentInitiate,
    OnlinePaymentInitiateResponse,
    PaymentCreate,
    PaymentGatewayConfigResponse,
    PaymentListResponse,
    PaymentRefundRequest,
    PaymentResponse,
    PaymentStatsResponse,
    PaymentStatusUpdate,
    WebhookAck,
)

router = APIRouter(tags=["payments"])


@router.post(
    "/payments",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record manual payment",
    description=(
        "Record a payment against an invoice of the active tenant (`X-Tenant-Id`, `X-Center-Id`). "
        "Cash payments are settled immediately; other methods stay pending until confirmed. "
        "A short Redis lock per invoice rejects duplicate submits."
    ),
    responses={
        400: {"description": "Payment validation error"},
        409: {"description": "Payment already in progress for this invoice"},
    },
)
def create_payment_endpoint(
    payload: PaymentCreate,
    tenant_id: int = Depends(get_current_tenant_id),
    center_id: int = Depends(get_current_center_id),
    service: PaymentReconciliationService = Depends(get_reconciliation_service),
):
    with payment_creation_lock(tenant_id=tenant_id, invoice_id=payload.invoice_id):
        payment = service.create_manual_payment(tenant_id=tenant_id, center_id=center_id, payload=payload)
    return serialize_payment_response(payment)


@router.post(
    "/payments/initiate",
    response_model=OnlinePaymentInitiateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Initiate online payment",
    description="Create a pending payment and open a hosted gateway transaction for card or mobile money.",
    responses={
        400: {"description": "Payment validation error or gateway not configured"},
        409: {"description": "Payment already in progress for this invoice"},
        502: {"description": "Payment gateway error"},
    },
)
def initiate_payment_endpoint(
    payload: OnlinePaymentInitiate,
    tenant_id: int = Depends(get_current_tenant_id),
    center_id: int = Depends(get_current_center_id),
    service: PaymentReconciliationService = Depends(get_reconciliation_service),
):
    with payment_creation_lock(tenant_id=tenant_id, invoice_id=payload.invoice_id):
        result = service.initiate_online_payment(tenant_id=tenant_id, center_id=center_id, payload=payload)
    return {**result, "payment": serialize_payment_response(result["payment"])}


@router.get(
    "/payments/verify/{reference}",
    response_model=PaymentResponse,
    summary="Verify online payment",
    description="Ask the gateway for the outcome of a hosted transaction and apply it to the invoice exactly once.",
    responses={
        402: {"description": "Gateway reported the payment as failed"},
        404: {"description": "Payment not found"},
        502: {"description": "Payment gateway error"},
    },
)
def verify_payment_endpoint(
    reference: str,
    tenant_id: int = Depends(get_current_tenant_id),
    service: PaymentReconciliationService = Depends(get_reconciliation_service),
):
    payment = service.reconcile(reference=reference, tenant_id=tenant_id)
    return serialize_payment_response(payment)


@router.post(
    "/payments/webhook",
    response_model=WebhookAck,
    summary="Gateway webhook",
    description="Signed gateway callback. The signature is checked against the raw request body.",
    responses={400: {"description": "Invalid signature"}, 502: {"description": "Payment gateway error"}},
)
async def payment_webhook_endpoint(
    request: Request,
    x_paystack_signature: str | None = Header(default=None, alias="x-paystack-signature"),
    service: PaymentReconciliationService = Depends(get_reconciliation_service),
):
    raw_body = await request.body()
    return await run_in_threadpool(service.handle_webhook, raw_body=raw_body, signature=x_paystack_signature)


@router.get(
    "/payments",
    response_model=PaymentListResponse,
    summary="List payments",
    description="List tenant payments, optionally scoped to `X-Center-Id`, with filters and pagination/search.",
)
def list_payments(
    invoice_id: int | None = Query(default=None),
    payment_status: PaymentStatus | None = Query(default=None, alias="status"),
    payment_method: PaymentMethod | None = Query(default=None),
    tenant_id: int = Depends(get_current_tenant_id),
    center_id: int | None = Depends(get_optional_center_id),
    pagination: PaginationParams = Depends(get_pagination_params),
    db: Session = Depends(get_db),
):
    base_query = build_payments_query(
        tenant_id=tenant_id,
        center_id=center_id,
        invoice_id=invoice_id,
        status=payment_status,
        payment_method=payment_method,
    )
    items, meta = paginate_scalars(
        db=db,
        base_query=base_query,
        offset=pagination.offset,
        limit=pagination.limit,
        search=pagination.search,
        search_columns=[
            Payment.reference_number,
            Payment.payment_method,
            Payment.paid_by,
            cast(Payment.amount, String),
        ],
    )
    return {"items": [serialize_payment_response(item) for item in items], "pagination": meta}


@router.get(
    "/payments/stats",
    response_model=PaymentStatsResponse,
    summary="Payment statistics",
    description="Counts by status and completed amount for the tenant, optionally scoped to `X-Center-Id`.",
)
def payment_stats(
    tenant_id: int = Depends(get_current_tenant_id),
    center_id: int | None = Depends(get_optional_center_id),
    db: Session = Depends(get_db),
):
    return get_payment_stats(db=db, tenant_id=tenant_id, center_id=center_id)


@router.get(
    "/payments/config",
    response_model=PaymentGatewayConfigResponse,
    summary="Gateway configuration",
    description="Public gateway settings for the client checkout.",
)
def payment_gateway_config(gateway: PaymentGateway = Depends(get_payment_gateway)):
    return {
        "public_key": gateway.public_key,
        "is_configured": gateway.is_configured(),
        "supported_methods": [method.value for method in OnlinePaymentMethod],
        "mobile_money_providers": [provider.value for provider in MobileMoneyProvider],
    }


@router.get(
    "/payments/ledger-audit",
    response_model=LedgerAuditResponse,
    summary="Audit invoice ledgers",
    description="Run ledger consistency checks over the tenant invoices and return findings.",
)
def payment_ledger_audit(
    tenant_id: int = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    findings = run_ledger_checks(db=db, tenant_id=tenant_id)
    return {"findings_total": len(findings), "findings": findings}


@router.get(
    "/payments/reference/{reference}",
    response_model=PaymentResponse,
    summary="Get payment by reference",
    responses={404: {"description": "Payment not found"}},
)
def get_payment_by_reference_endpoint(
    reference: str,
    tenant_id: int = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    payment = get_payment_by_reference(db=db, reference=reference, tenant_id=tenant_id)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return serialize_payment_response(payment)


@router.get(
    "/payments/{payment_id}",
    response_model=PaymentResponse,
    summary="Get payment detail",
    responses={404: {"description": "Payment not found"}},
)
def get_payment_detail(
    payment_id: int,
    tenant_id: int = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    payment = get_payment_by_id(db=db, payment_id=payment_id, tenant_id=tenant_id)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return serialize_payment_response(payment)


@router.put(
    "/payments/{payment_id}/status",
    response_model=PaymentResponse,
    summary="Update payment status",
    description="Administrative confirmation or failure of a pending payment. Completion settles the invoice.",
    responses={400: {"description": "Transition not allowed"}, 404: {"description": "Payment not found"}},
)
def update_payment_status_endpoint(
    payment_id: int,
    payload: PaymentStatusUpdate,
    tenant_id: int = Depends(get_current_tenant_id),
    service: PaymentReconciliationService = Depends(get_reconciliation_service),
):
    payment = service.update_payment_status(
        payment_id=payment_id,
        tenant_id=tenant_id,
        status=payload.status,
        notes=payload.notes,
    )
    return serialize_payment_response(payment)


@router.post(
    "/payments/{payment_id}/refund",
    response_model=PaymentResponse,
    summary="Refund payment",
    description="Refund a completed payment through the gateway when it was settled there, then reverse the ledger.",
    responses={
        400: {"description": "Refund validation error"},
        404: {"description": "Payment not found"},
        502: {"description": "Gateway refund failed"},
    },
)
def refund_payment_endpoint(
    payment_id: int,
    payload: PaymentRefundRequest,
    tenant_id: int = Depends(get_current_tenant_id),
    service: PaymentReconciliationService = Depends(get_reconciliation_service),
):
    payment = service.refund(
        payment_id=payment_id,
        tenant_id=tenant_id,
        refund_amount=payload.refund_amount,
        reason=payload.refund_reason,
    )
    return serialize_payment_response(payment)


@router.delete(
    "/payments/{payment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete payment",
    description="Soft-delete a payment that never settled.",
    responses={400: {"description": "Completed payments must be refunded"}, 404: {"description": "Payment not found"}},
)
def delete_payment_endpoint(
    payment_id: int,
    tenant_id: int = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    soft_delete_payment(db=db, payment_id=payment_id, tenant_id=tenant_id)


@router.get(
    "/invoices/{invoice_id}/payments",
    response_model=list[PaymentResponse],
    summary="List invoice payments",
    responses={404: {"description": "Invoice not found"}},
)
def get_invoice_payments(
    invoice_id: int,
    tenant_id: int = Depends(get_current_tenant_id),
    db: Session = Depends(get_db),
):
    if get_invoice_by_id(db=db, invoice_id=invoice_id, tenant_id=tenant_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    payments = list_invoice_payments(db=db, invoice_id=invoice_id, tenant_id=tenant_id)
    return [serialize_payment_response(payment) for payment in payments]
