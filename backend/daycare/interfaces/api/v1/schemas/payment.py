from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from daycare.domain.invoice_status import InvoiceStatus
from daycare.domain.payment_enums import (
    CardProvider,
    MobileMoneyProvider,
    OnlinePaymentMethod,
    PaymentMethod,
    PaymentStatus,
)
from daycare.interfaces.api.v1.schemas.pagination import PaginationMeta


class PaymentCreate(BaseModel):
    invoice_id: int
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    payment_method: PaymentMethod
    currency: str | None = Field(default=None, min_length=3, max_length=3)

    mobile_money_provider: MobileMoneyProvider | None = None
    mobile_money_phone: str | None = Field(default=None, max_length=20)
    bank_name: str | None = Field(default=None, max_length=100)
    account_number: str | None = Field(default=None, max_length=50)
    transaction_id: str | None = Field(default=None, max_length=100)
    card_provider: CardProvider | None = None
    cash_received_by: str | None = Field(default=None, max_length=100)

    paid_by: str | None = Field(default=None, max_length=100)
    paid_by_phone: str | None = Field(default=None, max_length=20)
    paid_by_email: EmailStr | None = None
    notes: str | None = Field(default=None, max_length=1000)


class OnlinePaymentInitiate(BaseModel):
    invoice_id: int
    email: EmailStr
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    payment_method: OnlinePaymentMethod
    phone: str | None = Field(default=None, max_length=20)
    provider: MobileMoneyProvider | None = None
    metadata: dict[str, Any] | None = None


class PaymentStatusUpdate(BaseModel):
    status: PaymentStatus
    notes: str | None = Field(default=None, max_length=1000)


class PaymentRefundRequest(BaseModel):
    refund_amount: Decimal | None = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    refund_reason: str | None = Field(default=None, max_length=500)


class PaymentInvoiceRef(BaseModel):
    id: int
    invoice_number: str
    child_id: int
    total_amount: Decimal
    amount_paid: Decimal
    balance_remaining: Decimal
    status: InvoiceStatus
    is_overdue: bool


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    center_id: int
    invoice_id: int
    reference_number: str
    amount: Decimal
    currency: str
    payment_method: PaymentMethod
    status: PaymentStatus
    mobile_money_provider: str | None = None
    mobile_money_phone: str | None = None
    bank_name: str | None = None
    account_number: str | None = None
    transaction_id: str | None = None
    gateway: str | None = None
    card_provider: str | None = None
    card_last_four_digits: str | None = None
    cash_received_by: str | None = None
    processed_at: datetime | None = None
    failure_reason: str | None = None
    confirmation_code: str | None = None
    is_refunded: bool
    refund_amount: Decimal | None = None
    refunded_at: datetime | None = None
    refund_reason: str | None = None
    paid_by: str | None = None
    paid_by_phone: str | None = None
    paid_by_email: str | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
    invoice: PaymentInvoiceRef | None = None


class OnlinePaymentInitiateResponse(BaseModel):
    payment: PaymentResponse
    authorization_url: str
    access_code: str
    reference: str


class PaymentListResponse(BaseModel):
    items: list[PaymentResponse]
    pagination: PaginationMeta


class PaymentStatsResponse(BaseModel):
    total: int
    completed: int
    pending: int
    failed: int
    refunded: int
    total_amount: Decimal


class PaymentGatewayConfigResponse(BaseModel):
    public_key: str
    is_configured: bool
    supported_methods: list[str]
    mobile_money_providers: list[str]


class WebhookAck(BaseModel):
    received: bool = True
    event: str | None = None
    reconciled: bool = False


class LedgerFindingResponse(BaseModel):
    check_code: str
    severity: str
    entity_type: str
    entity_id: int
    message: str
    details_json: dict[str, Any]


class LedgerAuditResponse(BaseModel):
    findings_total: int
    findings: list[LedgerFindingResponse]
