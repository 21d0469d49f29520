from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol


@dataclass(frozen=True)
class TransactionInitialization:
    authorization_url: str
    access_code: str
    reference: str


@dataclass(frozen=True)
class TransactionVerification:
    """Authoritative outcome of a hosted transaction as reported by the gateway."""

    reference: str
    success: bool
    settled_at: datetime | None = None
    gateway_response: str | None = None
    transaction_id: str | None = None
    authorization: dict[str, Any] = field(default_factory=dict)

    @property
    def card_last_four_digits(self) -> str | None:
        last4 = self.authorization.get("last4")
        return str(last4) if last4 else None


class PaymentGateway(Protocol):
    """Surface of the payment provider the reconciliation engine depends on.

    Every call may raise ``GatewayError``. None of them is assumed idempotent on
    the provider side.
    """

    public_key: str

    def is_configured(self) -> bool: ...

    def initialize_transaction(
        self,
        *,
        email: str,
        amount_minor: int,
        reference: str,
        currency: str,
        metadata: dict[str, Any],
        channels: list[str],
    ) -> TransactionInitialization: ...

    def verify_transaction(self, reference: str) -> TransactionVerification: ...

    def verify_webhook_signature(self, raw_body: bytes, signature: str | None) -> bool: ...

    def refund_transaction(self, reference: str, amount_minor: int | None = None) -> dict[str, Any]: ...
