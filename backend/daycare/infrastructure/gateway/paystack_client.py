import hashlib
import hmac
from datetime import datetime
from typing import Any

import httpx

from daycare.application.errors import GatewayError
from daycare.application.gateway import TransactionInitialization, TransactionVerification
from daycare.config import settings
from daycare.infrastructure.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CHANNELS = ["card", "mobile_money", "bank"]


def _parse_gateway_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _response_data(body: dict[str, Any], operation: str) -> dict[str, Any]:
    data = body.get("data")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise GatewayError(f"Unexpected gateway response during {operation}")
    return data


class PaystackClient:
    """Synchronous Paystack adapter implementing ``PaymentGateway``.

    Amounts are always given in the smallest currency unit (pesewas/kobo).
    """

    def __init__(
        self,
        *,
        secret_key: str,
        public_key: str = "",
        base_url: str = "https://api.paystack.co",
        timeout_seconds: float = 30.0,
        callback_url: str | None = None,
        http_client: httpx.Client | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self._secret_key = secret_key
        self.public_key = public_key
        self._callback_url = callback_url
        self._http = http_client or httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            headers={
                "Authorization": f"Bearer {secret_key}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    @classmethod
    def from_settings(cls) -> "PaystackClient":
        return cls(
            secret_key=settings.paystack_secret_key,
            public_key=settings.paystack_public_key,
            base_url=settings.paystack_base_url,
            timeout_seconds=settings.gateway_timeout_seconds,
            callback_url=settings.paystack_callback_url,
        )

    def is_configured(self) -> bool:
        return bool(self._secret_key) and bool(self.public_key)

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, *, operation: str, json: dict | None = None) -> dict[str, Any]:
        try:
            response = self._http.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            logger.warning("paystack_request_timeout", operation=operation, path=path)
            raise GatewayError(f"Payment gateway timed out during {operation}") from exc
        except httpx.HTTPError as exc:
            logger.warning("paystack_request_failed", operation=operation, path=path, error=str(exc))
            raise GatewayError(f"Failed to {operation}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if response.status_code >= 400 or not body.get("status"):
            message = body.get("message") or f"Failed to {operation}"
            logger.warning(
                "paystack_request_rejected",
                operation=operation,
                path=path,
                status_code=response.status_code,
                message=message,
            )
            raise GatewayError(message)
        return body

    def initialize_transaction(
        self,
        *,
        email: str,
        amount_minor: int,
        reference: str,
        currency: str,
        metadata: dict[str, Any],
        channels: list[str],
    ) -> TransactionInitialization:
        payload: dict[str, Any] = {
            "email": email,
            "amount": int(amount_minor),
            "reference": reference,
            "currency": currency,
            "metadata": metadata,
            "channels": channels or DEFAULT_CHANNELS,
        }
        if self._callback_url:
            payload["callback_url"] = self._callback_url
        body = self._request("POST", "/transaction/initialize", operation="initialize payment", json=payload)
        data = _response_data(body, "initialize payment")
        return TransactionInitialization(
            authorization_url=data.get("authorization_url", ""),
            access_code=data.get("access_code", ""),
            reference=data.get("reference", reference),
        )

    def verify_transaction(self, reference: str) -> TransactionVerification:
        body = self._request("GET", f"/transaction/verify/{reference}", operation="verify payment")
        data = _response_data(body, "verify payment")
        transaction_id = data.get("id")
        return TransactionVerification(
            reference=data.get("reference", reference),
            success=data.get("status") == "success",
            settled_at=_parse_gateway_timestamp(data.get("paid_at")),
            gateway_response=data.get("gateway_response"),
            transaction_id=str(transaction_id) if transaction_id is not None else None,
            authorization=data.get("authorization") if isinstance(data.get("authorization"), dict) else {},
        )

    def verify_webhook_signature(self, raw_body: bytes, signature: str | None) -> bool:
        if not signature or not self._secret_key:
            return False
        expected = hmac.new(self._secret_key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))

    def refund_transaction(self, reference: str, amount_minor: int | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"transaction": reference}
        if amount_minor is not None:
            payload["amount"] = int(amount_minor)
        body = self._request("POST", "/refund", operation="refund transaction", json=payload)
        return _response_data(body, "refund transaction")
