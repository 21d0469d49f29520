class ApplicationError(Exception):
    """Base application-layer error, independent from transport concerns."""


class NotFoundError(ApplicationError):
    """Raised when an expected entity does not exist."""


class ConflictError(ApplicationError):
    """Raised when a uniqueness or state conflict occurs."""


class ValidationError(ApplicationError):
    """Raised when application-level validation fails."""


class PaymentFailedError(ApplicationError):
    """Raised when the gateway reports a transaction as not successful."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class GatewayError(ApplicationError):
    """Raised when a payment gateway call fails or times out."""


class SignatureError(ApplicationError):
    """Raised when a webhook signature does not match the raw request body."""


class RefundFailedError(ApplicationError):
    """Raised when the gateway does not confirm a refund."""
