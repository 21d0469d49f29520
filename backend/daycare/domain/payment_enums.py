from enum import Enum


class PaymentStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"


class PaymentMethod(str, Enum):
    mobile_money = "mobile_money"
    bank_transfer = "bank_transfer"
    cash = "cash"
    card = "card"
    check = "check"


class OnlinePaymentMethod(str, Enum):
    card = "card"
    mobile_money = "mobile_money"


class MobileMoneyProvider(str, Enum):
    mtn = "mtn"
    vodafone = "vodafone"
    airteltigo = "airteltigo"


class CardProvider(str, Enum):
    paystack = "paystack"
    stripe = "stripe"


# Statuses from which a payment may still be settled by the gateway.
SETTLEABLE_STATUSES = (PaymentStatus.pending, PaymentStatus.processing, PaymentStatus.failed)
OPEN_STATUSES = (PaymentStatus.pending, PaymentStatus.processing)
