from lingobridge.billing.ledger import CreditAccount, CreditLedger, TransactionResult
from lingobridge.billing.notifier import BillingNotifier, LowBalanceEvent
from lingobridge.billing.payment_gateway import HttpPaymentGateway, PaymentGateway, PaymentResult
from lingobridge.billing.usage_tracker import UsageEvent, UsageTracker

__all__ = [
    "CreditAccount",
    "CreditLedger",
    "TransactionResult",
    "BillingNotifier",
    "LowBalanceEvent",
    "PaymentGateway",
    "HttpPaymentGateway",
    "PaymentResult",
    "UsageEvent",
    "UsageTracker",
]
