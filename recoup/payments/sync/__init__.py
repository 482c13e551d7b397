"""Payment sync adapters: discover payments in external feeds, delegate to the monitor."""

from .base import PaymentCandidate, PaymentSyncAdapter, SyncResult, match_by_amount
from .bank_feed import BankFeedPaymentSync
from .quickbooks import (
    QuickBooksPaymentSync,
    QuickBooksPaymentsClient,
    TokenExpiredError,
    TokenRefreshError,
    normalize_payments,
)

__all__ = [
    "PaymentCandidate",
    "PaymentSyncAdapter",
    "SyncResult",
    "match_by_amount",
    "BankFeedPaymentSync",
    "QuickBooksPaymentSync",
    "QuickBooksPaymentsClient",
    "TokenExpiredError",
    "TokenRefreshError",
    "normalize_payments",
]
