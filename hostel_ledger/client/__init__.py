"""Client side of the ledger: HTTP transport, month cache and UI facade."""

from hostel_ledger.client.cache import CacheEntry, CacheState, MonthLedgerCache
from hostel_ledger.client.ledger_client import LedgerClient, PaymentReceipt, PaymentSubmission
from hostel_ledger.client.transport import (
    FeeRecord,
    LedgerApiClient,
    PaymentRecord,
    normalize_fee_record,
    normalize_payment_record,
)

__all__ = [
    "CacheEntry",
    "CacheState",
    "FeeRecord",
    "LedgerApiClient",
    "LedgerClient",
    "MonthLedgerCache",
    "PaymentReceipt",
    "PaymentRecord",
    "PaymentSubmission",
    "normalize_fee_record",
    "normalize_payment_record",
]
