"""Ledger client used by UI screens.

Composes the HTTP transport, the month ledger cache and the status engine.
Screens never compute status or balances themselves; they read CacheEntry
objects and ask this client for derived values.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from hostel_ledger.client.cache import CacheEntry, MonthLedgerCache
from hostel_ledger.client.transport import (
    MALFORMED_RESPONSE,
    FeeRecord,
    LedgerApiClient,
    PaymentRecord,
    normalize_fee_record,
    normalize_payment_record,
)
from hostel_ledger.config import settings
from hostel_ledger.services.allocation_service import PaymentApplicationEngine
from hostel_ledger.services.errors import (
    ConcurrentModificationError,
    LedgerError,
    NetworkFailureError,
    SubmissionInProgressError,
)
from hostel_ledger.services.parsers import format_amount, parse_fee_month
from hostel_ledger.services.status_service import (
    DEFAULT_DUE_SOON_DAYS,
    FeeStatus,
    count_by_tab,
    status_for,
)

logger = logging.getLogger(__name__)


@dataclass
class PaymentSubmission:
    """Payment as entered on the fee collection screen."""

    student_id: int
    amount: Any
    payment_mode_id: int
    fee_month: Optional[str] = None
    payment_date: Optional[date] = None
    due_date: Optional[date] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class PaymentReceipt:
    """Server confirmation of a recorded payment."""

    payment: PaymentRecord
    updated_periods: Tuple[FeeRecord, ...]
    transaction_id: str
    replayed: bool = False
    months: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def allocations(self):
        return self.payment.allocations

    @classmethod
    def from_response(cls, data: Dict[str, Any], transaction_id: str) -> "PaymentReceipt":
        payment = normalize_payment_record(data["payment"])
        updated = tuple(normalize_fee_record(p) for p in data.get("updated_periods") or ())
        months = sorted({a.fee_month for a in payment.allocations} | {p.fee_month for p in updated})
        return cls(
            payment=payment,
            updated_periods=updated,
            transaction_id=payment.transaction_id or transaction_id,
            replayed=bool(data.get("replayed")),
            months=tuple(months),
        )


class LedgerClient:
    """Entry point for UI screens.

    Example:
        async with LedgerApiClient() as api:
            client = LedgerClient(api, hostel_id=1)
            entry = await client.get_month_summary("2024-03")
            counts = client.tab_counts(entry)
    """

    def __init__(
        self,
        transport: LedgerApiClient,
        hostel_id: Optional[int] = None,
        cache: Optional[MonthLedgerCache] = None,
        due_soon_days: int = DEFAULT_DUE_SOON_DAYS,
        today: Callable[[], date] = date.today,
    ):
        self.transport = transport
        self.hostel_id = hostel_id if hostel_id is not None else settings.default_hostel_id
        self.cache = cache if cache is not None else MonthLedgerCache(ttl_seconds=settings.cache_ttl_seconds)
        self.due_soon_days = due_soon_days
        self.today = today
        self._submitting = False
        self._payment_modes: Optional[List[Dict[str, Any]]] = None

    async def _fetch_month(self, month_key: str) -> CacheEntry:
        data = await self.transport.fetch_month(self.hostel_id, month_key)
        return CacheEntry(
            hostel_id=self.hostel_id,
            month_key=month_key,
            fee_periods=[normalize_fee_record(f) for f in data.get("fees") or ()],
            payments=[normalize_payment_record(p) for p in data.get("payments") or ()],
            totals=data.get("summary") or {},
        )

    async def get_month_summary(self, month_key: str, refresh: bool = False) -> CacheEntry:
        """Month ledger, from cache when Fresh.

        Args:
            month_key: Month in YYYY-MM format
            refresh: Pull-to-refresh; always refetch
        """
        month_key = parse_fee_month(month_key)
        return await self.cache.get(
            self.hostel_id, month_key, lambda: self._fetch_month(month_key), force=refresh
        )

    async def submit_payment(self, submission: PaymentSubmission) -> PaymentReceipt:
        """Record a payment and invalidate the months it touched.

        Raises:
            SubmissionInProgressError: Another submission from this client is in flight
            InvalidAmountError: Amount rejected before any request is sent
            NetworkFailureError: Outcome unknown; carries the transaction_id to retry with
            LedgerError: Any rejection reported by the server
        """
        if self._submitting:
            raise SubmissionInProgressError()
        self._submitting = True
        try:
            amount = PaymentApplicationEngine.validate_amount(submission.amount)
            fee_month = parse_fee_month(submission.fee_month) if submission.fee_month else None
            transaction_id = submission.transaction_id or uuid.uuid4().hex
            payload = {
                "student_id": submission.student_id,
                "amount": format_amount(amount),
                "payment_mode_id": submission.payment_mode_id,
                "fee_month": fee_month,
                "payment_date": submission.payment_date.isoformat() if submission.payment_date else None,
                "due_date": submission.due_date.isoformat() if submission.due_date else None,
                "transaction_id": transaction_id,
                "notes": submission.notes,
                "hostel_id": self.hostel_id,
            }

            try:
                data = await self.transport.record_payment(payload)
            except NetworkFailureError as e:
                self.cache.invalidate_hostel(self.hostel_id)
                logger.warning(
                    "Payment outcome unknown: student_id=%d transaction_id=%s error=%s",
                    submission.student_id,
                    transaction_id,
                    e.message,
                )
                raise NetworkFailureError(e.message, transaction_id=transaction_id) from e
            except ConcurrentModificationError:
                self.cache.invalidate_hostel(self.hostel_id)
                raise
            except LedgerError as e:
                if e.code == MALFORMED_RESPONSE:
                    self.cache.invalidate_hostel(self.hostel_id)
                raise

            try:
                receipt = PaymentReceipt.from_response(data, transaction_id)
            except (KeyError, TypeError, ValueError) as e:
                # The server accepted the payment; only its confirmation is unreadable
                self.cache.invalidate_hostel(self.hostel_id)
                logger.error(
                    "Unreadable payment confirmation: student_id=%d transaction_id=%s error=%r",
                    submission.student_id,
                    transaction_id,
                    e,
                )
                raise LedgerError(
                    f"Malformed payment confirmation for transaction {transaction_id}",
                    MALFORMED_RESPONSE,
                    502,
                ) from e

            for month in set(receipt.months) | ({fee_month} if fee_month else set()):
                self.cache.invalidate(self.hostel_id, month)
            logger.info(
                "Payment recorded: payment_id=%d student_id=%d months=%s replayed=%s",
                receipt.payment.payment_id,
                receipt.payment.student_id,
                ",".join(receipt.months),
                receipt.replayed,
            )
            return receipt
        finally:
            self._submitting = False

    def derive_status(self, record: FeeRecord, today: Optional[date] = None) -> FeeStatus:
        """Display status of a record as of today.

        A record without a known total is never shown as Paid from a zero
        balance; the server's status is used, or Unpaid when it sent none.
        """
        if not record.amounts_known:
            return record.reported_status or FeeStatus.UNPAID
        return status_for(record, today or self.today(), self.due_soon_days)

    def tab_counts(self, entry: CacheEntry) -> Dict[str, int]:
        """Badge counts for the Unpaid/Partial/Paid tabs of a month."""
        today = self.today()
        return count_by_tab(self.derive_status(r, today) for r in entry.fee_periods)

    async def payment_modes(self, refresh: bool = False) -> List[Dict[str, Any]]:
        """Active payment modes, fetched once per client."""
        if self._payment_modes is None or refresh:
            self._payment_modes = list(await self.transport.fetch_payment_modes())
        return self._payment_modes


__all__ = ["LedgerClient", "PaymentReceipt", "PaymentSubmission"]
