"""HTTP transport for the monthly-fees API and record normalization.

Server records are normalized exactly once, here, before they reach the
cache: amounts become Decimal, dates become date, and the legacy field names
some deployments still send are folded into the canonical ones.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx

from hostel_ledger.config import settings
from hostel_ledger.services.errors import (
    LedgerError,
    NetworkFailureError,
    UnknownStatusError,
    error_from_response,
)
from hostel_ledger.services.parsers import parse_amount, parse_iso_date
from hostel_ledger.services.status_service import FeeStatus, derive_balance, normalize_status

logger = logging.getLogger(__name__)

# Error code for a response body that is not a valid envelope
MALFORMED_RESPONSE = "malformed_response"

# Canonical field -> accepted wire names, in lookup order
FEE_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "total_due": ("total_due", "total_amount", "amount"),
    "amount_paid": ("amount_paid", "paid_amount", "received_amount"),
}


@dataclass(frozen=True)
class FeeRecord:
    """Client view of one fee period."""

    student_id: int
    fee_month: str
    total_due: Decimal
    amount_paid: Decimal
    due_date: Optional[date] = None
    fee_id: Optional[int] = None
    first_name: str = ""
    last_name: Optional[str] = None
    phone: Optional[str] = None
    room_number: Optional[str] = None
    reported_status: Optional[FeeStatus] = None
    # False when the server sent no total under any alias
    amounts_known: bool = True

    @property
    def balance(self) -> Decimal:
        return derive_balance(self.total_due, self.amount_paid)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()


@dataclass(frozen=True)
class AllocationRecord:
    fee_month: str
    applied_amount: Decimal


@dataclass(frozen=True)
class PaymentRecord:
    """Client view of one recorded payment."""

    payment_id: int
    student_id: int
    amount: Decimal
    payment_date: Optional[date]
    payment_mode_id: Optional[int] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
    allocations: Tuple[AllocationRecord, ...] = field(default_factory=tuple)


def _first_present(raw: Mapping[str, Any], names: Tuple[str, ...]) -> Any:
    for name in names:
        if raw.get(name) is not None:
            return raw[name]
    return None


def normalize_fee_record(raw: Mapping[str, Any]) -> FeeRecord:
    """Build a FeeRecord from a server fee dict.

    Missing or unparseable amounts count as zero. A record without any total
    field is flagged with amounts_known=False so its status is not derived
    from a zero total. An unrecognized status string is logged and dropped.
    """
    reported = None
    if raw.get("fee_status"):
        try:
            reported = normalize_status(raw["fee_status"])
        except UnknownStatusError as e:
            logger.warning("Ignoring fee status from server: %s", e.message)

    total = _first_present(raw, FEE_FIELD_ALIASES["total_due"])
    if total is None:
        logger.warning(
            "Fee record without total: student_id=%s fee_month=%s fields=%s",
            raw.get("student_id"),
            raw.get("fee_month"),
            sorted(raw),
        )

    return FeeRecord(
        student_id=int(raw["student_id"]),
        fee_month=str(raw["fee_month"]),
        total_due=parse_amount(total),
        amount_paid=parse_amount(_first_present(raw, FEE_FIELD_ALIASES["amount_paid"])),
        due_date=parse_iso_date(raw.get("due_date")),
        fee_id=raw.get("fee_id"),
        first_name=raw.get("first_name") or "",
        last_name=raw.get("last_name"),
        phone=raw.get("phone"),
        room_number=raw.get("room_number"),
        reported_status=reported,
        amounts_known=total is not None,
    )


def normalize_payment_record(raw: Mapping[str, Any]) -> PaymentRecord:
    """Build a PaymentRecord from a server payment dict."""
    return PaymentRecord(
        payment_id=int(raw["payment_id"]),
        student_id=int(raw["student_id"]),
        amount=parse_amount(raw.get("amount")),
        payment_date=parse_iso_date(raw.get("payment_date")),
        payment_mode_id=raw.get("payment_mode_id"),
        transaction_id=raw.get("transaction_id"),
        notes=raw.get("notes"),
        allocations=tuple(
            AllocationRecord(fee_month=a["fee_month"], applied_amount=parse_amount(a.get("applied_amount")))
            for a in raw.get("allocations") or ()
        ),
    )


class LedgerApiClient:
    """Async client for the /monthly-fees endpoints.

    Outcomes are mapped to the ledger error taxonomy: error envelopes become
    the LedgerError subclass named by their code; timeouts, transport errors
    and 5xx responses become NetworkFailureError since the write may or may
    not have happened.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the transport.

        Args:
            base_url: API base URL (default: settings.api_base_url)
            timeout: Request timeout in seconds (default: settings.request_timeout_seconds)
            http_client: Preconfigured client, e.g. with an ASGI transport in tests
        """
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            timeout=timeout or settings.request_timeout_seconds,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "LedgerApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("Request timed out: %s %s", method, path)
            raise NetworkFailureError(f"Request timed out: {method} {path}") from e
        except httpx.TransportError as e:
            logger.warning("Transport error: %s %s: %s", method, path, e)
            raise NetworkFailureError(f"Network error: {e}") from e

        if response.status_code >= 500:
            logger.warning("Server error %d: %s %s", response.status_code, method, path)
            raise NetworkFailureError(f"Server error {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise LedgerError(
                f"Malformed response from {path}", MALFORMED_RESPONSE, response.status_code
            ) from e
        if not isinstance(body, dict):
            raise LedgerError(f"Malformed response from {path}", MALFORMED_RESPONSE, response.status_code)

        if response.is_error or not body.get("success", False):
            raise error_from_response(
                body.get("code"),
                body.get("error") or f"Request failed with status {response.status_code}",
                response.status_code,
            )
        return body.get("data")

    async def fetch_month(self, hostel_id: int, month_key: str) -> Dict[str, Any]:
        """GET /monthly-fees/summary for one hostel month."""
        return await self._request(
            "GET", "monthly-fees/summary", params={"fee_month": month_key, "hostel_id": hostel_id}
        )

    async def record_payment(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST /monthly-fees/record-payment."""
        return await self._request("POST", "monthly-fees/record-payment", json=payload)

    async def fetch_payment_modes(self) -> List[Dict[str, Any]]:
        """GET /monthly-fees/payment-modes."""
        return await self._request("GET", "monthly-fees/payment-modes")

    async def fetch_student(self, student_id: int) -> Dict[str, Any]:
        """GET /monthly-fees/students/{student_id}."""
        return await self._request("GET", f"monthly-fees/students/{student_id}")


__all__ = [
    "FEE_FIELD_ALIASES",
    "AllocationRecord",
    "FeeRecord",
    "LedgerApiClient",
    "PaymentRecord",
    "normalize_fee_record",
    "normalize_payment_record",
]
