"""Ledger error taxonomy shared by the server, the HTTP layer and the client."""

from typing import Any, Dict

from fastapi import status


class LedgerError(Exception):
    """Base ledger error."""

    def __init__(self, message: str, code: str, http_status: int = 400):
        """Initialize error."""
        self.message = message
        self.code = code
        self.http_status = http_status
        super().__init__(message)


class InvalidAmountError(LedgerError):
    """Amount is missing, non-positive or not representable in cents."""

    def __init__(self, message: str = "Amount must be a positive value"):
        super().__init__(message, "invalid_amount", status.HTTP_400_BAD_REQUEST)


class InvalidFeeMonthError(LedgerError, ValueError):
    """Fee month is not a valid YYYY-MM key."""

    def __init__(self, message: str = "Fee month must be in YYYY-MM format"):
        super().__init__(message, "invalid_fee_month", status.HTTP_400_BAD_REQUEST)


class DuplicatePeriodError(LedgerError):
    """A fee period already exists for this student and month."""

    def __init__(self, message: str = "Fee period already exists"):
        super().__init__(message, "duplicate_period", status.HTTP_409_CONFLICT)


class UnknownStudentError(LedgerError):
    """Student is not in the directory."""

    def __init__(self, message: str = "Student not found"):
        super().__init__(message, "unknown_student", status.HTTP_404_NOT_FOUND)


class FeePeriodNotFoundError(LedgerError):
    """No fee period exists for this student and month."""

    def __init__(self, message: str = "Fee period not found"):
        super().__init__(message, "fee_period_not_found", status.HTTP_404_NOT_FOUND)


class UnknownPaymentModeError(LedgerError):
    """Payment mode id does not match an active payment mode."""

    def __init__(self, message: str = "Unknown payment mode"):
        super().__init__(message, "unknown_payment_mode", status.HTTP_400_BAD_REQUEST)


class NoOpenPeriodsError(LedgerError):
    """Payment money has nowhere to go."""

    def __init__(self, message: str = "No open fee period to apply the payment to"):
        super().__init__(message, "no_open_periods", status.HTTP_409_CONFLICT)


class ConcurrentModificationError(LedgerError):
    """Another writer changed the student's ledger first. Safe to retry."""

    def __init__(self, message: str = "Ledger was modified concurrently, please retry"):
        super().__init__(message, "concurrent_modification", status.HTTP_409_CONFLICT)


class NetworkFailureError(LedgerError):
    """Transport failure with unknown outcome.

    The write may or may not have been applied. Callers must re-check the ledger
    instead of resubmitting blindly; ``transaction_id`` makes a deliberate retry safe.
    """

    def __init__(self, message: str = "Network failure", transaction_id: str | None = None):
        super().__init__(message, "network_failure", status.HTTP_503_SERVICE_UNAVAILABLE)
        self.transaction_id = transaction_id


class SubmissionInProgressError(LedgerError):
    """A payment submission from this client has not finished yet."""

    def __init__(self, message: str = "A payment is already being submitted"):
        super().__init__(message, "submission_in_progress", status.HTTP_409_CONFLICT)


class UnknownStatusError(LedgerError, ValueError):
    """Status string is not in the alias table."""

    def __init__(self, value: object):
        super().__init__(
            f"Unknown fee status: {value!r}", "unknown_status", status.HTTP_400_BAD_REQUEST
        )
        self.value = value


ERRORS_BY_CODE: Dict[str, type[LedgerError]] = {
    "invalid_amount": InvalidAmountError,
    "invalid_fee_month": InvalidFeeMonthError,
    "duplicate_period": DuplicatePeriodError,
    "unknown_student": UnknownStudentError,
    "fee_period_not_found": FeePeriodNotFoundError,
    "unknown_payment_mode": UnknownPaymentModeError,
    "no_open_periods": NoOpenPeriodsError,
    "concurrent_modification": ConcurrentModificationError,
    "submission_in_progress": SubmissionInProgressError,
}


def error_response(error: LedgerError) -> Dict[str, Any]:
    """Create the standardized error envelope."""
    return {
        "success": False,
        "error": error.message,
        "code": error.code,
    }


def error_from_response(code: str | None, message: str, http_status: int) -> LedgerError:
    """Rebuild a LedgerError from an error envelope received over HTTP."""
    error_class = ERRORS_BY_CODE.get(code or "")
    if error_class is None:
        return LedgerError(message, code or "api_error", http_status)
    return error_class(message)


__all__ = [
    "LedgerError",
    "InvalidAmountError",
    "InvalidFeeMonthError",
    "DuplicatePeriodError",
    "UnknownStudentError",
    "FeePeriodNotFoundError",
    "UnknownPaymentModeError",
    "NoOpenPeriodsError",
    "ConcurrentModificationError",
    "NetworkFailureError",
    "SubmissionInProgressError",
    "UnknownStatusError",
    "error_response",
    "error_from_response",
]
