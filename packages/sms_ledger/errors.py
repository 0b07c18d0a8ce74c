"""Error taxonomy for the sync pipeline.

Failures are contained at the smallest scope that can absorb them: a bad
candidate is dropped, a failed batch is counted and skipped, and only
``PermissionDenied`` or an exhausted ``MessageSourceError`` abort a run.
"""

from __future__ import annotations


class SmsLedgerError(Exception):
    """Base class for every error raised by ``sms_ledger``."""


# ---- Run-level (fatal) -------------------------------------------------------


class PermissionDenied(SmsLedgerError):
    """The message source refused access. Aborts the run; never retried."""


class MessageSourceError(SmsLedgerError):
    """Reading messages failed after all source retries."""


# ---- Classifier call-level ---------------------------------------------------


class ClassifierError(SmsLedgerError):
    """Base for failures of a single classifier call."""


class NetworkError(ClassifierError):
    """Timeout, connection reset or other transport failure. Retryable."""


class RateLimited(ClassifierError):
    """HTTP 429 from the classifier. Retryable after a fixed cool-down."""


class HttpStatusError(ClassifierError):
    """Any other non-2xx response. Fatal for the batch."""

    def __init__(self, status_code: int, message: str = "") -> None:
        self.status_code = status_code
        super().__init__(f"classifier returned HTTP {status_code}: {message}".rstrip(": "))


class MalformedResponse(ClassifierError):
    """2xx reply without usable content, or text that does not parse as JSON."""


class SafetyRejected(ClassifierError):
    """The classifier refused under its safety policy. Zero results, no retry."""


# ---- Batch and candidate level -----------------------------------------------


class BatchFailure(SmsLedgerError):
    """A batch could not be classified. Counted and logged; the run continues."""

    def __init__(self, batch_number: int, reason: str) -> None:
        self.batch_number = batch_number
        self.reason = reason
        super().__init__(f"batch {batch_number} failed: {reason}")


class CandidateValidationError(SmsLedgerError):
    """A single classifier candidate failed validation and was dropped."""


__all__ = [
    "BatchFailure",
    "CandidateValidationError",
    "ClassifierError",
    "HttpStatusError",
    "MalformedResponse",
    "MessageSourceError",
    "NetworkError",
    "PermissionDenied",
    "RateLimited",
    "SafetyRejected",
    "SmsLedgerError",
]
