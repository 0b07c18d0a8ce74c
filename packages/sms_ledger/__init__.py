"""Public interface for the ``sms_ledger`` package.

This module exposes the pipeline entry points and public models/types as the
stable import surface. There is no runtime logic here, only symbol re-exports.
"""

from .aggregate import summarize, transaction_stats, transaction_windows, window_starts
from .analytics import BankAnalytics, bank_analytics
from .classify import ClassificationClient, RetryPolicy
from .config import PipelineSettings
from .errors import (
    BatchFailure,
    CandidateValidationError,
    ClassifierError,
    HttpStatusError,
    MalformedResponse,
    MessageSourceError,
    NetworkError,
    PermissionDenied,
    RateLimited,
    SafetyRejected,
    SmsLedgerError,
)
from .models import (
    BatchOutcome,
    Category,
    CategoryStats,
    Ledger,
    RawMessage,
    RunReport,
    SyncInfo,
    TransactionRecord,
    TransactionStats,
    TransactionType,
    TransactionWindows,
    WindowSummary,
)
from .orchestrator import AutoRefresher, ProgressLog, SyncOrchestrator
from .persistence import DedupIndex, LedgerStore, compute_fingerprint, merge_ledger
from .sources import ExportFileMessageSource, MessageSource, StaticMessageSource
from .transports import ClassifierReply, GeminiTransport, OpenAITransport, build_transport

__all__ = [
    # Pipeline
    "SyncOrchestrator",
    "AutoRefresher",
    "ProgressLog",
    "ClassificationClient",
    "RetryPolicy",
    "LedgerStore",
    "DedupIndex",
    "compute_fingerprint",
    "merge_ledger",
    "summarize",
    "transaction_stats",
    "transaction_windows",
    "window_starts",
    "bank_analytics",
    "BankAnalytics",
    "PipelineSettings",
    # Sources and transports
    "MessageSource",
    "StaticMessageSource",
    "ExportFileMessageSource",
    "ClassifierReply",
    "GeminiTransport",
    "OpenAITransport",
    "build_transport",
    # Models / types
    "RawMessage",
    "TransactionRecord",
    "Ledger",
    "Category",
    "TransactionType",
    "WindowSummary",
    "TransactionWindows",
    "CategoryStats",
    "TransactionStats",
    "SyncInfo",
    "BatchOutcome",
    "RunReport",
    # Errors
    "SmsLedgerError",
    "PermissionDenied",
    "MessageSourceError",
    "ClassifierError",
    "NetworkError",
    "RateLimited",
    "HttpStatusError",
    "MalformedResponse",
    "SafetyRejected",
    "BatchFailure",
    "CandidateValidationError",
]
