"""Cheap sender/keyword prefilter applied before classification.

Most of an inbox is personal chat, OTPs and marketing. Dropping messages that
neither come from a bank or payment sender nor mention a transaction keeps
classifier calls down. The filter is deliberately loose: it only has to
discard the obviously irrelevant, the classifier makes the real decision.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from .logging_setup import get_logger
from .models import RawMessage

# Substrings of sender IDs (DLT headers) used by Indian banks and payment apps.
BANK_SENDERS: tuple[str, ...] = (
    # Banks
    "SBIINB", "HDFCBK", "ICICIB", "AXISBK", "KOTAKB", "YESBNK", "INDUSB",
    "UNIONB", "CANBK", "BOBCRD", "PNBSMS", "IOBCHN", "SYNDBK", "ANDBNK",
    "VIJAYB", "KARNBK", "MAHBK", "DENABNK", "FEDRAL", "TMBSMS",
    # Generic
    "BANK", "ATM", "CARD", "PAY", "UPI", "WALLET", "RUPAY", "VISA", "MASTER",
    # Payment services
    "PAYTM", "GPAY", "PHONEPE", "AMAZON", "FLIPKART", "MOBIKW", "FREECRG",
    "OLAMON", "BHARTP", "AIRTEL", "JIOMON", "VODAFI",
)  # fmt: skip

TRANSACTION_KEYWORDS: tuple[str, ...] = (
    # Credit
    "credited", "credit", "received", "deposited", "added", "refund",
    "cashback", "reward", "bonus", "transfer received", "amount received",
    # Debit
    "debited", "debit", "withdrawn", "spent", "paid", "purchase",
    "transaction", "charges", "fee", "auto debit", "emi", "bill payment",
    # Amounts and balances
    "rs", "inr", "₹", "amount", "balance", "available", "limit",
    # Rails and channels
    "upi", "neft", "rtgs", "imps", "atm", "pos", "online", "mobile banking",
    "net banking", "card payment", "contactless",
)  # fmt: skip

_HEADER_CODE_RE = re.compile(r"^[A-Z]{2}-\d{6}$")
_SHORT_CODE_RE = re.compile(r"^\d{6,7}$")

_logger = get_logger("sms_ledger.prefilter")


def is_bank_sender(sender: str | None) -> bool:
    """True for known bank/payment headers, ``XX-123456`` headers and 6-7 digit short codes."""

    if not sender:
        return False
    s = sender.strip()
    upper = s.upper()
    if _HEADER_CODE_RE.match(upper) or _SHORT_CODE_RE.match(s):
        return True
    return any(token in upper for token in BANK_SENDERS)


def is_transaction_message(body: str | None) -> bool:
    if not body:
        return False
    lower = body.lower()
    return any(keyword in lower for keyword in TRANSACTION_KEYWORDS)


def prefilter_messages(messages: Iterable[RawMessage]) -> list[RawMessage]:
    """Keep messages from a bank sender whose body mentions a transaction keyword."""

    kept: list[RawMessage] = []
    total = 0
    for m in messages:
        total += 1
        if is_bank_sender(m.sender) and is_transaction_message(m.body):
            kept.append(m)
    _logger.info("prefilter:done total=%d kept=%d dropped=%d", total, len(kept), total - len(kept))
    return kept


__all__ = [
    "BANK_SENDERS",
    "TRANSACTION_KEYWORDS",
    "is_bank_sender",
    "is_transaction_message",
    "prefilter_messages",
]
