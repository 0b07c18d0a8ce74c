"""Validation of classifier candidates and their matching back to raw messages.

Classifier output is untrusted. Each element is validated into the closed set
``{BANK, UPI} x {DEBIT, CREDIT}``; anything else is rejected rather than
coerced. Valid candidates are then attributed to exactly one message of the
batch they came from and turned into :class:`TransactionRecord` objects.

Matching order per candidate:

1. The batch-relative ``idx`` echoed by the model, when the message it
   points at agrees with the candidate in text or amount.
2. Bidirectional prefix containment between the echoed ``originalMessage``
   and each message body.
3. The candidate amount appearing in a message body.

The first agreeing message wins. If another candidate already claimed it, the
candidate is a duplicate and is dropped. Steps 2 and 3 are heuristics and can
misattribute a candidate when two messages of one batch share a prefix or an
amount; step 1 exists to make that rare.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .batching import Batch
from .errors import CandidateValidationError
from .logging_setup import get_logger
from .models import Category, RawMessage, TransactionRecord, TransactionType
from .persistence import compute_fingerprint

MATCH_PREFIX_CHARS = 30
# Integer digits allowed in a transaction amount.
MAX_AMOUNT_DIGITS = 15
_DEFAULT_CONFIDENCE = 0.5

_CURRENCY_RE = re.compile(r"(?i)(?:rs\.?|inr|₹)")
_WS_RE = re.compile(r"\s+")

_logger = get_logger("sms_ledger.candidates")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class Candidate(BaseModel):
    """Typed view of one classifier candidate.

    Field names follow the wire format (``isFinancial``, ``originalMessage``);
    unknown keys are ignored.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, populate_by_name=True)

    idx: int | None = None
    is_financial: bool = Field(alias="isFinancial")
    category: Category
    type: TransactionType
    amount: Decimal
    description: str = ""
    original_message: str = Field(alias="originalMessage", min_length=1)
    confidence: float = _DEFAULT_CONFIDENCE

    @field_validator("is_financial", mode="before")
    @classmethod
    def _must_be_true(cls, v: Any) -> bool:
        if v is not True:
            raise ValueError("isFinancial must be true")
        return True

    @field_validator("category", "type", mode="before")
    @classmethod
    def _exact_label(cls, v: Any) -> Any:
        if not isinstance(v, str):
            raise ValueError("label must be a string")
        return v

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, v: Any) -> Decimal:
        if v is None or isinstance(v, bool):
            raise ValueError("amount is required")
        s = _CURRENCY_RE.sub("", str(v)).replace(",", "")
        s = _WS_RE.sub("", s)
        if not s:
            raise ValueError("amount must be non-empty")
        try:
            d = abs(Decimal(s))
        except InvalidOperation as e:
            raise ValueError(f"amount is not numeric: {v!r}") from e
        if not d.is_finite() or d == 0:
            raise ValueError(f"amount must be a positive number: {v!r}")
        if d.adjusted() >= MAX_AMOUNT_DIGITS:
            raise ValueError(f"amount is out of range: {v!r}")
        return d

    @field_validator("description", mode="before")
    @classmethod
    def _description_text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v: Any) -> float:
        if v is None or isinstance(v, bool):
            return _DEFAULT_CONFIDENCE
        try:
            fv = float(v)
        except (TypeError, ValueError):
            return _DEFAULT_CONFIDENCE
        if fv != fv:  # NaN
            return _DEFAULT_CONFIDENCE
        return min(1.0, max(0.0, fv))

    @field_validator("idx", mode="before")
    @classmethod
    def _lenient_idx(cls, v: Any) -> int | None:
        if isinstance(v, bool):
            return None
        if isinstance(v, int):
            return v
        if isinstance(v, str) and v.strip().isdigit():
            return int(v.strip())
        return None


def validate_candidate(item: Mapping[str, Any]) -> Candidate:
    """Validate a single candidate mapping or raise :class:`CandidateValidationError`."""

    try:
        return Candidate.model_validate(item)
    except ValidationError as e:
        reasons = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in e.errors()
        )
        raise CandidateValidationError(reasons) from e


def validate_candidates(items: Iterable[Mapping[str, Any]], *, batch_number: int) -> list[Candidate]:
    """Return the valid candidates; each invalid element is logged and dropped."""

    out: list[Candidate] = []
    for position, item in enumerate(items):
        try:
            out.append(validate_candidate(item))
        except CandidateValidationError as e:
            _logger.info(
                "candidates:rejected batch=%d position=%d reason=%s", batch_number, position, e
            )
    return out


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


def _norm(text: str) -> str:
    return _WS_RE.sub(" ", text).strip().casefold()


def _indian_grouping(int_part: str) -> str:
    if len(int_part) <= 3:
        return int_part
    head, tail = int_part[:-3], int_part[-3:]
    groups: list[str] = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups) + "," + tail


def amount_variants(amount: Decimal) -> tuple[str, ...]:
    """Spellings of ``amount`` as it may appear in an SMS body."""

    fixed = f"{amount:.2f}"
    int_part, frac = fixed.split(".")
    variants = [fixed, f"{amount:,.2f}", f"{_indian_grouping(int_part)}.{frac}"]
    if frac == "00":
        variants += [int_part, f"{amount:,.0f}", _indian_grouping(int_part)]
    elif frac.endswith("0"):
        variants.append(f"{int_part}.{frac[0]}")
    return tuple(dict.fromkeys(variants))


def _amount_in_body(amount: Decimal, body: str) -> bool:
    for v in amount_variants(amount):
        if re.search(rf"(?<!\d)(?<!\d[,.]){re.escape(v)}(?!\d|[.,]\d)", body):
            return True
    return False


def _text_agrees(candidate: Candidate, body: str) -> bool:
    cand = _norm(candidate.original_message)
    msg = _norm(body)
    if not cand or not msg:
        return False
    return cand[:MATCH_PREFIX_CHARS] in msg or msg[:MATCH_PREFIX_CHARS] in cand


def match_candidate(
    candidate: Candidate, messages: Sequence[RawMessage], *, claimed: set[int]
) -> int | None:
    """Return the position in ``messages`` attributed to ``candidate``, or ``None``.

    Each step picks the first agreeing message. When that message is already
    claimed the candidate is a duplicate and is dropped; it never moves on to
    another message.
    """

    pos = _first_match(candidate, messages)
    if pos is None or pos in claimed:
        return None
    return pos


def _first_match(candidate: Candidate, messages: Sequence[RawMessage]) -> int | None:
    idx = candidate.idx
    if idx is not None and 0 <= idx < len(messages):
        body = messages[idx].body
        if _text_agrees(candidate, body) or _amount_in_body(candidate.amount, body):
            return idx

    for i, m in enumerate(messages):
        if _text_agrees(candidate, m.body):
            return i
    for i, m in enumerate(messages):
        if _amount_in_body(candidate.amount, m.body):
            return i
    return None


# ---------------------------------------------------------------------------
# Record construction
# ---------------------------------------------------------------------------


def build_records(
    candidates: Iterable[Candidate],
    batch: Batch,
    *,
    prefix_chars: int = 50,
) -> list[TransactionRecord]:
    """Match each candidate to one message of ``batch`` and build its record."""

    claimed: set[int] = set()
    records: list[TransactionRecord] = []
    unmatched = 0
    for candidate in candidates:
        pos = match_candidate(candidate, batch.messages, claimed=claimed)
        if pos is None:
            unmatched += 1
            continue
        claimed.add(pos)
        message = batch.messages[pos]
        records.append(
            TransactionRecord(
                category=candidate.category,
                type=candidate.type,
                amount=candidate.amount,
                description=candidate.description or message.sender,
                original_message=candidate.original_message,
                confidence=candidate.confidence,
                date=datetime.fromtimestamp(message.timestamp_ms / 1000, tz=UTC),
                fingerprint=compute_fingerprint(message, prefix_chars=prefix_chars),
                batch_number=batch.number,
                raw_sender=message.sender,
            )
        )
    if unmatched:
        _logger.info("candidates:unmatched batch=%d dropped=%d", batch.number, unmatched)
    return records


__all__ = [
    "Candidate",
    "amount_variants",
    "build_records",
    "match_candidate",
    "validate_candidate",
    "validate_candidates",
]
