from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from sms_ledger.batching import Batch
from sms_ledger.candidates import (
    amount_variants,
    build_records,
    match_candidate,
    validate_candidate,
    validate_candidates,
)
from sms_ledger.errors import CandidateValidationError
from sms_ledger.models import Category, RawMessage, TransactionType
from sms_ledger.persistence import compute_fingerprint

from tests.helpers.classifier_stub import candidate

_TS = 1718000000000
_UPI = "Rs.1,250.00 debited from A/c XX1234 to VPA swiggy@icici UPI Ref 416512345678"
_SAL = "INR 45,000.00 credited to A/c XX1234 on 01-Jun by NEFT SALARY ACME CORP"
_ATM = "Rs.2000 withdrawn at ATM SBIN0001 from A/c XX9876. Avl bal Rs.10,512.40"


def _batch(*bodies: str, number: int = 1) -> Batch:
    messages = tuple(
        RawMessage(sender=f"VM-BANK{i}", timestamp_ms=_TS + i * 1000, body=b)
        for i, b in enumerate(bodies)
    )
    return Batch(number=number, total=number, messages=messages)


def test_validate_accepts_wire_format_and_normalizes():
    c = validate_candidate(
        {
            "isFinancial": True,
            "category": "UPI",
            "type": "DEBIT",
            "amount": "₹ 1,250.00",
            "originalMessage": _UPI,
            "confidence": 7,
            "idx": "0",
            "extra": "ignored",
        }
    )
    assert c.category is Category.UPI
    assert c.type is TransactionType.DEBIT
    assert c.amount == Decimal("1250.00")
    assert c.confidence == 1.0
    assert c.idx == 0
    assert c.description == ""


def test_validate_takes_absolute_amount_and_defaults_confidence():
    c = validate_candidate(candidate(_SAL, amount="-45000", confidence=None))
    assert c.amount == Decimal("45000")
    assert c.confidence == 0.5


@pytest.mark.parametrize(
    "overrides",
    [
        {"isFinancial": False},
        {"isFinancial": "true"},
        {"category": "CARD"},
        {"category": "upi"},
        {"type": "REFUND"},
        {"type": 1},
        {"amount": ""},
        {"amount": "0"},
        {"amount": "abc"},
        {"amount": None},
        {"amount": "1e5000"},
        {"amount": "9999999999999999"},
        {"amount": "Infinity"},
        {"originalMessage": ""},
    ],
)
def test_validate_rejects_outside_closed_set(overrides):
    item = candidate(_UPI) | overrides
    with pytest.raises(CandidateValidationError):
        validate_candidate(item)


def test_validate_candidates_drops_only_bad_elements():
    items = [candidate(_UPI), candidate(_SAL, category="WALLET"), candidate(_ATM, type="CREDIT")]
    valid = validate_candidates(items, batch_number=3)
    assert [c.original_message for c in valid] == [_UPI, _ATM]


def test_amount_variants_cover_indian_and_western_grouping():
    variants = amount_variants(Decimal("125000"))
    assert "1,25,000.00" in variants
    assert "125,000.00" in variants
    assert "125000" in variants


def test_match_prefers_idx_when_it_agrees():
    batch = _batch(_UPI, _SAL)
    c = validate_candidate(candidate(_SAL, idx=1, amount="45000", type="CREDIT"))
    assert match_candidate(c, batch.messages, claimed=set()) == 1


def test_match_ignores_idx_that_disagrees_and_falls_back_to_text():
    batch = _batch(_UPI, _SAL)
    c = validate_candidate(candidate(_SAL, idx=0, amount="45000", type="CREDIT"))
    assert match_candidate(c, batch.messages, claimed=set()) == 1


def test_match_bidirectional_prefix_containment():
    batch = _batch(_UPI, _SAL)
    # Candidate echoes only the start of the body.
    short = validate_candidate(candidate(_SAL[:35], amount="45000"))
    assert match_candidate(short, batch.messages, claimed=set()) == 1
    # Candidate echoes the body wrapped in extra text.
    wrapped = validate_candidate(candidate("SMS: " + _UPI + " (via UPI)", amount="1250"))
    assert match_candidate(wrapped, batch.messages, claimed=set()) == 0


def test_match_falls_back_to_amount():
    batch = _batch(_UPI, _ATM)
    c = validate_candidate(candidate("Cash withdrawal of two thousand", amount="2000"))
    assert match_candidate(c, batch.messages, claimed=set()) == 1


def test_amount_fallback_requires_digit_boundaries():
    batch = _batch("Rs.12000 debited from A/c XX1234 for EMI")
    c = validate_candidate(candidate("unrelated text", amount="2000"))
    assert match_candidate(c, batch.messages, claimed=set()) is None


def test_match_skips_claimed_messages():
    batch = _batch(_UPI)
    c = validate_candidate(candidate(_UPI, idx=0, amount="1250"))
    assert match_candidate(c, batch.messages, claimed={0}) is None


def test_build_records_stamps_message_metadata():
    batch = _batch(_UPI, _SAL, number=4)
    candidates = validate_candidates(
        [
            candidate(_SAL, idx=1, category="BANK", type="CREDIT", amount="45,000.00", description=""),
            candidate(_UPI, idx=0, category="UPI", amount="1250", description="Swiggy"),
            candidate("no such message anywhere", amount="77"),
        ],
        batch_number=4,
    )
    records = build_records(candidates, batch)

    assert len(records) == 2
    salary, swiggy = records
    assert salary.fingerprint == compute_fingerprint(batch.messages[1])
    assert salary.date == datetime.fromtimestamp((_TS + 1000) / 1000, tz=UTC)
    assert salary.batch_number == 4
    assert salary.raw_sender == "VM-BANK1"
    assert salary.description == "VM-BANK1"  # falls back to sender
    assert swiggy.category is Category.UPI
    assert swiggy.description == "Swiggy"


def test_build_records_claims_each_message_once():
    batch = _batch(_UPI)
    candidates = validate_candidates(
        [candidate(_UPI, idx=0, amount="1250"), candidate(_UPI, idx=0, amount="1250")],
        batch_number=1,
    )
    assert len(build_records(candidates, batch)) == 1


def test_amount_variants_handle_large_amounts():
    variants = amount_variants(Decimal("123456789012345"))
    assert "12,34,56,78,90,12,345" in variants
    assert "123,456,789,012,345" in variants


def test_duplicate_candidate_is_not_moved_to_another_message():
    request = "Payment request of Rs.100.00 from merchant@upi pending approval"
    debit = "Rs.100.00 debited from A/c XX1234 to VPA merchant@upi"
    batch = _batch(debit, request)
    candidates = validate_candidates(
        [candidate(debit, idx=0, amount="100"), candidate(debit, idx=0, amount="100")],
        batch_number=1,
    )

    records = build_records(candidates, batch)

    assert [r.fingerprint for r in records] == [compute_fingerprint(batch.messages[0])]


def test_claimed_first_match_drops_amount_only_candidate():
    batch = _batch("Rs.500 debited for bill", "Rs.500 credited as refund")
    c = validate_candidate(candidate("unrelated text", amount="500"))
    assert match_candidate(c, batch.messages, claimed=set()) == 0
    assert match_candidate(c, batch.messages, claimed={0}) is None
