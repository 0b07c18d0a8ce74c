"""Prompt construction and message serialization for SMS classification.

This module builds:
- A deterministic JSON serialization of a batch of raw messages with a fixed
  field order and a batch-relative ``idx``.
- The system instructions and the user prompt, including explicit inclusion
  and exclusion rules for what counts as a financial transaction.
- The ``generationConfig`` block sent to the Gemini endpoint.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from .models import RawMessage

MESSAGE_FIELD_ORDER: tuple[str, ...] = ("idx", "sender", "date", "body")

BEGIN_MARKER = "BEGIN_MESSAGES_JSON"
END_MARKER = "END_MESSAGES_JSON"

_PROMPT_TEMPLATE = """\
Classify each SMS below. Return ONLY a JSON array, one object per message that
is a completed financial transaction. Do not wrap the array in markdown.

Include:
- Money debited from or credited to a bank account, card or wallet.
- UPI payments and receipts (VPA, UPI ref / UTR numbers, "via UPI").
- ATM withdrawals, NEFT/IMPS/RTGS transfers, EMI and auto-debits, refunds
  and cashbacks that were actually credited.

Exclude:
- OTPs, login alerts, password or PIN messages.
- Promotions, offers, loan or card pre-approvals, reward point balances.
- Payment requests, reminders, bill due notices and failed or declined
  transactions.
- Balance enquiries that do not report a transaction.

Object fields:
- "idx": the idx of the message from the input (integer).
- "isFinancial": true.
- "category": "UPI" when the transaction went through UPI, otherwise "BANK".
- "type": "DEBIT" when money left the account, "CREDIT" when it arrived.
- "amount": the transaction amount as a plain number string, e.g. "1250.00".
- "description": a short merchant or counterparty description.
- "originalMessage": the message body copied verbatim.
- "confidence": a number between 0 and 1.

Messages:
{begin}
{messages_json}
{end}
"""


def _iso_date(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC).isoformat()


def serialize_messages_to_json(messages: Sequence[RawMessage]) -> str:
    """Serialize a batch to a JSON array with field order ``idx, sender, date, body``.

    ``idx`` is batch-relative (0..n-1) so model output can be aligned back to
    the originating message.
    """

    arr: list[dict[str, Any]] = []
    for idx, m in enumerate(messages):
        item = {"idx": idx, "sender": m.sender, "date": _iso_date(m.timestamp_ms), "body": m.body}
        arr.append({key: item[key] for key in MESSAGE_FIELD_ORDER})
    return json.dumps(arr, ensure_ascii=False)


def build_system_instructions() -> str:
    return (
        "You extract bank and UPI transactions from Indian SMS messages. Classify "
        "each message strictly into category BANK or UPI and type DEBIT or CREDIT. "
        "Never invent transactions. Output JSON only."
    )


def build_prompt(messages: Sequence[RawMessage]) -> str:
    return _PROMPT_TEMPLATE.format(
        begin=BEGIN_MARKER,
        end=END_MARKER,
        messages_json=serialize_messages_to_json(messages),
    )


def build_generation_config(*, max_output_tokens: int, temperature: float) -> dict[str, Any]:
    return {
        "temperature": temperature,
        "maxOutputTokens": max_output_tokens,
        "responseMimeType": "application/json",
    }


__all__ = [
    "BEGIN_MARKER",
    "END_MARKER",
    "MESSAGE_FIELD_ORDER",
    "build_generation_config",
    "build_prompt",
    "build_system_instructions",
    "serialize_messages_to_json",
]
