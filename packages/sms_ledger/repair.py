"""Cleaning and truncation repair of classifier output.

The classifier answers with free text that is supposed to be a JSON array but
regularly arrives wrapped in markdown fences, decorated with emphasis, or cut
off mid-object when the output token budget runs out. The helpers here turn
that text into a list of loosely-typed candidate mappings. Every step is
idempotent and none of the public helpers raises on bad input.

Steps (order matters):

1. :func:`clean_response_text` strips code fences and markdown emphasis that
   sits outside JSON string literals.
2. :func:`repair_truncated_json` closes an unterminated array after its last
   complete element, or appends the ``}`` an unterminated object is missing.
3. :func:`parse_json_payload` parses directly, falling back to the first
   balanced ``[...]``/``{...}`` substring that parses.
4. :func:`repair_and_parse` coerces the result into a list of mappings.
"""

from __future__ import annotations

import json
import re
from typing import Any

from .logging_setup import get_logger

_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*")
_EMPHASIS_CHARS = frozenset("*`")
_CLOSERS = {"[": "]", "{": "}"}
_WRAPPER_KEYS: tuple[str, ...] = ("transactions", "results")

_logger = get_logger("sms_ledger.repair")


def _strip_outside_strings(text: str, drop: frozenset[str]) -> str:
    out: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in drop:
            continue
        out.append(ch)
    return "".join(out)


def clean_response_text(text: str) -> str:
    """Remove code fences and stray emphasis; JSON string contents are left intact."""

    without_fences = _FENCE_RE.sub("", text)
    return _strip_outside_strings(without_fences, _EMPHASIS_CHARS).strip()


def _first_opening(text: str) -> int:
    for i, ch in enumerate(text):
        if ch in _CLOSERS:
            return i
    return -1


def _scan(text: str, start: int) -> tuple[int, list[int], bool]:
    """Walk ``text`` from ``start`` tracking bracket depth outside strings.

    Returns ``(final_depth, element_ends, in_string)`` where ``element_ends``
    lists the positions of every ``}`` that closed a direct child of the
    outermost container.
    """

    depth = 0
    element_ends: list[int] = []
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
            if ch == "}" and depth == 1:
                element_ends.append(i)
    return depth, element_ends, in_string


def repair_truncated_json(text: str) -> str:
    """Close a truncated top-level array or object.

    - Unterminated array: keep everything up to the last complete element and
      append ``]``; with no complete element the result is ``[]``.
    - Unterminated object: append one ``}`` per unmatched ``{``.

    Text that already ends with the bracket matching its opening bracket is
    returned unchanged.
    """

    t = text.strip()
    start = _first_opening(t)
    if start == -1:
        return t
    opening = t[start]
    if t.endswith(_CLOSERS[opening]):
        return t

    depth, element_ends, _in_string = _scan(t, start)
    if opening == "[":
        if not element_ends:
            return "[]"
        return t[: element_ends[-1] + 1] + "]"

    missing = max(0, depth)
    if missing == 0:
        return t
    return t + "}" * missing


def _balanced_end(text: str, start: int) -> int:
    closer = _CLOSERS[text[start]]
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
            if depth == 0:
                return i if ch == closer else -1
    return -1


def parse_json_payload(text: str) -> Any | None:
    """Parse ``text`` as JSON, else the first balanced bracketed substring that parses.

    Returns ``None`` when nothing parses.
    """

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    for start, ch in enumerate(text):
        if ch not in _CLOSERS:
            continue
        end = _balanced_end(text, start)
        if end == -1:
            continue
        try:
            return json.loads(text[start : end + 1])
        except json.JSONDecodeError:
            continue
    return None


def _as_candidate_list(value: Any) -> list[dict[str, Any]] | None:
    if isinstance(value, dict):
        for key in _WRAPPER_KEYS:
            inner = value.get(key)
            if isinstance(inner, list) and "isFinancial" not in value:
                value = inner
                break
        else:
            return [value]
    if not isinstance(value, list):
        return None
    items = [v for v in value if isinstance(v, dict)]
    dropped = len(value) - len(items)
    if dropped:
        _logger.warning("repair:non_object_elements dropped=%d", dropped)
    return items


def repair_and_parse(text: str | None, *, truncated: bool = False) -> list[dict[str, Any]] | None:
    """Run the full clean → repair → parse → coerce chain.

    Returns a (possibly empty) list of mappings, or ``None`` when the text
    holds no parseable JSON at all. ``truncated`` only affects logging; repair
    is attempted whenever the text is unterminated.
    """

    if not text or not text.strip():
        return None
    cleaned = clean_response_text(text)
    repaired = repair_truncated_json(cleaned)
    if repaired != cleaned or truncated:
        _logger.info(
            "repair:truncation truncated_flag=%s before_len=%d after_len=%d",
            truncated,
            len(cleaned),
            len(repaired),
        )
    parsed = parse_json_payload(repaired)
    if parsed is None and repaired != cleaned:
        parsed = parse_json_payload(cleaned)
    if parsed is None:
        return None
    return _as_candidate_list(parsed)


def extract_candidates(text: str | None) -> list[dict[str, Any]]:
    """Like :func:`repair_and_parse` but returns ``[]`` instead of ``None``."""

    return repair_and_parse(text) or []


__all__ = [
    "clean_response_text",
    "extract_candidates",
    "parse_json_payload",
    "repair_and_parse",
    "repair_truncated_json",
]
