"""Pytest configuration for test isolation.

The pipeline reads its settings, API keys and ``DATABASE_URL`` from the
environment, and ``db.client`` caches one engine per database URL. A
developer's ``.env`` or a previous test must not leak into the next test, so
an autouse fixture strips the relevant variables and disposes cached engines
after every test.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

# Make sure `packages/` and the `db` lib are importable without an install.
_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in [str(_ROOT / "packages"), str(_ROOT / "libs/db/src"), str(_ROOT)]
    if p not in sys.path
]

from db.client import dispose_engines  # noqa: E402

_ISOLATED_VARS = ("DATABASE_URL", "GEMINI_API_KEY", "OPENAI_API_KEY")


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in list(os.environ):
        if name.startswith("SMS_LEDGER_") or name in _ISOLATED_VARS:
            monkeypatch.delenv(name, raising=False)
    yield
    dispose_engines()
