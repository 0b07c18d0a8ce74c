from __future__ import annotations

import asyncio
import csv
import io
from pathlib import Path

import pytest

from sms_ledger.errors import PermissionDenied
from sms_ledger.ingest.adapters.android_sms_json import read_android_sms_json
from sms_ledger.ingest.utils import load_messages
from sms_ledger.models import RawMessage
from sms_ledger.sources import ExportFileMessageSource, StaticMessageSource, select_recent

_DATA = Path(__file__).resolve().parent / "data"


def test_load_android_json_export():
    messages = load_messages(_DATA / "android_sms_export.json")
    assert [m.sender for m in messages] == ["VM-HDFCBK", "AD-SBIINB", "+919812345678"]
    assert messages[0].timestamp_ms == 1718000000000
    assert messages[1].timestamp_ms == 1718003600000
    assert messages[0].body.startswith("Rs.1,250.00 debited")


def test_load_csv_export_keeps_multiline_bodies():
    messages = load_messages(_DATA / "sms_export.csv")
    assert [m.sender for m in messages] == ["VM-HDFCBK", "AD-SBIINB"]
    assert messages[1].body == "INR 45,000.00 credited to A/c XX9876\nby NEFT SALARY ACME CORP"


def test_csv_header_mismatch(tmp_path: Path):
    path = tmp_path / "bad.csv"
    path.write_text("from,when,text\na,1,b\n", encoding="utf-8")
    with pytest.raises(csv.Error, match="Missing columns"):
        load_messages(path)


def test_json_wrapped_messages_and_bad_shape():
    wrapped = io.StringIO('{"messages": [{"address": "X", "date": 5, "body": "b"}]}')
    assert read_android_sms_json(wrapped) == [RawMessage("X", 5, "b")]
    with pytest.raises(ValueError):
        read_android_sms_json(io.StringIO('{"count": 3}'))


def test_select_recent_filters_sorts_and_limits():
    msgs = [RawMessage("A", ts, f"b{ts}") for ts in (5, 50, 20, 1, 40)]
    assert [m.timestamp_ms for m in select_recent(msgs, 10, 2)] == [50, 40]


def test_static_source_permission():
    source = StaticMessageSource([RawMessage("A", 1, "b")], granted=False)
    with pytest.raises(PermissionDenied):
        asyncio.run(source.request_permission())


def test_export_file_source(tmp_path: Path):
    source = ExportFileMessageSource(_DATA / "android_sms_export.json")
    asyncio.run(source.request_permission())
    messages = asyncio.run(source.list_messages(1718003600000, 10))
    assert [m.sender for m in messages] == ["+919812345678", "AD-SBIINB"]

    missing = ExportFileMessageSource(tmp_path / "nope.json")
    with pytest.raises(PermissionDenied):
        asyncio.run(missing.request_permission())
