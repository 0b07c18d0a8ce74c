"""DB helpers for tests: bootstrap a temporary SQLite key/value store."""

from __future__ import annotations

import os
from pathlib import Path

from db.client import ensure_schema, session_scope
from db.kv import kv_get
from sqlalchemy import text as sql_text

from sms_ledger.persistence import DedupIndex, LedgerStore


def bootstrap_sqlite_db(db_file: Path, *, set_default_env: bool = False) -> str:
    """Create a SQLite database file, initialize schema, and return the URL.

    Using a file-backed SQLite DB ensures multiple SQLAlchemy connections share
    the same state (in-memory DBs are per-connection by default).
    """

    url = f"sqlite+pysqlite:///{db_file}"
    db_file.parent.mkdir(parents=True, exist_ok=True)
    ensure_schema(database_url=url)
    _assert_kv_schema(url)
    if set_default_env:
        os.environ.setdefault("DATABASE_URL", url)
    return url


def make_stores(db_file: Path) -> tuple[str, LedgerStore, DedupIndex]:
    url = bootstrap_sqlite_db(db_file)
    return url, LedgerStore(url), DedupIndex(url)


def read_raw(database_url: str, key: str):
    with session_scope(database_url=database_url) as session:
        return kv_get(session, key)


def _assert_kv_schema(database_url: str) -> None:
    with session_scope(database_url=database_url) as session:
        rows = session.execute(sql_text("PRAGMA table_info('sl_kv_entries')")).fetchall()
    got = {row[1] for row in rows}
    assert got == {"key", "value", "updated_at"}, f"sl_kv_entries schema drift: {sorted(got)}"
