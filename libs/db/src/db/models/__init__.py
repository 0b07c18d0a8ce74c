"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the key/value table used by ``sms_ledger``.
"""

from .ledger import Base, SlKvEntry

__all__ = [
    "Base",
    "SlKvEntry",
]
