"""Ledger module for exchange token types and per-user credits."""

from cleenswap.ledger.database import get_db, init_db, session_scope
from cleenswap.ledger.models import ExchangeRecord, ExchangeStatus, LedgerEntry, TokenType
from cleenswap.ledger.repository import LedgerRepository

__all__ = [
    # Models
    "TokenType",
    "LedgerEntry",
    "ExchangeRecord",
    # Enums
    "ExchangeStatus",
    # Database
    "get_db",
    "init_db",
    "session_scope",
    "LedgerRepository",
]
