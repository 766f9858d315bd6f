"""Utility modules for cleenswap."""

from cleenswap.utils.locks import LedgerKeyLock, SessionGuard, get_key_lock

__all__ = ["LedgerKeyLock", "SessionGuard", "get_key_lock"]
