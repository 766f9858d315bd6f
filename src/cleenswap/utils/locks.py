"""Concurrency control for ledger writes and exchange sessions.

Two different tools:

- LedgerKeyLock: waits for exclusive access to one ledger row key so the
  read-modify-write of an accumulation is never interleaved.
- SessionGuard: never waits. It rejects a second exchange for a session
  while the first one is still in flight.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Hashable, Optional

from cleenswap.errors import ExchangeInProgressError, LedgerWriteError

logger = logging.getLogger(__name__)

# Global lock registry: key -> asyncio.Lock
_key_locks: dict[Hashable, asyncio.Lock] = {}


async def get_key_lock(key: Hashable) -> asyncio.Lock:
    """Get or create the lock for a key.

    Args:
        key: Any hashable key, e.g. (user_id, token_type_id)

    Returns:
        asyncio.Lock shared by every caller using the same key
    """
    lock = _key_locks.get(key)
    if lock is None:
        lock = _key_locks.setdefault(key, asyncio.Lock())
    return lock


class LedgerKeyLock:
    """Context manager for exclusive access to one ledger key.

    Example:
        async with LedgerKeyLock((user_id, token_type_id)):
            entry = await repo.get_entry(user_id, token_type_id)
            ...
    """

    def __init__(
        self,
        key: Hashable,
        timeout: Optional[float] = 30.0,
        operation: str = "ledger_write",
    ):
        """Initialize the lock.

        Args:
            key: Ledger key to serialize on
            timeout: Maximum time to wait for lock (None = wait forever)
            operation: Description of the operation for logging
        """
        self.key = key
        self.timeout = timeout
        self.operation = operation
        self._lock: Optional[asyncio.Lock] = None
        self._acquired = False

    async def __aenter__(self) -> "LedgerKeyLock":
        """Acquire the lock."""
        self._lock = await get_key_lock(self.key)

        try:
            if self.timeout:
                await asyncio.wait_for(self._lock.acquire(), timeout=self.timeout)
            else:
                await self._lock.acquire()
            self._acquired = True
            logger.debug(f"Lock acquired for {self.key}: {self.operation}")
            return self

        except asyncio.TimeoutError:
            logger.warning(f"Lock timeout for {self.key} after {self.timeout}s: {self.operation}")
            raise LockTimeoutError(
                f"Could not acquire lock for {self.key} within {self.timeout}s"
            )

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Release the lock."""
        if self._acquired and self._lock:
            self._lock.release()
            self._acquired = False
            logger.debug(f"Lock released for {self.key}: {self.operation}")
        return False


class LockTimeoutError(LedgerWriteError):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


class SessionGuard:
    """Non-blocking reentrancy guard keyed on session.

    Checking and marking happen without an intervening await, so two
    coroutines on the same event loop can never both enter.
    """

    def __init__(self):
        self._active: set[Hashable] = set()

    def in_flight(self, key: Hashable) -> bool:
        return key in self._active

    def try_enter(self, key: Hashable) -> bool:
        if key in self._active:
            return False
        self._active.add(key)
        return True

    def leave(self, key: Hashable) -> None:
        self._active.discard(key)

    @asynccontextmanager
    async def hold(self, key: Hashable):
        """Hold the guard for the duration of the block.

        Raises:
            ExchangeInProgressError: the key is already held
        """
        if not self.try_enter(key):
            logger.info(f"Rejected reentrant operation for {key}")
            raise ExchangeInProgressError(f"An exchange is already in progress for {key}")
        try:
            yield
        finally:
            self.leave(key)


def clear_key_locks() -> None:
    """Clear all key locks (useful for testing)."""
    _key_locks.clear()
