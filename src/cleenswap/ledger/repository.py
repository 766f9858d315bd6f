"""Repository for ledger operations."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cleenswap.errors import LedgerWriteError
from cleenswap.ledger.models import ExchangeRecord, ExchangeStatus, LedgerEntry, TokenType
from cleenswap.utils.locks import LedgerKeyLock

logger = logging.getLogger(__name__)

Amount = Union[int, Decimal]


def _whole_amount(value: Amount) -> int:
    """Ledger amounts are whole destination tokens."""
    amount = Decimal(value)
    if not amount.is_finite() or amount != amount.to_integral_value():
        raise LedgerWriteError(f"Ledger amounts must be whole numbers, got {value}")
    return int(amount)


class LedgerRepository:
    """Repository for all ledger-related database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Token type (reference data) operations
    async def list_token_types(self, exclude_symbol: Optional[str] = None) -> list[TokenType]:
        """Exchange token types ordered by name."""
        stmt = select(TokenType).order_by(TokenType.name)
        if exclude_symbol:
            stmt = stmt.where(TokenType.symbol != exclude_symbol.upper())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_token_type(self, token_type_id: str) -> Optional[TokenType]:
        stmt = select(TokenType).where(TokenType.id == token_type_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_token_type(
        self,
        name: str,
        symbol: str,
        conversion_rate: Decimal,
        token_type_id: Optional[str] = None,
    ) -> TokenType:
        """Create a token type. Raises ValueError for a non-positive rate."""
        if conversion_rate <= 0:
            raise ValueError(f"Conversion rate must be positive, got {conversion_rate}")
        token_type = TokenType(name=name, symbol=symbol.upper(), conversion_rate=conversion_rate)
        if token_type_id:
            token_type.id = token_type_id
        self.session.add(token_type)
        await self.session.flush()
        return token_type

    # Ledger entry operations
    async def get_entry(self, user_id: str, token_type_id: str) -> Optional[LedgerEntry]:
        """Read one entry by key, always reflecting the database row."""
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id, LedgerEntry.token_type_id == token_type_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user_entries(self, user_id: str) -> list[LedgerEntry]:
        """Get all ledger entries for a user."""
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.token_type_id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _increment(self, user_id: str, token_type_id: str, delta: int) -> bool:
        """Add delta in a single UPDATE. Returns False if no row exists."""
        stmt = (
            update(LedgerEntry)
            .where(LedgerEntry.user_id == user_id, LedgerEntry.token_type_id == token_type_id)
            .values(tokens=LedgerEntry.tokens + delta)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def accumulate(self, user_id: str, token_type_id: str, delta: Amount) -> LedgerEntry:
        """Add delta to the user's entry, creating it on first credit.

        The row is never read and rewritten from Python: the increment is a
        single UPDATE, and a concurrent first insert is caught by the unique
        index and folded into an UPDATE.

        Raises:
            LedgerWriteError: unknown token type, negative or fractional delta,
                or a write failure
        """
        delta = _whole_amount(delta)
        if delta < 0:
            raise LedgerWriteError(f"Cannot accumulate a negative amount: {delta}")

        async with LedgerKeyLock((user_id, token_type_id), operation="accumulate"):
            if await self.get_token_type(token_type_id) is None:
                raise LedgerWriteError(f"Unknown token type: {token_type_id}")

            if not await self._increment(user_id, token_type_id, delta):
                try:
                    async with self.session.begin_nested():
                        self.session.add(
                            LedgerEntry(user_id=user_id, token_type_id=token_type_id, tokens=delta)
                        )
                except IntegrityError:
                    # Another writer inserted the row first
                    logger.info(f"Concurrent insert for {user_id}/{token_type_id}, updating")
                    if not await self._increment(user_id, token_type_id, delta):
                        raise LedgerWriteError(
                            f"Ledger entry for {user_id}/{token_type_id} vanished during write"
                        )

            entry = await self.get_entry(user_id, token_type_id)

        if entry is None:
            raise LedgerWriteError(f"Ledger entry for {user_id}/{token_type_id} was not written")
        return entry

    # Exchange record operations
    async def record_exchange(
        self,
        user_id: str,
        token_type_id: str,
        wallet_address: str,
        source_amount: Amount,
        destination_amount: Amount,
        tx_hash: Optional[str],
        status: ExchangeStatus = ExchangeStatus.COMPLETED,
        error_message: Optional[str] = None,
    ) -> ExchangeRecord:
        """Record an exchange attempt that reached the chain (or may have)."""
        record = ExchangeRecord(
            user_id=user_id,
            token_type_id=token_type_id,
            wallet_address=wallet_address,
            source_amount=_whole_amount(source_amount),
            destination_amount=_whole_amount(destination_amount),
            tx_hash=tx_hash,
            status=status,
            error_message=error_message,
            completed_at=datetime.now(timezone.utc) if status == ExchangeStatus.COMPLETED else None,
        )
        self.session.add(record)
        await self.session.flush()
        return record

    async def get_exchange(self, record_id: int) -> Optional[ExchangeRecord]:
        stmt = select(ExchangeRecord).where(ExchangeRecord.id == record_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user_exchanges(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> list[ExchangeRecord]:
        """Get exchange history for a user."""
        stmt = (
            select(ExchangeRecord)
            .where(ExchangeRecord.user_id == user_id)
            .order_by(ExchangeRecord.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_unreconciled(self) -> list[ExchangeRecord]:
        """Exchanges an operator still has to settle.

        ledger_failed: the chain was debited but the ledger never credited.
        timed_out: the wallet stopped answering mid-transfer; whether funds
        moved has to be checked on chain.
        """
        stmt = (
            select(ExchangeRecord)
            .where(
                ExchangeRecord.status.in_(
                    [ExchangeStatus.LEDGER_FAILED, ExchangeStatus.TIMED_OUT]
                )
            )
            .order_by(ExchangeRecord.created_at, ExchangeRecord.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def reconcile_exchange(
        self, record_id: int, tx_hash: Optional[str] = None
    ) -> ExchangeRecord:
        """Credit an unsettled exchange and mark it reconciled.

        A timed_out exchange is only credited with the hash of the transfer
        the operator found on chain.

        Raises:
            ValueError: unknown exchange, or a timed_out exchange without tx_hash
        """
        record = await self.get_exchange(record_id)
        if record is None:
            raise ValueError(f"Exchange {record_id} not found")

        if record.status == ExchangeStatus.TIMED_OUT:
            if not tx_hash:
                raise ValueError(
                    f"Exchange {record_id} timed out; pass the verified transfer hash"
                )
            record.tx_hash = tx_hash
        elif record.status != ExchangeStatus.LEDGER_FAILED:
            return record  # Nothing to reconcile

        await self.accumulate(record.user_id, record.token_type_id, record.destination_amount)
        record.status = ExchangeStatus.RECONCILED
        record.completed_at = datetime.now(timezone.utc)
        await self.session.flush()
        return record

    async def void_exchange(self, record_id: int) -> ExchangeRecord:
        """Close a timed_out exchange whose transfer never reached the chain."""
        record = await self.get_exchange(record_id)
        if record is None:
            raise ValueError(f"Exchange {record_id} not found")
        if record.status != ExchangeStatus.TIMED_OUT:
            raise ValueError(
                f"Exchange {record_id} is {ExchangeStatus(record.status).value}, not timed_out"
            )

        record.status = ExchangeStatus.VOIDED
        record.completed_at = datetime.now(timezone.utc)
        await self.session.flush()
        return record
