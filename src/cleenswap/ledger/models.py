"""SQLAlchemy models for the off-chain ledger."""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator


def _uuid() -> str:
    return str(uuid.uuid4())


class DecimalString(TypeDecorator):
    """Decimal stored as its exact text form.

    SQLite has no decimal storage and Numeric round-trips through float,
    which turns 2.999999999999999999 into 3.
    """

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return f"{Decimal(value):f}"

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class ExchangeStatus(str, Enum):
    """Status of a recorded exchange."""

    COMPLETED = "completed"          # Transfer confirmed and ledger credited
    LEDGER_FAILED = "ledger_failed"  # Transfer confirmed, ledger NOT credited
    RECONCILED = "reconciled"        # Ledger credited later by an operator
    TIMED_OUT = "timed_out"          # Wallet timed out mid-transfer, outcome unknown
    VOIDED = "voided"                # Timed out and the transfer never happened


class TokenType(Base):
    """Exchange target token with its conversion rate (reference data)."""

    __tablename__ = "token_types"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    symbol: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    # Destination units per 1 source unit
    conversion_rate: Mapped[Decimal] = mapped_column(DecimalString(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relationships
    entries: Mapped[list["LedgerEntry"]] = relationship(back_populates="token_type")


class LedgerEntry(Base):
    """Tokens credited to a user for one token type.

    One row per (user, token type); only ever changed by accumulation.
    """

    __tablename__ = "user_wallets"
    __table_args__ = (
        Index("ix_user_wallets_user_token_type", "user_id", "token_type_id", unique=True),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    token_type_id: Mapped[str] = mapped_column(ForeignKey("token_types.id"), nullable=False)
    tokens: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    token_type: Mapped["TokenType"] = relationship(back_populates="entries", lazy="selectin")


class ExchangeRecord(Base):
    """Audit record of an exchange whose on-chain transfer was (or may have been) sent."""

    __tablename__ = "exchanges"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    token_type_id: Mapped[str] = mapped_column(String(36), nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False)
    source_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    destination_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # Unknown for timed_out exchanges
    tx_hash: Mapped[Optional[str]] = mapped_column(
        String(66), nullable=True, unique=True, index=True
    )
    status: Mapped[ExchangeStatus] = mapped_column(
        String(20), default=ExchangeStatus.COMPLETED, nullable=False
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
