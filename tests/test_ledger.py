"""Tests for the ledger module."""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from cleenswap.errors import LedgerWriteError
from cleenswap.ledger.database import (
    create_ledger_engine,
    is_memory_sqlite,
    ledger_url,
    session_scope,
)
from cleenswap.ledger.models import Base, ExchangeStatus, LedgerEntry
from cleenswap.ledger.repository import LedgerRepository

from conftest import TX_HASH, WALLET


@pytest.fixture
async def grn(ledger_repo: LedgerRepository, db_session):
    token_type = await ledger_repo.create_token_type("Green Points", "GRN", Decimal("2"))
    await db_session.commit()
    return token_type


async def entry_count(db_session, user_id: str) -> int:
    result = await db_session.execute(
        select(func.count()).select_from(LedgerEntry).where(LedgerEntry.user_id == user_id)
    )
    return result.scalar_one()


class TestTokenTypes:
    """Tests for token type reference data."""

    @pytest.mark.asyncio
    async def test_symbol_is_uppercased(self, ledger_repo: LedgerRepository):
        token_type = await ledger_repo.create_token_type("Eco", "eco", Decimal("1.5"))

        assert token_type.symbol == "ECO"
        assert token_type.id

    @pytest.mark.asyncio
    async def test_rate_must_be_positive(self, ledger_repo: LedgerRepository):
        with pytest.raises(ValueError):
            await ledger_repo.create_token_type("Broken", "BRK", Decimal("0"))


class TestAccumulate:
    """Tests for ledger accumulation."""

    @pytest.mark.asyncio
    async def test_first_credit_creates_single_row(self, ledger_repo, db_session, grn):
        entry = await ledger_repo.accumulate("user-1", grn.id, 200)
        await db_session.commit()

        assert entry.tokens == 200
        assert await entry_count(db_session, "user-1") == 1

    @pytest.mark.asyncio
    async def test_second_credit_adds_to_existing(self, ledger_repo, db_session, grn):
        await ledger_repo.accumulate("user-1", grn.id, 200)
        entry = await ledger_repo.accumulate("user-1", grn.id, 300)
        await db_session.commit()

        assert entry.tokens == 500
        assert await entry_count(db_session, "user-1") == 1

    @pytest.mark.asyncio
    async def test_users_are_independent(self, ledger_repo, db_session, grn):
        await ledger_repo.accumulate("user-1", grn.id, 10)
        await ledger_repo.accumulate("user-2", grn.id, 20)
        await db_session.commit()

        assert (await ledger_repo.get_entry("user-1", grn.id)).tokens == 10
        assert (await ledger_repo.get_entry("user-2", grn.id)).tokens == 20

    @pytest.mark.asyncio
    async def test_concurrent_credits_are_not_lost(self, ledger_repo, db_session, grn):
        await asyncio.gather(
            ledger_repo.accumulate("user-1", grn.id, 100),
            ledger_repo.accumulate("user-1", grn.id, 150),
            ledger_repo.accumulate("user-1", grn.id, 250),
        )
        await db_session.commit()

        entry = await ledger_repo.get_entry("user-1", grn.id)
        assert entry.tokens == 500
        assert await entry_count(db_session, "user-1") == 1

    @pytest.mark.asyncio
    async def test_large_amounts_stay_exact(self, ledger_scope, grn):
        big = 2**60 + 1
        async with ledger_scope() as db:
            await LedgerRepository(db).accumulate("user-1", grn.id, big)
        async with ledger_scope() as db:
            await LedgerRepository(db).accumulate("user-1", grn.id, big)

        async with ledger_scope() as db:
            entry = await LedgerRepository(db).get_entry("user-1", grn.id)
        assert entry.tokens == 2 * big

    @pytest.mark.asyncio
    async def test_fractional_delta_rejected(self, ledger_repo, grn):
        with pytest.raises(LedgerWriteError):
            await ledger_repo.accumulate("user-1", grn.id, Decimal("1.5"))

    @pytest.mark.asyncio
    async def test_unknown_token_type_rejected(self, ledger_repo):
        with pytest.raises(LedgerWriteError):
            await ledger_repo.accumulate("user-1", "no-such-type", 10)

    @pytest.mark.asyncio
    async def test_negative_delta_rejected(self, ledger_repo, grn):
        with pytest.raises(LedgerWriteError):
            await ledger_repo.accumulate("user-1", grn.id, -5)

    @pytest.mark.asyncio
    async def test_user_entries_load_token_type(self, ledger_repo, db_session, grn):
        await ledger_repo.accumulate("user-1", grn.id, 10)
        await db_session.commit()

        entries = await ledger_repo.get_user_entries("user-1")

        assert len(entries) == 1
        assert entries[0].token_type.symbol == "GRN"


class TestExchangeRecords:
    """Tests for exchange audit records and reconciliation."""

    @pytest.mark.asyncio
    async def test_record_completed_exchange(self, ledger_repo, db_session, grn):
        record = await ledger_repo.record_exchange(
            user_id="user-1",
            token_type_id=grn.id,
            wallet_address=WALLET,
            source_amount=100,
            destination_amount=200,
            tx_hash=TX_HASH,
        )
        await db_session.commit()

        assert record.status == ExchangeStatus.COMPLETED
        assert record.completed_at is not None
        assert await ledger_repo.get_user_exchanges("user-1") == [record]

    @pytest.mark.asyncio
    async def test_reconcile_failed_exchange(self, ledger_repo, db_session, grn):
        record = await ledger_repo.record_exchange(
            user_id="user-1",
            token_type_id=grn.id,
            wallet_address=WALLET,
            source_amount=100,
            destination_amount=200,
            tx_hash=TX_HASH,
            status=ExchangeStatus.LEDGER_FAILED,
            error_message="database is locked",
        )
        await db_session.commit()

        assert [r.id for r in await ledger_repo.list_unreconciled()] == [record.id]

        reconciled = await ledger_repo.reconcile_exchange(record.id)
        await db_session.commit()

        assert reconciled.status == ExchangeStatus.RECONCILED
        assert (await ledger_repo.get_entry("user-1", grn.id)).tokens == 200
        assert await ledger_repo.list_unreconciled() == []

    @pytest.mark.asyncio
    async def test_reconcile_is_idempotent(self, ledger_repo, db_session, grn):
        record = await ledger_repo.record_exchange(
            user_id="user-1",
            token_type_id=grn.id,
            wallet_address=WALLET,
            source_amount=100,
            destination_amount=200,
            tx_hash=TX_HASH,
            status=ExchangeStatus.LEDGER_FAILED,
        )
        await ledger_repo.reconcile_exchange(record.id)
        await ledger_repo.reconcile_exchange(record.id)
        await db_session.commit()

        assert (await ledger_repo.get_entry("user-1", grn.id)).tokens == 200

    @pytest.mark.asyncio
    async def test_reconcile_unknown_exchange(self, ledger_repo):
        with pytest.raises(ValueError):
            await ledger_repo.reconcile_exchange(999)

    @pytest.mark.asyncio
    async def test_timed_out_exchange_needs_verified_hash(self, ledger_repo, db_session, grn):
        record = await ledger_repo.record_exchange(
            user_id="user-1",
            token_type_id=grn.id,
            wallet_address=WALLET,
            source_amount=100,
            destination_amount=200,
            tx_hash=None,
            status=ExchangeStatus.TIMED_OUT,
        )
        await db_session.commit()

        assert [r.id for r in await ledger_repo.list_unreconciled()] == [record.id]
        with pytest.raises(ValueError):
            await ledger_repo.reconcile_exchange(record.id)

        reconciled = await ledger_repo.reconcile_exchange(record.id, tx_hash=TX_HASH)
        await db_session.commit()

        assert reconciled.status == ExchangeStatus.RECONCILED
        assert reconciled.tx_hash == TX_HASH
        assert (await ledger_repo.get_entry("user-1", grn.id)).tokens == 200

    @pytest.mark.asyncio
    async def test_void_timed_out_exchange(self, ledger_repo, db_session, grn):
        timed_out = [
            await ledger_repo.record_exchange(
                user_id="user-1",
                token_type_id=grn.id,
                wallet_address=WALLET,
                source_amount=100,
                destination_amount=200,
                tx_hash=None,
                status=ExchangeStatus.TIMED_OUT,
            )
            for _ in range(2)
        ]
        await db_session.commit()

        voided = await ledger_repo.void_exchange(timed_out[0].id)
        await db_session.commit()

        assert voided.status == ExchangeStatus.VOIDED
        assert [r.id for r in await ledger_repo.list_unreconciled()] == [timed_out[1].id]
        assert await ledger_repo.get_entry("user-1", grn.id) is None
        with pytest.raises(ValueError):
            await ledger_repo.void_exchange(timed_out[0].id)


class TestLedgerEngine:
    """Tests for engine construction against SQLite files."""

    def test_plain_sqlite_url_uses_async_driver(self):
        assert ledger_url("sqlite:///./data/cleenswap.db").drivername == "sqlite+aiosqlite"
        assert ledger_url("postgresql+asyncpg://u:p@db/ledger").drivername == "postgresql+asyncpg"
        assert is_memory_sqlite(ledger_url("sqlite:///:memory:"))
        assert not is_memory_sqlite(ledger_url("sqlite:///./data/cleenswap.db"))

    @pytest.mark.asyncio
    async def test_file_database_directory_created(self, tmp_path):
        path = tmp_path / "nested" / "data" / "ledger.db"
        engine = create_ledger_engine(f"sqlite:///{path}")
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            assert path.exists()
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_entry_for_unknown_token_type_rejected(self, tmp_path):
        engine = create_ledger_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
        scope = session_scope(async_sessionmaker(bind=engine, expire_on_commit=False))
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            with pytest.raises(IntegrityError):
                async with scope() as session:
                    session.add(LedgerEntry(user_id="user-1", token_type_id="missing", tokens=1))

            async with scope() as session:
                assert await entry_count(session, "user-1") == 0
        finally:
            await engine.dispose()
