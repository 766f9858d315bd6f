"""Pytest configuration and fixtures."""

import asyncio
import os
from decimal import Decimal
from typing import Any, AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["WALLET_RPC_URL"] = ""
os.environ["DEBUG"] = "true"

from cleenswap.chain.abi import (
    TRANSFER_EVENT_TOPIC,
    address_to_topic,
    encode_uint,
    function_selector,
    normalize_address,
)
from cleenswap.chain.rpc import RpcClient
from cleenswap.errors import RpcProtocolError, TransferRejectedError
from cleenswap.exchange.wallet import WalletProvider
from cleenswap.ledger.database import session_scope
from cleenswap.ledger.models import Base
from cleenswap.ledger.repository import LedgerRepository
from cleenswap.utils.locks import clear_key_locks

WALLET = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
OTHER_WALLET = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
SOURCE_TOKEN = "0x975aE55f09d4C9c485d1D97C49C549BEF7a24504"
ADMIN_WALLET = "0x1C85f5520Ca012d9394e5349Db223fBeab6d6d30"
TX_HASH = "0x" + "ab" * 32


def word(value: int) -> str:
    """ABI-encoded uint256 as an RPC hex result."""
    return "0x" + encode_uint(value).hex()


class FakeRpcClient(RpcClient):
    """In-process node: answers eth_call by (contract, selector) and eth_getLogs by topics."""

    def __init__(self):
        self.calls: list[tuple[str, list]] = []
        self.results: dict[tuple[str, str], Any] = {}
        self.logs: list[dict] = []
        self.log_errors: dict[str, Exception] = {}
        self.raw_logs: dict[str, Any] = {}
        self.closed = False

    def set_call(self, contract: str, signature: str, result: Any) -> None:
        """Result (hex string or exception) for a contract function."""
        selector = "0x" + function_selector(signature).hex()
        self.results[(normalize_address(contract), selector)] = result

    def set_token(self, contract: str, raw_balance: int, decimals: int = 18) -> None:
        self.set_call(contract, "decimals()", word(decimals))
        self.set_call(contract, "balanceOf(address)", word(raw_balance))

    def add_transfer(
        self, contract: str, sender: str, receiver: str, token_id: int, block: int, index: int = 0
    ) -> None:
        self.logs.append(
            {
                "address": normalize_address(contract),
                "topics": [
                    TRANSFER_EVENT_TOPIC,
                    address_to_topic(sender),
                    address_to_topic(receiver),
                    word(token_id),
                ],
                "blockNumber": hex(block),
                "logIndex": hex(index),
            }
        )

    def count(self, method: str) -> int:
        return sum(1 for m, _ in self.calls if m == method)

    async def call(self, method: str, params: list) -> Any:
        self.calls.append((method, params))

        if method == "eth_call":
            tx = params[0]
            key = (normalize_address(tx["to"]), tx["data"][:10])
            result = self.results.get(key)
            if result is None:
                raise RpcProtocolError("execution reverted", method=method, code=3)
            if isinstance(result, Exception):
                raise result
            return result

        if method == "eth_getLogs":
            query = params[0]
            address = normalize_address(query["address"])
            if address in self.log_errors:
                raise self.log_errors[address]
            if address in self.raw_logs:
                return self.raw_logs[address]
            return [
                log
                for log in self.logs
                if log["address"] == address and _topics_match(log["topics"], query["topics"])
            ]

        raise RpcProtocolError("Method not found", method=method, code=-32601)

    async def aclose(self) -> None:
        self.closed = True


def _topics_match(log_topics: list, wanted: list) -> bool:
    for i, topic in enumerate(wanted):
        if topic is None:
            continue
        if i >= len(log_topics) or log_topics[i].lower() != topic.lower():
            return False
    return True


class FakeWalletProvider(WalletProvider):
    """Wallet that authorizes a fixed account list and returns a fixed hash."""

    def __init__(
        self,
        accounts: Optional[list[str]] = None,
        tx_hash: str = TX_HASH,
        error: Optional[Exception] = None,
        delay: float = 0,
    ):
        self.accounts = accounts if accounts is not None else [WALLET]
        self.tx_hash = tx_hash
        self.error = error
        self.delay = delay
        self.sent: list[dict] = []

    async def request_accounts(self) -> list[str]:
        return list(self.accounts)

    async def send_contract_transaction(
        self, contract_address, function_signature, arg_types, arg_values, from_address
    ) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.sent.append(
            {
                "contract": contract_address,
                "signature": function_signature,
                "types": list(arg_types),
                "values": list(arg_values),
                "from": from_address,
            }
        )
        return self.tx_hash


class RejectingWalletProvider(FakeWalletProvider):
    def __init__(self):
        super().__init__(error=TransferRejectedError("Transfer rejected by user", code=4001))


@pytest.fixture(autouse=True)
def reset_locks():
    """Key locks are bound to the loop that first used them."""
    clear_key_locks()
    yield
    clear_key_locks()


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def ledger_repo(db_session: AsyncSession) -> LedgerRepository:
    """Create ledger repository for testing."""
    return LedgerRepository(db_session)


@pytest_asyncio.fixture
async def ledger_scope(session_factory):
    """Transactional scope over the test database."""
    return session_scope(session_factory)


@pytest_asyncio.fixture
async def token_types(ledger_scope) -> dict[str, str]:
    """Seed exchange token types; returns symbol -> id."""
    async with ledger_scope() as db:
        repo = LedgerRepository(db)
        created = [
            await repo.create_token_type("Cleen Token", "CLEEN", Decimal("1")),
            await repo.create_token_type("Green Points", "GRN", Decimal("2.99")),
            await repo.create_token_type("Eco Credits", "ECO", Decimal("2.5")),
        ]
        return {t.symbol: t.id for t in created}


@pytest.fixture
def fake_rpc() -> FakeRpcClient:
    return FakeRpcClient()
