"""Tests for the FastAPI endpoints."""

import pytest
from httpx import ASGITransport, AsyncClient

from cleenswap.api.app import create_app
from cleenswap.api.container import AppContainer
from cleenswap.config import Settings
from cleenswap.errors import RpcTransportError

from conftest import OTHER_WALLET, SOURCE_TOKEN, WALLET, FakeRpcClient, FakeWalletProvider

PUNKS = "0x" + "33" * 20
BROKEN = "0x" + "44" * 20


@pytest.fixture
def settings() -> Settings:
    return Settings(
        rpc_url="https://rpc.test",
        source_token_address=SOURCE_TOKEN,
        token_contracts=f"Broken:{BROKEN}",
        nft_contracts=f"Punks:{PUNKS}",
        ownership_mode="authoritative",
    )


@pytest.fixture
def chain() -> FakeRpcClient:
    rpc = FakeRpcClient()
    rpc.set_token(SOURCE_TOKEN, 150 * 10**18)
    rpc.add_transfer(PUNKS, OTHER_WALLET, WALLET, 9, block=5)
    return rpc


@pytest.fixture
def wallet() -> FakeWalletProvider:
    return FakeWalletProvider()


@pytest.fixture
async def client(settings, chain, wallet, ledger_scope, token_types):
    """Test client over an app wired to in-process fakes."""
    container = AppContainer.from_settings(
        settings=settings, rpc=chain, ledger_scope=ledger_scope, wallet_provider=wallet
    )
    app = create_app(container)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_check(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "cleenswap"

    @pytest.mark.asyncio
    async def test_detailed_health(self, client):
        response = await client.get("/health/detailed")

        assert response.status_code == 200
        data = response.json()
        assert data["wallet_provider"] is True
        assert "environment" in data["config"]
        assert data["config"]["ownership_mode"] == "authoritative"


class TestWalletEndpoints:
    """Tests for wallet asset resolution."""

    @pytest.mark.asyncio
    async def test_assets_with_partial_failure(self, client):
        response = await client.get(f"/api/v1/wallets/{WALLET}/assets")

        assert response.status_code == 200
        data = response.json()
        assert data["partial"] is True
        assert data["failed_contracts"] == [BROKEN]

        cleen, broken = data["balances"]
        assert cleen["ok"] is True
        assert cleen["display"] == "150.00"
        assert cleen["whole_units"] == 150
        assert broken["ok"] is False
        assert broken["error_kind"] == "RpcProtocolError"

        [punks] = data["nfts"]
        assert punks["approximate"] is False
        assert punks["nfts"][0]["title"] == "Punks #9"

    @pytest.mark.asyncio
    async def test_invalid_address(self, client):
        response = await client.get("/api/v1/wallets/not-a-wallet/assets")

        assert response.status_code == 400


class TestQuoteEndpoints:
    """Tests for token types and quotes."""

    @pytest.mark.asyncio
    async def test_token_types_exclude_source(self, client):
        response = await client.get("/api/v1/token-types")

        assert response.status_code == 200
        data = response.json()
        assert [t["symbol"] for t in data["token_types"]] == ["ECO", "GRN"]
        assert data["token_types"][1]["conversion_rate"] == "2.99"

    @pytest.mark.asyncio
    async def test_quote_clamped_to_balance(self, client, token_types):
        response = await client.post(
            "/api/v1/quotes",
            json={"wallet_address": WALLET, "amount": "500", "token_type_id": token_types["GRN"]},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["available_balance"] == 150
        assert data["source_amount"] == 150
        assert data["rate"] == 2
        assert data["destination_amount"] == 300

    @pytest.mark.asyncio
    async def test_quote_without_token_type(self, client):
        response = await client.post(
            "/api/v1/quotes", json={"wallet_address": WALLET, "amount": "10"}
        )

        data = response.json()
        assert data["empty"] is True
        assert data["source_amount"] == 10
        assert data["destination_amount"] is None

    @pytest.mark.asyncio
    async def test_quote_chain_unreachable(self, client, chain, token_types):
        chain.set_call(SOURCE_TOKEN, "balanceOf(address)", RpcTransportError("down"))

        response = await client.post(
            "/api/v1/quotes",
            json={"wallet_address": WALLET, "amount": "10", "token_type_id": token_types["GRN"]},
        )

        assert response.status_code == 502


class TestExchangeEndpoints:
    """Tests for running exchanges and reading the results."""

    @pytest.mark.asyncio
    async def test_exchange_credits_ledger(self, client, wallet, token_types):
        response = await client.post(
            "/api/v1/exchanges",
            json={
                "user_id": "user-1",
                "wallet_address": WALLET,
                "amount": "100",
                "token_type_id": token_types["GRN"],
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["state"] == "ledger_updated"
        assert data["destination_amount"] == 200
        assert data["ledger_tokens"] == "200"
        assert data["clear_quote"] is True
        assert data["refreshed_balance"] == "150.00"
        assert len(wallet.sent) == 1

        ledger = (await client.get("/api/v1/users/user-1/ledger")).json()
        assert ledger["entries"] == [
            {
                "token_type_id": token_types["GRN"],
                "token_name": "Green Points",
                "symbol": "GRN",
                "tokens": "200",
            }
        ]

    @pytest.mark.asyncio
    async def test_oversized_exchange_is_not_clamped(self, client, wallet, token_types):
        response = await client.post(
            "/api/v1/exchanges",
            json={
                "user_id": "user-1",
                "wallet_address": WALLET,
                "amount": "500",
                "token_type_id": token_types["GRN"],
            },
        )

        data = response.json()
        assert data["success"] is False
        assert data["failure_reason"] == "insufficient_balance"
        assert wallet.sent == []

    @pytest.mark.asyncio
    async def test_exchange_requires_login(self, client, token_types):
        response = await client.post(
            "/api/v1/exchanges",
            json={"wallet_address": WALLET, "amount": "100", "token_type_id": token_types["GRN"]},
        )

        data = response.json()
        assert data["failure_reason"] == "not_authenticated"
        assert data["history"] == ["idle", "failed"]

    @pytest.mark.asyncio
    async def test_notifications_listed_and_dismissed(self, client, token_types):
        await client.post(
            "/api/v1/exchanges",
            json={
                "user_id": "user-1",
                "wallet_address": WALLET,
                "amount": "100",
                "token_type_id": token_types["GRN"],
            },
        )

        data = (await client.get("/api/v1/users/user-1/notifications")).json()
        [notification] = data["notifications"]
        assert notification["level"] == "success"
        assert notification["message"].startswith("Successfully exchanged 100 CLEEN for 200 Green Points!")

        url = f"/api/v1/users/user-1/notifications/{notification['id']}"
        assert (await client.delete(url)).status_code == 200
        assert (await client.delete(url)).status_code == 404
        assert (await client.get("/api/v1/users/user-1/notifications")).json()["notifications"] == []
