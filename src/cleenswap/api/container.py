"""Service wiring for the API process."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Request

from cleenswap.chain.models import TokenBalance
from cleenswap.chain.ownership import get_ownership_strategy
from cleenswap.chain.resolver import AssetResolver
from cleenswap.chain.rpc import RpcClient, build_rpc_client
from cleenswap.config import Settings, get_settings
from cleenswap.exchange.orchestrator import ExchangeOrchestrator
from cleenswap.exchange.wallet import WalletProvider, get_wallet_provider
from cleenswap.ledger.database import SessionScope, get_session_factory, session_scope
from cleenswap.notifications.feed import NotificationFeed

logger = logging.getLogger(__name__)


@dataclass
class AppContainer:
    """Long-lived services shared by every request."""

    settings: Settings
    rpc: RpcClient
    resolver: AssetResolver
    ledger_scope: SessionScope
    notifications: NotificationFeed
    orchestrator: ExchangeOrchestrator
    wallet_provider: Optional[WalletProvider] = None
    owns_rpc: bool = field(default=True, repr=False)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        rpc: Optional[RpcClient] = None,
        ledger_scope: Optional[SessionScope] = None,
        wallet_provider: Optional[WalletProvider] = None,
    ) -> "AppContainer":
        """Build the container; explicit collaborators override configuration."""
        settings = settings or get_settings()
        owns_rpc = rpc is None
        rpc = rpc or build_rpc_client(settings)
        resolver = AssetResolver(rpc, get_ownership_strategy(settings.ownership_mode))
        ledger_scope = ledger_scope or session_scope(get_session_factory())
        notifications = NotificationFeed(settings.notification_display_seconds)
        if wallet_provider is None:
            wallet_provider = get_wallet_provider(settings)
        if wallet_provider is None:
            logger.warning("WALLET_RPC_URL not set - exchanges will fail with wallet_unavailable")

        source_token = settings.source_token

        async def refresh_balance(wallet: str) -> TokenBalance:
            return await resolver.get_token_balance(source_token, wallet)

        orchestrator = ExchangeOrchestrator(
            ledger_scope=ledger_scope,
            source_token=source_token,
            admin_address=settings.admin_wallet_address,
            wallet_provider=wallet_provider,
            source_symbol=settings.source_token_symbol,
            balance_refresher=refresh_balance,
            notifications=notifications,
            transfer_timeout=settings.wallet_timeout_seconds,
        )

        return cls(
            settings=settings,
            rpc=rpc,
            resolver=resolver,
            ledger_scope=ledger_scope,
            notifications=notifications,
            orchestrator=orchestrator,
            wallet_provider=wallet_provider,
            owns_rpc=owns_rpc,
        )

    async def aclose(self) -> None:
        if self.owns_rpc:
            await self.rpc.aclose()
        close = getattr(self.wallet_provider, "aclose", None)
        if close is not None:
            await close()


def get_container(request: Request) -> AppContainer:
    """FastAPI dependency returning the app's container."""
    return request.app.state.container
