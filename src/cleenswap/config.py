"""Application configuration using pydantic-settings.

Chain endpoints, contract addresses and the exchange destination wallet
are all environment-supplied.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from cleenswap.chain.models import TokenContract

INFURA_SEPOLIA = "https://sepolia.infura.io/v3/{project_id}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/cleenswap.db",
        description="Database connection URL",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")

    # ======================
    # Chain RPC
    # ======================
    rpc_url: str = Field(default="", description="JSON-RPC endpoint URL")
    infura_project_id: str = Field(
        default="", description="Infura project ID (used when RPC_URL is not set)"
    )
    rpc_timeout_seconds: Optional[float] = Field(
        default=None, description="Per-call RPC timeout (None = no client-side timeout)"
    )
    rpc_max_retries: int = Field(
        default=0, ge=0, description="Retries for transport-level RPC failures"
    )

    # ======================
    # Wallet provider
    # ======================
    wallet_rpc_url: Optional[str] = Field(
        default=None, description="Wallet provider JSON-RPC endpoint"
    )
    wallet_timeout_seconds: Optional[float] = Field(
        default=None, description="Timeout for wallet transfer authorization"
    )

    # ======================
    # Contracts
    # ======================
    source_token_address: str = Field(
        default="0x975aE55f09d4C9c485d1D97C49C549BEF7a24504",
        description="ERC-20 contract of the token users exchange from",
    )
    source_token_symbol: str = Field(default="CLEEN", description="Source token symbol")
    source_token_name: str = Field(default="Cleen Token", description="Source token name")
    token_contracts: str = Field(
        default="", description="Extra ERC-20 contracts as name:address, comma-separated"
    )
    nft_contracts: str = Field(
        default="", description="ERC-721 contracts as name:address, comma-separated"
    )
    admin_wallet_address: str = Field(
        default="0x1C85f5520Ca012d9394e5349Db223fBeab6d6d30",
        description="Destination wallet for exchanged source tokens",
    )
    ownership_mode: str = Field(
        default="authoritative",
        description="NFT ownership derivation: authoritative or approximate",
    )

    # ======================
    # Notifications
    # ======================
    notification_display_seconds: float = Field(
        default=5.0, gt=0, description="How long a notification stays visible"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def provider_url(self) -> str:
        """Resolve the JSON-RPC endpoint, falling back to Infura Sepolia."""
        if self.rpc_url:
            return self.rpc_url
        if self.infura_project_id:
            return INFURA_SEPOLIA.format(project_id=self.infura_project_id)
        return ""

    @property
    def source_token(self) -> TokenContract:
        return TokenContract(name=self.source_token_name, address=self.source_token_address)

    @property
    def balance_contracts(self) -> list[TokenContract]:
        """Source token followed by any extra configured ERC-20 contracts."""
        contracts = [self.source_token]
        seen = {self.source_token_address.lower()}
        for contract in parse_contracts(self.token_contracts):
            if contract.address.lower() not in seen:
                seen.add(contract.address.lower())
                contracts.append(contract)
        return contracts

    @property
    def nft_contract_list(self) -> list[TokenContract]:
        return parse_contracts(self.nft_contracts)

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "rpc": {
                "url": self._redact_rpc(self.provider_url),
                "timeout": self.rpc_timeout_seconds,
                "max_retries": self.rpc_max_retries,
            },
            "wallet_provider": "configured" if self.wallet_rpc_url else "(not set)",
            "source_token": {
                "symbol": self.source_token_symbol,
                "address": self.source_token_address,
            },
            "token_contracts": [c.address for c in self.balance_contracts],
            "nft_contracts": [c.address for c in self.nft_contract_list],
            "admin_wallet": self.admin_wallet_address,
            "ownership_mode": self.ownership_mode,
        }

    def _redact_rpc(self, url: str) -> str:
        if self.infura_project_id and self.infura_project_id in url:
            return url.replace(self.infura_project_id, "***")
        return url

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


def parse_contracts(raw: str) -> list[TokenContract]:
    """Parse ``name:address`` pairs; a bare address is named after itself."""
    contracts = []
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        if ":" in item:
            name, address = item.split(":", 1)
            name, address = name.strip(), address.strip()
        else:
            name, address = item[:10], item
        contracts.append(TokenContract(name=name or address[:10], address=address))
    return contracts


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
