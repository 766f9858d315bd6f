"""Snapshot types produced by the asset resolver.

Nothing here is persisted: balances and NFTs are recomputed from chain
state whenever the wallet address changes or a refresh is requested.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

DEFAULT_DECIMALS = 18
DISPLAY_QUANTUM = Decimal("0.01")


@dataclass(frozen=True)
class TokenContract:
    """A configured token contract."""

    name: str
    address: str


@dataclass(frozen=True)
class TokenBalance:
    """Balance of one ERC-20 contract in its smallest unit."""

    contract: TokenContract
    raw: int
    decimals: int = DEFAULT_DECIMALS

    @property
    def value(self) -> Decimal:
        """Exact balance with decimals applied."""
        return Decimal(self.raw) / (Decimal(10) ** self.decimals)

    @property
    def display_value(self) -> Decimal:
        """Balance rounded to two places for display."""
        return self.value.quantize(DISPLAY_QUANTUM, rounding=ROUND_HALF_UP)

    @property
    def whole_units(self) -> int:
        """Balance truncated to whole tokens, used for exchange amounts."""
        return self.raw // (10**self.decimals)

    def format_display(self) -> str:
        return f"{self.display_value:.2f}"


@dataclass(frozen=True)
class NftAsset:
    """An ERC-721 token held by a wallet."""

    contract: TokenContract
    token_id: int
    title: str = ""
    description: str = ""

    @property
    def key(self) -> tuple[str, int]:
        """Identity: (lowercase contract address, token id)."""
        return (self.contract.address.lower(), self.token_id)

    @classmethod
    def from_token_id(cls, contract: TokenContract, token_id: int) -> "NftAsset":
        return cls(
            contract=contract,
            token_id=token_id,
            title=f"{contract.name} #{token_id}",
            description=f"Token {token_id} of {contract.name} ({contract.address})",
        )


@dataclass
class BalanceOutcome:
    """Per-contract balance result; exactly one of balance/error is set."""

    contract: TokenContract
    balance: Optional[TokenBalance] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class NftOutcome:
    """Per-contract NFT ownership result."""

    contract: TokenContract
    nfts: list[NftAsset] = field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[str] = None
    approximate: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class WalletAssets:
    """Aggregate of every per-contract outcome for one wallet."""

    wallet: str
    balances: list[BalanceOutcome] = field(default_factory=list)
    nfts: list[NftOutcome] = field(default_factory=list)

    @property
    def failed_contracts(self) -> list[str]:
        failed = [o.contract.address for o in self.balances if not o.ok]
        failed += [o.contract.address for o in self.nfts if not o.ok]
        return failed

    @property
    def is_partial(self) -> bool:
        return bool(self.failed_contracts)

    def balance_for(self, address: str) -> Optional[TokenBalance]:
        for outcome in self.balances:
            if outcome.ok and outcome.contract.address.lower() == address.lower():
                return outcome.balance
        return None
