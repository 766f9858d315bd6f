"""Request and response contracts for the HTTP API.

Token amounts are serialized as strings to keep full precision.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from cleenswap.chain.models import BalanceOutcome, NftOutcome, WalletAssets
from cleenswap.exchange.orchestrator import ExchangeResult
from cleenswap.exchange.quote import ExchangeQuote
from cleenswap.ledger.models import LedgerEntry, TokenType
from cleenswap.notifications.feed import Notification


class BalanceView(BaseModel):
    """Balance outcome for one ERC-20 contract."""

    contract: str = Field(..., description="Contract display name")
    address: str = Field(..., description="Contract address")
    ok: bool
    raw: Optional[str] = Field(None, description="Balance in the smallest unit")
    decimals: Optional[int] = None
    display: Optional[str] = Field(None, description="Balance rounded to 2 places")
    whole_units: Optional[int] = Field(None, description="Balance truncated to whole tokens")
    error: Optional[str] = None
    error_kind: Optional[str] = None


class NftView(BaseModel):
    token_id: str
    title: str
    description: str


class NftOutcomeView(BaseModel):
    """NFT outcome for one ERC-721 contract."""

    contract: str
    address: str
    ok: bool
    approximate: bool = Field(
        default=False, description="True when ownership counts every token ever received"
    )
    nfts: list[NftView] = Field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[str] = None


class WalletAssetsResponse(BaseModel):
    wallet: str
    partial: bool = Field(default=False, description="At least one contract failed")
    failed_contracts: list[str] = Field(default_factory=list)
    balances: list[BalanceView] = Field(default_factory=list)
    nfts: list[NftOutcomeView] = Field(default_factory=list)


class TokenTypeView(BaseModel):
    id: str
    name: str
    symbol: str
    conversion_rate: str


class TokenTypeListResponse(BaseModel):
    success: bool = True
    token_types: list[TokenTypeView] = Field(default_factory=list)
    total: int = 0


class QuoteRequest(BaseModel):
    """Quote inputs as typed by the user."""

    wallet_address: str = Field(..., min_length=40, max_length=42)
    amount: str = Field(..., max_length=80, description="Source amount; non-digits are ignored")
    token_type_id: Optional[str] = Field(None, max_length=36)


class QuoteResponse(BaseModel):
    empty: bool
    source_amount: Optional[int] = None
    token_type: Optional[TokenTypeView] = None
    rate: Optional[int] = Field(None, description="Conversion rate truncated to an integer")
    destination_amount: Optional[int] = None
    available_balance: int = Field(..., description="Whole source tokens held")


class ExchangeRequestBody(BaseModel):
    """Exchange inputs; identity comes from the session system."""

    user_id: Optional[str] = Field(None, max_length=64)
    wallet_address: Optional[str] = Field(None, max_length=42)
    amount: str = Field(..., max_length=80)
    token_type_id: str = Field(..., max_length=36)


class ExchangeResponse(BaseModel):
    success: bool
    state: str
    history: list[str]
    failure_reason: Optional[str] = None
    message: str = ""
    tx_hash: Optional[str] = None
    source_amount: Optional[int] = None
    destination_amount: Optional[int] = None
    ledger_tokens: Optional[str] = None
    requires_reconciliation: bool = False
    clear_quote: bool = False
    refreshed_balance: Optional[str] = None


class LedgerEntryView(BaseModel):
    token_type_id: str
    token_name: str
    symbol: str
    tokens: str


class LedgerResponse(BaseModel):
    user_id: str
    entries: list[LedgerEntryView] = Field(default_factory=list)


class NotificationView(BaseModel):
    id: int
    message: str
    level: str


class NotificationListResponse(BaseModel):
    user_id: str
    notifications: list[NotificationView] = Field(default_factory=list)


# Converters


def decimal_str(value: Optional[Decimal]) -> Optional[str]:
    """Plain notation without trailing zeros (500, not 5E+2)."""
    if value is None:
        return None
    return f"{Decimal(value).normalize():f}"


def balance_view(outcome: BalanceOutcome) -> BalanceView:
    view = BalanceView(
        contract=outcome.contract.name,
        address=outcome.contract.address,
        ok=outcome.ok,
        error=outcome.error,
        error_kind=outcome.error_kind,
    )
    if outcome.balance is not None:
        view.raw = str(outcome.balance.raw)
        view.decimals = outcome.balance.decimals
        view.display = outcome.balance.format_display()
        view.whole_units = outcome.balance.whole_units
    return view


def nft_outcome_view(outcome: NftOutcome) -> NftOutcomeView:
    return NftOutcomeView(
        contract=outcome.contract.name,
        address=outcome.contract.address,
        ok=outcome.ok,
        approximate=outcome.approximate,
        nfts=[
            NftView(token_id=str(n.token_id), title=n.title, description=n.description)
            for n in outcome.nfts
        ],
        error=outcome.error,
        error_kind=outcome.error_kind,
    )


def wallet_assets_response(assets: WalletAssets) -> WalletAssetsResponse:
    return WalletAssetsResponse(
        wallet=assets.wallet,
        partial=assets.is_partial,
        failed_contracts=assets.failed_contracts,
        balances=[balance_view(o) for o in assets.balances],
        nfts=[nft_outcome_view(o) for o in assets.nfts],
    )


def token_type_view(token_type: TokenType) -> TokenTypeView:
    return TokenTypeView(
        id=token_type.id,
        name=token_type.name,
        symbol=token_type.symbol,
        conversion_rate=decimal_str(token_type.conversion_rate),
    )


def quote_response(quote: ExchangeQuote, available_balance: int) -> QuoteResponse:
    return QuoteResponse(
        empty=quote.is_empty,
        source_amount=quote.source_amount,
        token_type=token_type_view(quote.token_type) if quote.token_type is not None else None,
        rate=quote.rate,
        destination_amount=quote.destination_amount,
        available_balance=available_balance,
    )


def exchange_response(result: ExchangeResult, quote: ExchangeQuote) -> ExchangeResponse:
    return ExchangeResponse(
        success=result.succeeded,
        state=result.state.value,
        history=[s.value for s in result.history],
        failure_reason=result.failure_reason.value if result.failure_reason else None,
        message=result.message,
        tx_hash=result.tx_hash,
        source_amount=quote.source_amount,
        destination_amount=quote.destination_amount,
        ledger_tokens=decimal_str(result.ledger_tokens),
        requires_reconciliation=result.requires_reconciliation,
        clear_quote=result.clear_quote,
        refreshed_balance=(
            result.refreshed_balance.format_display() if result.refreshed_balance else None
        ),
    )


def ledger_entry_view(entry: LedgerEntry) -> LedgerEntryView:
    return LedgerEntryView(
        token_type_id=entry.token_type_id,
        token_name=entry.token_type.name,
        symbol=entry.token_type.symbol,
        tokens=decimal_str(entry.tokens),
    )


def notification_view(notification: Notification) -> NotificationView:
    return NotificationView(
        id=notification.id,
        message=notification.message,
        level=notification.level.value,
    )
