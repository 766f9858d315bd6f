"""Source-token exchange: quotes, wallet transfer and ledger credit."""

from cleenswap.exchange.orchestrator import (
    ExchangeOrchestrator,
    ExchangeRequest,
    ExchangeResult,
    ExchangeSession,
    ExchangeState,
    FailureReason,
)
from cleenswap.exchange.quote import EMPTY_QUOTE, ExchangeQuote, QuoteService, derive_quote
from cleenswap.exchange.wallet import JsonRpcWalletProvider, WalletProvider, get_wallet_provider

__all__ = [
    # Quotes
    "ExchangeQuote",
    "EMPTY_QUOTE",
    "QuoteService",
    "derive_quote",
    # Wallet
    "WalletProvider",
    "JsonRpcWalletProvider",
    "get_wallet_provider",
    # Orchestration
    "ExchangeOrchestrator",
    "ExchangeRequest",
    "ExchangeResult",
    "ExchangeSession",
    "ExchangeState",
    "FailureReason",
]
