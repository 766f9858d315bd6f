"""Quote derivation for source-token to token-type exchanges.

A quote is a pure function of (typed amount, selected token type,
available balance):

    source      = min(digits_of(amount), available_balance)
    rate        = floor(token_type.conversion_rate)
    destination = source * rate

The rate is truncated to an integer before multiplying, so a rate of
2.99 pays 2 units per source token. Invalid input yields an empty quote
instead of raising.
"""

import logging
import re
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any, Optional

from cleenswap.ledger.models import TokenType
from cleenswap.ledger.repository import LedgerRepository

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"[^\d]")


@dataclass(frozen=True)
class ExchangeQuote:
    """Derived quote; never persisted."""

    source_amount: Optional[int] = None
    token_type: Optional[TokenType] = None
    rate: Optional[int] = None
    destination_amount: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        """True when there is nothing to exchange."""
        return self.source_amount is None or self.destination_amount is None

    @property
    def token_type_id(self) -> Optional[str]:
        return self.token_type.id if self.token_type is not None else None


EMPTY_QUOTE = ExchangeQuote()


def sanitize_amount(raw: Any) -> Optional[int]:
    """Keep only digits; None when nothing numeric remains."""
    if raw is None:
        return None
    digits = _NON_DIGITS.sub("", str(raw))
    if not digits:
        return None
    return int(digits)


def truncate_rate(conversion_rate: Any) -> Optional[int]:
    """Floor a conversion rate to an integer; None when not positive."""
    if conversion_rate is None:
        return None
    try:
        rate = Decimal(str(conversion_rate))
    except InvalidOperation:
        logger.warning(f"Invalid conversion rate: {conversion_rate!r}")
        return None
    if not rate.is_finite() or rate <= 0:
        return None
    return int(rate.to_integral_value(rounding=ROUND_FLOOR))


def derive_quote(
    source_amount_raw: Any,
    token_type: Optional[TokenType],
    available_balance: int,
) -> ExchangeQuote:
    """Derive the quote for the current inputs.

    Args:
        source_amount_raw: Amount as typed (string or int, whole source tokens)
        token_type: Selected destination type, or None when nothing is selected
        available_balance: Caller's balance in whole source tokens

    Returns:
        ExchangeQuote; empty when the amount is unusable, without a
        destination amount when no (valid) token type is selected
    """
    amount = sanitize_amount(source_amount_raw)
    if amount is None:
        return EMPTY_QUOTE

    source_amount = min(amount, max(available_balance, 0))

    if token_type is None:
        return ExchangeQuote(source_amount=source_amount)

    rate = truncate_rate(token_type.conversion_rate)
    if rate is None:
        return ExchangeQuote(source_amount=source_amount, token_type=token_type)

    return ExchangeQuote(
        source_amount=source_amount,
        token_type=token_type,
        rate=rate,
        destination_amount=source_amount * rate,
    )


class QuoteService:
    """Looks up exchange token types and derives quotes against them."""

    def __init__(self, repo: LedgerRepository, source_symbol: str):
        self.repo = repo
        self.source_symbol = source_symbol

    async def list_targets(self) -> list[TokenType]:
        """Token types a user may exchange into (the source token excluded)."""
        return await self.repo.list_token_types(exclude_symbol=self.source_symbol)

    async def get_quote(
        self,
        source_amount_raw: Any,
        token_type_id: Optional[str],
        available_balance: int,
    ) -> ExchangeQuote:
        token_type = None
        if token_type_id:
            token_type = await self.repo.get_token_type(token_type_id)
            if token_type is None:
                logger.info(f"Quote requested for unknown token type {token_type_id}")
            elif token_type.symbol == self.source_symbol.upper():
                token_type = None
        return derive_quote(source_amount_raw, token_type, available_balance)
