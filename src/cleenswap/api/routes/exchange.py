"""Token type, quote, exchange, ledger and notification endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from cleenswap.api.container import AppContainer, get_container
from cleenswap.api.schemas import (
    ExchangeRequestBody,
    ExchangeResponse,
    LedgerResponse,
    NotificationListResponse,
    QuoteRequest,
    QuoteResponse,
    TokenTypeListResponse,
    exchange_response,
    ledger_entry_view,
    notification_view,
    quote_response,
    token_type_view,
)
from cleenswap.chain.abi import is_address
from cleenswap.chain.models import TokenBalance
from cleenswap.errors import DecodingError, RpcError
from cleenswap.exchange.orchestrator import ExchangeRequest, ExchangeSession
from cleenswap.exchange.quote import QuoteService, sanitize_amount
from cleenswap.ledger.repository import LedgerRepository

logger = logging.getLogger(__name__)

router = APIRouter()


async def _source_balance(container: AppContainer, wallet: str) -> TokenBalance:
    """Live source-token balance; 502 when the chain cannot be reached."""
    try:
        return await container.resolver.get_token_balance(container.settings.source_token, wallet)
    except (RpcError, DecodingError) as e:
        logger.warning(f"Could not read source balance for {wallet}: {e}")
        raise HTTPException(status_code=502, detail=f"Could not read wallet balance: {e}")


@router.get("/token-types", response_model=TokenTypeListResponse)
async def list_token_types(container: AppContainer = Depends(get_container)):
    """Token types the source token can be exchanged into, ordered by name."""
    async with container.ledger_scope() as db:
        service = QuoteService(LedgerRepository(db), container.settings.source_token_symbol)
        token_types = await service.list_targets()
    views = [token_type_view(t) for t in token_types]
    return TokenTypeListResponse(token_types=views, total=len(views))


@router.post("/quotes", response_model=QuoteResponse)
async def get_quote(body: QuoteRequest, container: AppContainer = Depends(get_container)):
    """Quote for the typed amount, clamped to the wallet's whole-token balance."""
    if not is_address(body.wallet_address):
        raise HTTPException(status_code=400, detail="Invalid wallet address")

    balance = await _source_balance(container, body.wallet_address)
    available = balance.whole_units

    async with container.ledger_scope() as db:
        service = QuoteService(LedgerRepository(db), container.settings.source_token_symbol)
        quote = await service.get_quote(body.amount, body.token_type_id, available)

    return quote_response(quote, available)


@router.post("/exchanges", response_model=ExchangeResponse)
async def create_exchange(
    body: ExchangeRequestBody, container: AppContainer = Depends(get_container)
):
    """Run one exchange.

    Handled failures are a 200 carrying the failed state and reason; the
    requested amount is not clamped here so an oversized request fails with
    insufficient_balance instead of silently shrinking.
    """
    session = ExchangeSession(user_id=body.user_id, wallet_address=body.wallet_address)
    source_token = container.settings.source_token

    if session.is_authenticated and is_address(body.wallet_address):
        balance = await _source_balance(container, body.wallet_address)
    else:
        balance = TokenBalance(contract=source_token, raw=0)

    requested = sanitize_amount(body.amount) or 0
    async with container.ledger_scope() as db:
        service = QuoteService(LedgerRepository(db), container.settings.source_token_symbol)
        quote = await service.get_quote(body.amount, body.token_type_id, requested)

    result = await container.orchestrator.execute(
        ExchangeRequest(session=session, quote=quote, balance=balance)
    )
    return exchange_response(result, quote)


@router.get("/users/{user_id}/ledger", response_model=LedgerResponse)
async def user_ledger(user_id: str, container: AppContainer = Depends(get_container)):
    async with container.ledger_scope() as db:
        entries = await LedgerRepository(db).get_user_entries(user_id)
        views = [ledger_entry_view(e) for e in entries]
    return LedgerResponse(user_id=user_id, entries=views)


@router.get("/users/{user_id}/notifications", response_model=NotificationListResponse)
async def user_notifications(user_id: str, container: AppContainer = Depends(get_container)):
    """Active notifications; expired ones are dropped."""
    items = container.notifications.active(user_id)
    return NotificationListResponse(
        user_id=user_id, notifications=[notification_view(n) for n in items]
    )


@router.delete("/users/{user_id}/notifications/{notification_id}")
async def dismiss_notification(
    user_id: str, notification_id: int, container: AppContainer = Depends(get_container)
):
    if not container.notifications.dismiss(user_id, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"success": True, "dismissed": notification_id}
