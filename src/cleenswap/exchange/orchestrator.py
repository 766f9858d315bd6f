"""Exchange flow: on-chain transfer first, then off-chain ledger credit.

State machine:

    idle -> validating -> awaiting_wallet_authorization -> submitting
         -> confirmed -> ledger_updated

failed is reachable from every non-terminal state. A failure after
confirmed (ledger_write_error) means the user's tokens already left their
wallet but the ledger was not credited; it is logged at CRITICAL and
flagged for reconciliation. A wallet timeout while submitting is recorded
as timed_out, since the transfer may still land.

Provider acceptance of the transfer (a transaction hash) counts as
confirmation; block inclusion is not polled.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from cleenswap.chain.abi import TRANSFER, checksum_address, is_address
from cleenswap.chain.models import TokenBalance, TokenContract
from cleenswap.errors import (
    DecodingError,
    ExchangeInProgressError,
    LedgerWriteError,
    RpcError,
    RpcTimeoutError,
    TransferRejectedError,
    WalletError,
    WalletUnavailableError,
)
from cleenswap.exchange.quote import ExchangeQuote
from cleenswap.exchange.wallet import WalletProvider, account_authorized
from cleenswap.ledger.database import SessionScope
from cleenswap.ledger.models import ExchangeStatus
from cleenswap.ledger.repository import LedgerRepository
from cleenswap.notifications.feed import NotificationFeed
from cleenswap.utils.locks import SessionGuard

logger = logging.getLogger(__name__)


class ExchangeState(str, Enum):
    """Exchange attempt state."""

    IDLE = "idle"
    VALIDATING = "validating"
    AWAITING_WALLET_AUTHORIZATION = "awaiting_wallet_authorization"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    LEDGER_UPDATED = "ledger_updated"
    FAILED = "failed"


class FailureReason(str, Enum):
    """Why an attempt ended in the failed state."""

    NOT_AUTHENTICATED = "not_authenticated"
    EXCHANGE_IN_PROGRESS = "exchange_in_progress"
    INVALID_QUOTE = "invalid_quote"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    WALLET_UNAVAILABLE = "wallet_unavailable"
    TRANSFER_REJECTED = "transfer_rejected"
    TIMEOUT = "timeout"
    LEDGER_WRITE_ERROR = "ledger_write_error"


TERMINAL_STATES = {ExchangeState.LEDGER_UPDATED, ExchangeState.FAILED}

TRANSITIONS = {
    ExchangeState.IDLE: {ExchangeState.VALIDATING},
    ExchangeState.VALIDATING: {ExchangeState.AWAITING_WALLET_AUTHORIZATION},
    ExchangeState.AWAITING_WALLET_AUTHORIZATION: {ExchangeState.SUBMITTING},
    ExchangeState.SUBMITTING: {ExchangeState.CONFIRMED},
    ExchangeState.CONFIRMED: {ExchangeState.LEDGER_UPDATED},
}

FAILURE_MESSAGES = {
    FailureReason.NOT_AUTHENTICATED: "Please log in to exchange tokens",
    FailureReason.EXCHANGE_IN_PROGRESS: "An exchange is already in progress",
    FailureReason.INVALID_QUOTE: "Enter an amount and select a token to exchange",
    FailureReason.INSUFFICIENT_BALANCE: "Insufficient balance",
    FailureReason.WALLET_UNAVAILABLE: "No wallet available to authorize the transfer",
    FailureReason.TRANSFER_REJECTED: "Transfer was rejected",
    FailureReason.TIMEOUT: "Timed out waiting for the wallet",
    FailureReason.LEDGER_WRITE_ERROR: (
        "Your transfer went through but crediting your tokens failed. "
        "Support has been notified."
    ),
}


@dataclass(frozen=True)
class ExchangeSession:
    """Signed-in identity as supplied by the session system."""

    user_id: Optional[str] = None
    wallet_address: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)


@dataclass
class ExchangeRequest:
    """One user-initiated exchange."""

    session: ExchangeSession
    quote: ExchangeQuote
    balance: TokenBalance  # current source-token balance


@dataclass
class ExchangeResult:
    """Outcome of one attempt, including every state it passed through."""

    state: ExchangeState = ExchangeState.IDLE
    failure_reason: Optional[FailureReason] = None
    message: str = ""
    tx_hash: Optional[str] = None
    ledger_tokens: Optional[int] = None
    refreshed_balance: Optional[TokenBalance] = None
    history: list[ExchangeState] = field(default_factory=lambda: [ExchangeState.IDLE])

    @property
    def succeeded(self) -> bool:
        return self.state == ExchangeState.LEDGER_UPDATED

    @property
    def requires_reconciliation(self) -> bool:
        """Chain debited, ledger not credited."""
        return self.failure_reason == FailureReason.LEDGER_WRITE_ERROR

    @property
    def clear_quote(self) -> bool:
        """Whether the caller should reset its quote inputs."""
        return self.succeeded

    def advance(self, state: ExchangeState) -> None:
        if state not in TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Invalid exchange transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def fail(self, reason: FailureReason, message: Optional[str] = None) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Exchange already finished in state {self.state.value}")
        self.state = ExchangeState.FAILED
        self.failure_reason = reason
        self.message = message or FAILURE_MESSAGES[reason]
        self.history.append(ExchangeState.FAILED)


class ExchangeOrchestrator:
    """Runs exchange attempts and owns their state machine."""

    def __init__(
        self,
        ledger_scope: SessionScope,
        source_token: TokenContract,
        admin_address: str,
        wallet_provider: Optional[WalletProvider] = None,
        source_symbol: str = "CLEEN",
        balance_refresher: Optional[Callable[[str], Awaitable[TokenBalance]]] = None,
        notifications: Optional[NotificationFeed] = None,
        transfer_timeout: Optional[float] = None,
        guard: Optional[SessionGuard] = None,
    ):
        """Initialize the orchestrator.

        Args:
            ledger_scope: Transactional session scope for the ledger store
            source_token: ERC-20 contract users exchange from
            admin_address: Fixed destination wallet of the transfer
            wallet_provider: Wallet capability (None = no wallet available)
            source_symbol: Symbol used in notifications
            balance_refresher: Called with the wallet address after success
            notifications: Feed receiving success/error notifications
            transfer_timeout: Bound on authorization + submission, seconds
            guard: Reentrancy guard shared by every attempt
        """
        self.ledger_scope = ledger_scope
        self.source_token = source_token
        self.admin_address = checksum_address(admin_address)
        self.wallet_provider = wallet_provider
        self.source_symbol = source_symbol
        self.balance_refresher = balance_refresher
        self.notifications = notifications
        self.transfer_timeout = transfer_timeout
        self.guard = guard or SessionGuard()

    def is_in_flight(self, user_id: str) -> bool:
        return self.guard.in_flight(user_id)

    async def execute(self, request: ExchangeRequest) -> ExchangeResult:
        """Run one exchange attempt to a terminal state."""
        result = ExchangeResult()
        session = request.session

        if not session.is_authenticated:
            self._fail(result, None, FailureReason.NOT_AUTHENTICATED)
            return result

        user_id = session.user_id
        try:
            async with self.guard.hold(user_id):
                await self._run(request, result)
        except ExchangeInProgressError:
            self._fail(result, user_id, FailureReason.EXCHANGE_IN_PROGRESS)

        return result

    async def _run(self, request: ExchangeRequest, result: ExchangeResult) -> None:
        result.advance(ExchangeState.VALIDATING)
        if not self._validate(request, result):
            return

        if not await self._transfer(request, result):
            return

        if not await self._credit_ledger(request, result):
            return

        await self._refresh(request, result)

    def _validate(self, request: ExchangeRequest, result: ExchangeResult) -> bool:
        quote = request.quote
        user_id = request.session.user_id

        if quote.is_empty or quote.source_amount <= 0 or quote.destination_amount <= 0:
            self._fail(result, user_id, FailureReason.INVALID_QUOTE)
            return False

        if not is_address(request.session.wallet_address):
            self._fail(
                result,
                user_id,
                FailureReason.WALLET_UNAVAILABLE,
                "No valid wallet address is linked to this account",
            )
            return False

        if quote.source_amount > request.balance.whole_units:
            self._fail(result, user_id, FailureReason.INSUFFICIENT_BALANCE)
            return False

        if self.wallet_provider is None:
            self._fail(result, user_id, FailureReason.WALLET_UNAVAILABLE)
            return False

        return True

    async def _authorize_and_send(
        self, request: ExchangeRequest, result: ExchangeResult, amount_raw: int
    ) -> str:
        from_address = checksum_address(request.session.wallet_address)

        accounts = await self.wallet_provider.request_accounts()
        if not account_authorized(accounts, from_address):
            raise TransferRejectedError(f"Wallet did not authorize account {from_address}")

        result.advance(ExchangeState.SUBMITTING)
        return await self.wallet_provider.send_contract_transaction(
            self.source_token.address,
            TRANSFER,
            ["address", "uint256"],
            [self.admin_address, amount_raw],
            from_address,
        )

    async def _transfer(self, request: ExchangeRequest, result: ExchangeResult) -> bool:
        user_id = request.session.user_id
        amount_raw = request.quote.source_amount * 10**request.balance.decimals

        result.advance(ExchangeState.AWAITING_WALLET_AUTHORIZATION)
        logger.info(
            f"Requesting transfer of {request.quote.source_amount} {self.source_symbol} "
            f"from {request.session.wallet_address} for user {user_id}"
        )

        try:
            send = self._authorize_and_send(request, result, amount_raw)
            if self.transfer_timeout:
                tx_hash = await asyncio.wait_for(send, timeout=self.transfer_timeout)
            else:
                tx_hash = await send
        except WalletUnavailableError as e:
            self._fail(result, user_id, FailureReason.WALLET_UNAVAILABLE, str(e) or None)
            return False
        except TransferRejectedError as e:
            self._fail(result, user_id, FailureReason.TRANSFER_REJECTED, str(e) or None)
            return False
        except (asyncio.TimeoutError, RpcTimeoutError):
            if result.state == ExchangeState.SUBMITTING:
                logger.error(
                    f"RECONCILE: wallet timed out submitting the transfer for user {user_id}; "
                    "the transfer may still complete"
                )
                await self._record_unsettled(
                    request, None, ExchangeStatus.TIMED_OUT, "Wallet timed out during submission"
                )
            else:
                logger.error(f"Wallet timed out awaiting authorization for user {user_id}")
            self._fail(result, user_id, FailureReason.TIMEOUT)
            return False
        except (WalletError, RpcError) as e:
            self._fail(result, user_id, FailureReason.TRANSFER_REJECTED, f"Wallet provider error: {e}")
            return False

        result.tx_hash = tx_hash
        result.advance(ExchangeState.CONFIRMED)
        logger.info(f"Transfer {tx_hash} accepted for user {user_id}")
        return True

    async def _credit_ledger(self, request: ExchangeRequest, result: ExchangeResult) -> bool:
        session = request.session
        quote = request.quote

        try:
            async with self.ledger_scope() as db:
                repo = LedgerRepository(db)
                entry = await repo.accumulate(
                    session.user_id, quote.token_type_id, quote.destination_amount
                )
                await repo.record_exchange(
                    user_id=session.user_id,
                    token_type_id=quote.token_type_id,
                    wallet_address=session.wallet_address,
                    source_amount=quote.source_amount,
                    destination_amount=quote.destination_amount,
                    tx_hash=result.tx_hash,
                )
                ledger_tokens = entry.tokens
        except (LedgerWriteError, SQLAlchemyError) as e:
            logger.critical(
                f"RECONCILE: transfer {result.tx_hash} confirmed but ledger credit of "
                f"{quote.destination_amount} ({quote.token_type_id}) failed for user "
                f"{session.user_id}: {e}"
            )
            await self._record_unsettled(
                request, result.tx_hash, ExchangeStatus.LEDGER_FAILED, str(e)
            )
            self._fail(result, session.user_id, FailureReason.LEDGER_WRITE_ERROR)
            return False

        result.ledger_tokens = ledger_tokens
        result.advance(ExchangeState.LEDGER_UPDATED)
        result.message = (
            f"Exchanged {quote.source_amount} {self.source_symbol} for "
            f"{quote.destination_amount} {quote.token_type.name}"
        )
        logger.info(f"{result.message} (user {session.user_id}, tx {result.tx_hash})")

        if self.notifications is not None:
            self.notifications.notify_exchange_complete(
                session.user_id,
                quote.source_amount,
                self.source_symbol,
                quote.destination_amount,
                quote.token_type.name,
                result.tx_hash,
            )
        return True

    async def _record_unsettled(
        self,
        request: ExchangeRequest,
        tx_hash: Optional[str],
        status: ExchangeStatus,
        error: str,
    ) -> None:
        """Best-effort audit row so operators can settle the exchange."""
        quote = request.quote
        try:
            async with self.ledger_scope() as db:
                await LedgerRepository(db).record_exchange(
                    user_id=request.session.user_id,
                    token_type_id=quote.token_type_id,
                    wallet_address=request.session.wallet_address,
                    source_amount=quote.source_amount,
                    destination_amount=quote.destination_amount,
                    tx_hash=tx_hash,
                    status=status,
                    error_message=error,
                )
        except (LedgerWriteError, SQLAlchemyError) as e:
            logger.critical(
                f"RECONCILE: could not record {status.value} exchange for user "
                f"{request.session.user_id} (tx {tx_hash}): {e}"
            )

    async def _refresh(self, request: ExchangeRequest, result: ExchangeResult) -> None:
        if self.balance_refresher is None:
            return
        try:
            result.refreshed_balance = await self.balance_refresher(request.session.wallet_address)
        except (RpcError, DecodingError) as e:
            logger.warning(f"Balance refresh after exchange failed: {e}")

    def _fail(
        self,
        result: ExchangeResult,
        user_id: Optional[str],
        reason: FailureReason,
        message: Optional[str] = None,
    ) -> None:
        result.fail(reason, message)
        if reason != FailureReason.LEDGER_WRITE_ERROR:
            logger.warning(f"Exchange failed for user {user_id}: {reason.value} ({result.message})")
        if self.notifications is not None and user_id:
            self.notifications.notify_exchange_failed(user_id, result.message)
