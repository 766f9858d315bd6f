"""Wallet provider boundary.

The exchange flow never holds keys. A wallet provider authorizes and
submits the ERC-20 transfer on the user's behalf and hands back the
transaction hash once the network has accepted it.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from cleenswap.chain.abi import checksum_address, encode_call_hex, normalize_address
from cleenswap.chain.rpc import HttpRpcClient, RpcClient
from cleenswap.errors import (
    RpcProtocolError,
    RpcTimeoutError,
    RpcTransportError,
    TransferRejectedError,
)

logger = logging.getLogger(__name__)

# EIP-1193 error code for "user rejected request"
USER_REJECTED_CODE = 4001


class WalletProvider(ABC):
    """Capability object exposed by the user's wallet."""

    @abstractmethod
    async def request_accounts(self) -> list[str]:
        """Ask the wallet for the accounts the user has authorized."""
        pass

    @abstractmethod
    async def send_contract_transaction(
        self,
        contract_address: str,
        function_signature: str,
        arg_types: Sequence[str],
        arg_values: Sequence[Any],
        from_address: str,
    ) -> str:
        """Submit a contract call and return the transaction hash.

        Raises:
            TransferRejectedError: the user rejected or the provider failed
        """
        pass


class JsonRpcWalletProvider(WalletProvider):
    """Wallet reached over EIP-1193 style JSON-RPC.

    Uses ``eth_requestAccounts`` and ``eth_sendTransaction``; calldata is
    built with the ABI codec.
    """

    def __init__(self, rpc: RpcClient):
        self.rpc = rpc

    @classmethod
    def from_url(cls, url: str) -> "JsonRpcWalletProvider":
        return cls(HttpRpcClient(url))

    async def request_accounts(self) -> list[str]:
        try:
            accounts = await self.rpc.call("eth_requestAccounts", [])
        except RpcProtocolError as e:
            raise TransferRejectedError(f"Account access denied: {e}", code=e.code) from e
        except RpcTransportError as e:
            raise TransferRejectedError(f"Wallet provider error: {e}") from e

        if not isinstance(accounts, list):
            raise TransferRejectedError("Wallet returned no account list")
        return [str(a) for a in accounts]

    async def send_contract_transaction(
        self,
        contract_address: str,
        function_signature: str,
        arg_types: Sequence[str],
        arg_values: Sequence[Any],
        from_address: str,
    ) -> str:
        tx = {
            "from": checksum_address(from_address),
            "to": checksum_address(contract_address),
            "value": "0x0",
            "data": encode_call_hex(function_signature, arg_types, arg_values),
        }
        logger.debug(f"Submitting {function_signature} on {tx['to']} from {tx['from']}")

        try:
            tx_hash = await self.rpc.call("eth_sendTransaction", [tx])
        except RpcTimeoutError:
            raise
        except RpcProtocolError as e:
            if e.code == USER_REJECTED_CODE:
                raise TransferRejectedError("Transfer rejected by user", code=e.code) from e
            raise TransferRejectedError(f"Wallet provider error: {e}", code=e.code) from e
        except RpcTransportError as e:
            raise TransferRejectedError(f"Wallet provider error: {e}") from e

        if not isinstance(tx_hash, str) or not tx_hash.startswith("0x"):
            raise TransferRejectedError(f"Wallet returned an invalid transaction hash: {tx_hash!r}")
        return tx_hash

    async def aclose(self) -> None:
        await self.rpc.aclose()


def account_authorized(accounts: list[str], address: str) -> bool:
    """Whether the wallet exposes the given address."""
    target = normalize_address(address)
    for account in accounts:
        try:
            if normalize_address(account) == target:
                return True
        except ValueError:
            continue
    return False


def get_wallet_provider(settings) -> Optional[WalletProvider]:
    """Provider from WALLET_RPC_URL, or None when no wallet is configured."""
    if not settings.wallet_rpc_url:
        return None
    return JsonRpcWalletProvider.from_url(settings.wallet_rpc_url)
