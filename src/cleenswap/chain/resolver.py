"""Wallet balance and NFT ownership resolution over raw JSON-RPC.

Every configured contract is queried concurrently. A failure for one
contract is captured in that contract's outcome and never aborts the
others, so callers always get one outcome per contract.
"""

import asyncio
import logging
from typing import Optional

from cleenswap.chain.abi import BALANCE_OF, DECIMALS, decode_uint, encode_call_hex, normalize_address
from cleenswap.chain.models import (
    DEFAULT_DECIMALS,
    BalanceOutcome,
    NftAsset,
    NftOutcome,
    TokenBalance,
    TokenContract,
    WalletAssets,
)
from cleenswap.chain.ownership import AuthoritativeOwnership, OwnershipStrategy
from cleenswap.chain.rpc import RpcClient
from cleenswap.errors import CleenSwapError, DecodingError, RpcError

logger = logging.getLogger(__name__)

# Plausible upper bound for ERC-20 decimals; larger values are treated as garbage
MAX_DECIMALS = 77


class AssetResolver:
    """Computes token balances and owned NFTs for a wallet."""

    def __init__(self, rpc: RpcClient, ownership: Optional[OwnershipStrategy] = None):
        self.rpc = rpc
        self.ownership = ownership or AuthoritativeOwnership()
        self._decimals: dict[str, int] = {}

    async def get_decimals(self, contract: TokenContract) -> int:
        """Resolve ``decimals()`` once per contract.

        Falls back to 18 when the call fails; the fallback is not cached so
        the next resolution tries again.
        """
        key = normalize_address(contract.address)
        if key in self._decimals:
            return self._decimals[key]

        try:
            result = await self.rpc.eth_call(contract.address, encode_call_hex(DECIMALS))
            decimals = decode_uint(result)
            if decimals > MAX_DECIMALS:
                raise DecodingError(f"Implausible decimals value {decimals}")
        except (RpcError, DecodingError) as e:
            logger.warning(
                f"decimals() failed for {contract.address} ({e}), defaulting to {DEFAULT_DECIMALS}"
            )
            return DEFAULT_DECIMALS

        self._decimals[key] = decimals
        return decimals

    async def get_token_balance(self, contract: TokenContract, wallet: str) -> TokenBalance:
        """Fetch ``balanceOf(wallet)`` in the contract's smallest unit."""
        decimals = await self.get_decimals(contract)
        data = encode_call_hex(BALANCE_OF, ["address"], [wallet])
        result = await self.rpc.eth_call(contract.address, data)
        return TokenBalance(contract=contract, raw=decode_uint(result), decimals=decimals)

    async def get_owned_nfts(self, contract: TokenContract, wallet: str) -> list[NftAsset]:
        token_ids = await self.ownership.owned_token_ids(self.rpc, contract.address, wallet)
        return [NftAsset.from_token_id(contract, token_id) for token_id in token_ids]

    async def _balance_outcome(self, contract: TokenContract, wallet: str) -> BalanceOutcome:
        try:
            balance = await self.get_token_balance(contract, wallet)
        except CleenSwapError as e:
            logger.warning(f"Balance lookup failed for {contract.address}: {e}")
            return BalanceOutcome(contract=contract, error=str(e), error_kind=type(e).__name__)
        return BalanceOutcome(contract=contract, balance=balance)

    async def _nft_outcome(self, contract: TokenContract, wallet: str) -> NftOutcome:
        approximate = self.ownership.approximate
        try:
            nfts = await self.get_owned_nfts(contract, wallet)
        except CleenSwapError as e:
            logger.warning(f"NFT lookup failed for {contract.address}: {e}")
            return NftOutcome(
                contract=contract,
                error=str(e),
                error_kind=type(e).__name__,
                approximate=approximate,
            )
        return NftOutcome(contract=contract, nfts=nfts, approximate=approximate)

    async def resolve_balances(
        self, contracts: list[TokenContract], wallet: str
    ) -> list[BalanceOutcome]:
        """One outcome per contract, in the order given."""
        normalize_address(wallet)
        return list(
            await asyncio.gather(*(self._balance_outcome(c, wallet) for c in contracts))
        )

    async def resolve_nfts(self, contracts: list[TokenContract], wallet: str) -> list[NftOutcome]:
        normalize_address(wallet)
        return list(await asyncio.gather(*(self._nft_outcome(c, wallet) for c in contracts)))

    async def resolve_wallet(
        self,
        wallet: str,
        token_contracts: list[TokenContract],
        nft_contracts: list[TokenContract],
    ) -> WalletAssets:
        """Resolve balances and NFTs together for one wallet."""
        balances, nfts = await asyncio.gather(
            self.resolve_balances(token_contracts, wallet),
            self.resolve_nfts(nft_contracts, wallet),
        )
        assets = WalletAssets(wallet=wallet, balances=balances, nfts=nfts)
        if assets.is_partial:
            logger.info(
                f"Partial asset resolution for {wallet}: "
                f"{len(assets.failed_contracts)} contract(s) failed"
            )
        return assets
