"""NFT ownership derivation from ERC-721 Transfer logs.

Two strategies share one interface so that switching between them is an
explicit configuration choice:

- ApproximateOwnership: every token id ever received by the wallet.
  Tokens later sent away are still reported.
- AuthoritativeOwnership: a token id is owned when its latest inbound
  Transfer is not older than its latest outbound Transfer.
"""

import logging
from abc import ABC, abstractmethod

from cleenswap.chain.abi import TRANSFER_EVENT_TOPIC, address_to_topic, decode_quantity, decode_uint
from cleenswap.chain.rpc import RpcClient
from cleenswap.errors import DecodingError

logger = logging.getLogger(__name__)

# ERC-721 Transfer(from, to, tokenId): topic0 + three indexed values
ERC721_TOPIC_COUNT = 4


def _check_log(log) -> dict:
    if not isinstance(log, dict):
        raise DecodingError(f"Transfer log must be an object, got {type(log).__name__}")
    return log


def _token_id(log: dict) -> int:
    topics = _check_log(log).get("topics")
    if not isinstance(topics, list):
        raise DecodingError(f"Transfer log topics must be a list, got {type(topics).__name__}")
    if len(topics) != ERC721_TOPIC_COUNT:
        raise DecodingError(
            f"Expected {ERC721_TOPIC_COUNT} topics in ERC-721 Transfer log, got {len(topics)}"
        )
    return decode_uint(topics[3])


def _position(log: dict) -> tuple[int, int]:
    """Chain ordering key of a log: (block number, log index)."""
    block = _check_log(log).get("blockNumber")
    index = log.get("logIndex")
    if block is None or index is None:
        raise DecodingError("Transfer log is missing blockNumber/logIndex")
    return (decode_quantity(block), decode_quantity(index))


class OwnershipStrategy(ABC):
    """Derives the token ids a wallet holds in one ERC-721 contract."""

    approximate: bool = False

    @abstractmethod
    async def owned_token_ids(self, rpc: RpcClient, contract: str, wallet: str) -> list[int]:
        """Return owned token ids in ascending order."""
        pass

    async def inbound_logs(self, rpc: RpcClient, contract: str, wallet: str) -> list[dict]:
        return await rpc.get_logs(
            contract, [TRANSFER_EVENT_TOPIC, None, address_to_topic(wallet)]
        )

    async def outbound_logs(self, rpc: RpcClient, contract: str, wallet: str) -> list[dict]:
        return await rpc.get_logs(contract, [TRANSFER_EVENT_TOPIC, address_to_topic(wallet)])


class ApproximateOwnership(OwnershipStrategy):
    """Inbound transfers only."""

    approximate = True

    async def owned_token_ids(self, rpc: RpcClient, contract: str, wallet: str) -> list[int]:
        logs = await self.inbound_logs(rpc, contract, wallet)
        return sorted({_token_id(log) for log in logs})


class AuthoritativeOwnership(OwnershipStrategy):
    """Inbound transfers minus tokens sent away afterwards."""

    async def owned_token_ids(self, rpc: RpcClient, contract: str, wallet: str) -> list[int]:
        inbound = await self.inbound_logs(rpc, contract, wallet)
        if not inbound:
            return []
        outbound = await self.outbound_logs(rpc, contract, wallet)

        last_in: dict[int, tuple[int, int]] = {}
        for log in inbound:
            token_id, pos = _token_id(log), _position(log)
            if token_id not in last_in or pos > last_in[token_id]:
                last_in[token_id] = pos

        last_out: dict[int, tuple[int, int]] = {}
        for log in outbound:
            token_id, pos = _token_id(log), _position(log)
            if token_id not in last_out or pos > last_out[token_id]:
                last_out[token_id] = pos

        # A self-transfer shows up on both sides at the same position
        owned = [
            token_id
            for token_id, pos in last_in.items()
            if token_id not in last_out or pos >= last_out[token_id]
        ]
        dropped = len(last_in) - len(owned)
        if dropped:
            logger.debug(f"{dropped} token(s) of {contract} were transferred away by {wallet}")
        return sorted(owned)


def get_ownership_strategy(mode: str) -> OwnershipStrategy:
    """Build the strategy named by the OWNERSHIP_MODE setting."""
    mode = (mode or "").lower()
    if mode == "approximate":
        return ApproximateOwnership()
    if mode == "authoritative":
        return AuthoritativeOwnership()
    raise ValueError(f"Unknown ownership mode: {mode!r}")
