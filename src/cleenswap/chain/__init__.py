"""On-chain access: JSON-RPC client, ABI codec and asset resolution."""

from cleenswap.chain.models import (
    BalanceOutcome,
    NftAsset,
    NftOutcome,
    TokenBalance,
    TokenContract,
    WalletAssets,
)
from cleenswap.chain.ownership import (
    ApproximateOwnership,
    AuthoritativeOwnership,
    OwnershipStrategy,
    get_ownership_strategy,
)
from cleenswap.chain.resolver import AssetResolver
from cleenswap.chain.rpc import (
    HttpRpcClient,
    RetryingRpcClient,
    RpcClient,
    TimeoutRpcClient,
    build_rpc_client,
)

__all__ = [
    # Models
    "TokenContract",
    "TokenBalance",
    "NftAsset",
    "BalanceOutcome",
    "NftOutcome",
    "WalletAssets",
    # RPC
    "RpcClient",
    "HttpRpcClient",
    "TimeoutRpcClient",
    "RetryingRpcClient",
    "build_rpc_client",
    # Resolution
    "AssetResolver",
    "OwnershipStrategy",
    "ApproximateOwnership",
    "AuthoritativeOwnership",
    "get_ownership_strategy",
]
