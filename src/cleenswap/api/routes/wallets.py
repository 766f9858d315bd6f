"""Wallet asset endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from cleenswap.api.container import AppContainer, get_container
from cleenswap.api.schemas import WalletAssetsResponse, wallet_assets_response
from cleenswap.chain.abi import normalize_address
from cleenswap.errors import DecodingError

router = APIRouter()


@router.get("/wallets/{address}/assets", response_model=WalletAssetsResponse)
async def wallet_assets(address: str, container: AppContainer = Depends(get_container)):
    """Token balances and owned NFTs, one outcome per configured contract.

    Failed contracts are reported in the body; a partial result is still a 200.
    """
    try:
        normalize_address(address)
    except DecodingError as e:
        raise HTTPException(status_code=400, detail=f"Invalid wallet address: {e}")

    settings = container.settings
    assets = await container.resolver.resolve_wallet(
        address, settings.balance_contracts, settings.nft_contract_list
    )
    return wallet_assets_response(assets)
