"""Health check endpoints."""

from fastapi import APIRouter, Depends

from cleenswap import __version__
from cleenswap.api.container import AppContainer, get_container

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "cleenswap"}


@router.get("/health/detailed")
async def detailed_health(container: AppContainer = Depends(get_container)):
    """Detailed health check with configuration info."""
    settings = container.settings
    return {
        "status": "healthy",
        "service": "cleenswap",
        "version": __version__,
        "wallet_provider": container.wallet_provider is not None,
        "config": settings.get_safe_dict(),
    }
