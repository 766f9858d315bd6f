"""FastAPI application factory."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cleenswap import __version__
from cleenswap.api.container import AppContainer
from cleenswap.config import get_settings
from cleenswap.ledger.database import close_db, init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    await init_db()
    if getattr(app.state, "container", None) is None:
        app.state.container = AppContainer.from_settings()
    yield
    # Shutdown
    await app.state.container.aclose()
    await close_db()


def create_app(container: Optional[AppContainer] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        container: Prebuilt services; built from settings at startup when omitted
    """
    settings = container.settings if container is not None else get_settings()

    app = FastAPI(
        title="CleenSwap API",
        description="Wallet assets and CLEEN token exchange backend",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.container = container

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routes
    from cleenswap.api.routes import exchange, health, wallets

    app.include_router(health.router, tags=["Health"])
    app.include_router(wallets.router, prefix="/api/v1", tags=["Wallets"])
    app.include_router(exchange.router, prefix="/api/v1", tags=["Exchange"])

    return app
