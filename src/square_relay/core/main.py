"""Main FastAPI application."""

import datetime
import logging
from typing import Any, Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from square_relay.api.status import create_status_router
from square_relay.api.tokens import create_token_router
from square_relay.core.dependencies import get_settings, get_square_base_url
from square_relay.core.errors import InternalError
from square_relay.core.gateway import ProviderGateway, SquareGateway
from square_relay.core.oauth import OAuthFlow
from square_relay.core.proxy import ResourceProxy
from square_relay.core.ratelimit import create_limiter
from square_relay.core.settings import RelaySettings
from square_relay.core.store import CredentialStore, InMemoryCredentialStore, seed_default_merchant
from square_relay.core.tokens import TokenManager
from square_relay.plugins.square import create_square_router

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("api")


# Request tracing middleware
class RequestTracingMiddleware(BaseHTTPMiddleware):
    """Request tracing middleware. Headers and bodies carry secrets and are not logged."""

    async def dispatch(self, request: Request, call_next: Callable) -> Any:
        logger.info("Request: %s %s", request.method, request.url.path)
        response = await call_next(request)
        logger.info("Response status: %s", response.status_code)
        return response


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected failures in full and answer with a generic 500."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = InternalError()
    return JSONResponse(status_code=error.status_code, content={"detail": error.detail})


def create_app(
    settings: RelaySettings | None = None,
    gateway: ProviderGateway | None = None,
    store: CredentialStore | None = None,
) -> FastAPI:
    """
    Build the relay application.

    Args:
        settings (RelaySettings | None): Settings; read from the environment if omitted.
        gateway (ProviderGateway | None): Square gateway; the SDK-backed one if omitted.
        store (CredentialStore | None): Credential store; in-memory if omitted.

    Returns:
        FastAPI: The configured application.
    """
    settings = settings or get_settings()
    square_base_url = get_square_base_url(settings)
    gateway = gateway or SquareGateway(settings)
    store = store if store is not None else InMemoryCredentialStore()

    tokens = TokenManager(
        store,
        gateway,
        refresh_window=datetime.timedelta(seconds=settings.refresh_window_seconds),
    )
    proxy = ResourceProxy(gateway, store)
    oauth = OAuthFlow(settings, gateway, store, square_base_url)

    seed_default_merchant(settings, store)

    app = FastAPI(
        title="Square Relay API",
        description="Relay between a merchant frontend and Square",
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.store = store
    app.state.tokens = tokens

    limiter = create_limiter(enabled=settings.rate_limit_enabled)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Add request tracing middleware
    app.add_middleware(RequestTracingMiddleware)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "x-merchant-id"],
    )

    # Include routers
    app.include_router(create_status_router(settings, store, tokens, limiter))
    app.include_router(create_token_router(settings, store, gateway, limiter))
    app.include_router(create_square_router(settings, tokens, proxy, oauth, limiter))

    return app


app = create_app()
