"""Health, configuration and token status endpoints."""

import datetime
import logging

from fastapi import APIRouter, HTTPException, Request
from slowapi import Limiter

from square_relay.core.ratelimit import default_limit
from square_relay.core.settings import RelaySettings
from square_relay.core.store import CredentialStore
from square_relay.core.tokens import TokenManager

logger = logging.getLogger("api")


def create_status_router(
    settings: RelaySettings, store: CredentialStore, tokens: TokenManager, limiter: Limiter
) -> APIRouter:
    """Create the router for endpoints that need no merchant credential."""

    router = APIRouter(tags=["status"])
    limited = default_limit(limiter)

    @router.get("/health")
    @router.get("/api/health")
    @limited
    async def health(request: Request) -> dict[str, str]:
        """Liveness probe."""
        return {"status": "ok", "timestamp": datetime.datetime.now(datetime.UTC).isoformat()}

    @router.get("/api/config")
    @limited
    async def public_config(request: Request) -> dict:
        """Public, non-secret configuration for the frontend."""
        return {
            "appId": settings.square_app_id,
            "environment": settings.square_env,
            "isProduction": settings.is_production,
            "isSquareProduction": settings.is_square_production,
        }

    @router.get("/api/init")
    @limited
    async def init_status(request: Request) -> dict:
        """Whether the default merchant is connected. Debug aid."""
        merchant_id = settings.default_merchant_id
        logger.info(
            "Environment check: default token %s, default location %s",
            "SET" if settings.default_access_token else "NOT SET",
            "SET" if settings.default_location_id else "NOT SET",
        )
        return {
            "initialized": bool(merchant_id) and store.get(merchant_id) is not None,
            "merchantId": merchant_id,
            "hasAccessToken": bool(settings.default_access_token),
            "hasLocationId": bool(settings.default_location_id),
            "locationId": settings.default_location_id,
        }

    @router.get("/api/token-status")
    @limited
    async def token_status(request: Request, merchant_id: str | None = None) -> dict:
        """Report whether a merchant's token is missing, expired or active."""
        if not merchant_id:
            raise HTTPException(status_code=400, detail="merchant_id query parameter is required")
        return tokens.token_status(merchant_id)

    return router
