"""Endpoints through which an external automation pushes merchant tokens."""

import datetime
import logging
import secrets

from fastapi import APIRouter, Header, HTTPException, Query, Request
from slowapi import Limiter

from square_relay.core.errors import UpstreamError
from square_relay.core.gateway import ProviderGateway
from square_relay.core.models import Credential, EnvUpdateRequest, Location, TokenUpdateRequest
from square_relay.core.notifier import notify_token_update
from square_relay.core.ratelimit import default_limit
from square_relay.core.settings import RelaySettings
from square_relay.core.store import CredentialStore, strip_bearer
from square_relay.core.tokens import parse_expires_at
from square_relay.core.validation import mask_identifier

logger = logging.getLogger("api")

DEFAULT_PUSHED_TOKEN_LIFETIME = datetime.timedelta(hours=1)


def create_token_router(
    settings: RelaySettings,
    store: CredentialStore,
    gateway: ProviderGateway,
    limiter: Limiter,
) -> APIRouter:
    """Create the router for pushed token updates."""

    router = APIRouter(prefix="/api", tags=["tokens"])
    limited = default_limit(limiter)

    @router.post("/update-token")
    @limited
    async def update_token(request: Request, update: TokenUpdateRequest) -> dict:
        """
        Store a token pushed by an automation.

        Fetches the merchant's active locations with the new token, then
        reports the outcome to the configured callback URL, if any.
        """
        access_token = strip_bearer(update.access_token or "")
        if not access_token or not update.merchant_id:
            raise HTTPException(
                status_code=400, detail="access_token and merchant_id are required"
            )

        try:
            expires_at = parse_expires_at(update.expires_at)
        except ValueError as e:
            raise HTTPException(status_code=400, detail="Invalid expires_at") from e
        if expires_at is None:
            expires_at = datetime.datetime.now(datetime.UTC) + DEFAULT_PUSHED_TOKEN_LIFETIME

        try:
            locations = await gateway.list_active_locations(access_token)
        except UpstreamError as e:
            logger.error("Token update failed for merchant %s", mask_identifier(update.merchant_id))
            await notify_token_update(
                settings.token_callback_url,
                {"status": "error", "error": "Failed to fetch locations with the new token"},
                timeout=settings.provider_timeout_seconds,
            )
            raise HTTPException(status_code=500, detail="Failed to fetch merchant locations") from e

        store.put(
            update.merchant_id,
            Credential(
                merchant_id=update.merchant_id,
                access_token=access_token,
                refresh_token=update.refresh_token,
                expires_at=expires_at,
                locations=locations,
            ),
        )
        logger.info("Token updated for merchant: %s", mask_identifier(update.merchant_id))

        await notify_token_update(
            settings.token_callback_url,
            {
                "status": "success",
                "merchant_id": update.merchant_id,
                "message": "Access token updated successfully",
                "locations_count": len(locations),
            },
            timeout=settings.provider_timeout_seconds,
        )
        return {
            "status": "success",
            "merchant_id": update.merchant_id,
            "locations_count": len(locations),
            "message": "Access token updated successfully",
        }

    @router.post("/update-env")
    @limited
    async def update_env(
        request: Request,
        update: EnvUpdateRequest,
        bypass_query: str | None = Query(default=None, alias="x-vercel-protection-bypass"),
        bypass_header: str | None = Header(default=None, alias="x-vercel-protection-bypass"),
    ) -> dict:
        """Store a pushed token with the merchant's single location."""
        expected = settings.protection_bypass_token
        if expected:
            provided = bypass_query or bypass_header or ""
            if not secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
                raise HTTPException(status_code=401, detail="Invalid bypass token")

        access_token = strip_bearer(update.access_token or "")
        if not access_token or not update.merchant_id:
            raise HTTPException(
                status_code=400, detail="access_token and merchant_id are required"
            )

        locations = []
        if update.location_id:
            locations = [Location(id=update.location_id, name=settings.default_location_name)]
        store.put(
            update.merchant_id,
            Credential(
                merchant_id=update.merchant_id,
                access_token=access_token,
                locations=locations,
            ),
        )
        logger.info("Environment updated for merchant: %s", mask_identifier(update.merchant_id))

        return {
            "status": "success",
            "merchant_id": update.merchant_id,
            "message": "Environment variables updated successfully",
            "timestamp": datetime.datetime.now(datetime.UTC).isoformat(),
        }

    return router
