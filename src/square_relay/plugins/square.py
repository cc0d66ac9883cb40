"""Square plugin module.

This module provides the API endpoints of the Square relay: seller OAuth
onboarding, the customer, card, payment and location operations proxied to
Square on behalf of a merchant, and the Square webhook receiver.

Every proxied operation first resolves the merchant's credential through the
token manager, which refreshes or evicts expired tokens.
"""

import json
import logging
from typing import Any
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from slowapi import Limiter

from square_relay.core.dependencies import merchant_id_selector
from square_relay.core.models import (
    CardCreateRequest,
    Credential,
    CustomerCreateRequest,
    CustomerDeleteRequest,
    CustomerSearchRequest,
    PaymentCreateRequest,
)
from square_relay.core.oauth import STATE_COOKIE, STATE_COOKIE_MAX_AGE, OAuthFlow, new_state
from square_relay.core.proxy import ResourceProxy
from square_relay.core.ratelimit import default_limit, sensitive_limit
from square_relay.core.settings import RelaySettings
from square_relay.core.tokens import TokenManager
from square_relay.core.validation import mask_identifier
from square_relay.core.webhooks import SIGNATURE_HEADER, dispatch_event, verify_signature

# Setup module-level logger
logger = logging.getLogger("square")


def create_square_router(
    settings: RelaySettings,
    tokens: TokenManager,
    proxy: ResourceProxy,
    oauth: OAuthFlow,
    limiter: Limiter,
) -> APIRouter:
    """Create a router for the Square relay."""

    router = APIRouter()
    select_merchant_id = merchant_id_selector(settings.default_merchant_id)
    limited = default_limit(limiter)
    strictly_limited = sensitive_limit(limiter)

    async def require_credential(merchant_id: str = Depends(select_merchant_id)) -> Credential:
        """Resolve the credential of the merchant the request acts for."""
        return await tokens.resolve(merchant_id)

    @router.get("/oauth/authorize")
    @limited
    async def begin_authorization(request: Request) -> RedirectResponse:
        """Redirect the seller to Square's consent screen."""
        state = new_state()
        url = oauth.authorization_url(state)
        logger.info("Redirecting to Square OAuth")

        response = RedirectResponse(url)
        response.set_cookie(
            STATE_COOKIE,
            state,
            max_age=STATE_COOKIE_MAX_AGE,
            httponly=True,
            secure=settings.is_production,
            samesite="lax",
        )
        return response

    @router.get("/oauth/callback")
    @limited
    async def complete_authorization(
        request: Request, code: str | None = None, state: str | None = None
    ) -> RedirectResponse:
        """
        Handle the OAuth callback from Square.

        Exchanges the code for tokens, stores the merchant's credential and
        sends the seller back to the frontend with the merchant id attached.
        """
        credential = await oauth.complete(code, state, request.cookies.get(STATE_COOKIE))

        redirect_url = f"{settings.frontend_url}?{urlencode({'merchant_id': credential.merchant_id})}"
        response = RedirectResponse(url=redirect_url)
        response.delete_cookie(STATE_COOKIE)
        return response

    @router.get("/api/locations")
    @limited
    async def list_locations(
        request: Request, credential: Credential = Depends(require_credential)
    ) -> dict:
        """List the merchant's active locations."""
        locations = await proxy.list_locations(credential)
        return {"locations": [location.model_dump() for location in locations]}

    @router.get("/api/customers/search")
    @limited
    async def search_customers(
        request: Request,
        email: str | None = None,
        phone: str | None = None,
        credential: Credential = Depends(require_credential),
    ) -> dict:
        """Search customers by email and/or phone, cards included."""
        logger.info(
            "Searching customers with: has_email=%s has_phone=%s", bool(email), bool(phone)
        )
        customers = await proxy.search_customers(credential, email=email, phone=phone)
        return {"customers": customers}

    @router.post("/api/customers/search")
    @limited
    async def search_customers_by_phone(
        request: Request,
        search: CustomerSearchRequest,
        credential: Credential = Depends(require_credential),
    ) -> dict:
        """Search customers by an E.164 phone number."""
        customers = await proxy.search_customers_by_phone(credential, search.phone)
        return {"customers": customers}

    @router.post("/api/customers")
    @limited
    async def create_customer(
        request: Request,
        customer: CustomerCreateRequest,
        credential: Credential = Depends(require_credential),
    ) -> dict:
        """Create a customer."""
        return {"customer": await proxy.create_customer(credential, customer)}

    @router.delete("/api/customers/delete")
    @limited
    async def delete_customer(
        request: Request,
        deletion: CustomerDeleteRequest,
        credential: Credential = Depends(require_credential),
    ) -> dict:
        """Delete a customer."""
        result = await proxy.delete_customer(credential, deletion.customerId)
        return {"success": True, "message": "Customer deleted successfully", "result": result}

    @router.get("/api/customers/{customer_id}/cards")
    @limited
    async def list_customer_cards(
        request: Request,
        customer_id: str,
        credential: Credential = Depends(require_credential),
    ) -> dict:
        """List a customer's cards. A failed lookup yields no cards, never an error."""
        logger.info("Fetching cards for customer ID: %s", mask_identifier(customer_id))
        return await proxy.list_cards(credential, customer_id)

    @router.post("/api/cards")
    @limited
    @strictly_limited
    async def create_card(
        request: Request,
        card: CardCreateRequest,
        credential: Credential = Depends(require_credential),
    ) -> dict:
        """Save a card on file from a Web Payments SDK token."""
        logger.info(
            "Creating card: has_source_id=%s has_customer_id=%s has_cardholder_name=%s",
            bool(card.sourceId),
            bool(card.customerId),
            bool(card.cardholderName),
        )
        return {"card": await proxy.create_card(credential, card)}

    @router.post("/api/payments/create")
    @limited
    @strictly_limited
    async def create_payment(
        request: Request,
        payment: PaymentCreateRequest,
        credential: Credential = Depends(require_credential),
    ) -> dict:
        """Charge a payment token."""
        return {"payment": await proxy.create_payment(credential, payment)}

    @router.post("/webhooks/square")
    @limited
    async def square_webhook(request: Request) -> dict:
        """Receive a Square event after checking its signature over the raw body."""
        body = await request.body()
        signature = request.headers.get(SIGNATURE_HEADER)

        if not signature or not settings.square_webhook_signature_key:
            raise HTTPException(status_code=401, detail="Missing signature or key")
        if not verify_signature(body, signature, settings.square_webhook_signature_key):
            logger.warning("Rejected webhook with invalid signature")
            raise HTTPException(status_code=401, detail="Invalid signature")

        try:
            event: Any = json.loads(body)
        except ValueError as e:
            raise HTTPException(status_code=400, detail="Invalid webhook payload") from e
        if not isinstance(event, dict):
            raise HTTPException(status_code=400, detail="Invalid webhook payload")

        return {"status": "ok", "handled": dispatch_event(event)}

    return router
