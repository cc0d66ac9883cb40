"""
Square OAuth onboarding.

The authorize step hands the browser a random state in a short-lived cookie;
the callback only exchanges the code when the returned state matches it.
"""

import hmac
import logging
import secrets
from urllib.parse import urlencode

from square_relay.core.errors import AuthError, UpstreamError
from square_relay.core.gateway import ProviderGateway
from square_relay.core.models import Credential
from square_relay.core.settings import RelaySettings
from square_relay.core.store import CredentialStore
from square_relay.core.tokens import parse_expires_at
from square_relay.core.validation import mask_identifier

logger = logging.getLogger("oauth")

OAUTH_SCOPES = (
    "CUSTOMERS_READ",
    "CUSTOMERS_WRITE",
    "PAYMENTS_READ",
    "PAYMENTS_WRITE",
    "PAYMENTS_WRITE_ADDITIONAL_RECIPIENTS",
    "CARDS_READ",
    "CARDS_WRITE",
    "MERCHANT_PROFILE_READ",
)

STATE_COOKIE = "oauth_state"
STATE_COOKIE_MAX_AGE = 600


def new_state() -> str:
    """Random anti-forgery value for one authorization attempt."""
    return secrets.token_hex(16)


def states_match(state: str | None, cookie_state: str | None) -> bool:
    """Compare the callback state with the cookie, byte for byte."""
    if not state or not cookie_state:
        return False
    return hmac.compare_digest(state.encode("utf-8"), cookie_state.encode("utf-8"))


class OAuthFlow:
    """Begins and completes the Square OAuth code flow for sellers."""

    def __init__(
        self,
        settings: RelaySettings,
        gateway: ProviderGateway,
        store: CredentialStore,
        square_base_url: str,
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self.store = store
        self.square_base_url = square_base_url

    def authorization_url(self, state: str) -> str:
        """Square authorize URL carrying ``state``."""
        params = {
            "client_id": self.settings.square_app_id,
            "scope": " ".join(OAUTH_SCOPES),
            "session": "false",
            "state": state,
            "redirect_uri": self.settings.square_redirect_url,
        }
        return f"{self.square_base_url}/oauth2/authorize?{urlencode(params)}"

    async def complete(
        self, code: str | None, state: str | None, cookie_state: str | None
    ) -> Credential:
        """
        Exchange an authorization code and store the merchant's credential.

        Args:
            code (str | None): Authorization code from the callback query.
            state (str | None): State from the callback query.
            cookie_state (str | None): State stored in the browser cookie.

        Returns:
            Credential: The credential now stored for the merchant.

        Raises:
            AuthError: ``missing_code``, ``state_mismatch`` or ``exchange_failed``.
        """
        if not code:
            raise AuthError("missing_code")

        if not states_match(state, cookie_state):
            logger.warning("OAuth callback state does not match cookie")
            raise AuthError("state_mismatch")

        try:
            data = await self.gateway.obtain_token(
                {
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": self.settings.square_redirect_url,
                }
            )
        except UpstreamError as e:
            logger.error("Square rejected the authorization code")
            raise AuthError("exchange_failed", body=e.body) from e

        access_token = data.get("access_token")
        merchant_id = data.get("merchant_id")
        if not access_token or not merchant_id:
            logger.error("Token exchange returned no access token")
            raise AuthError("exchange_failed", body=_without_secrets(data))

        locations = await self.gateway.list_active_locations(access_token)
        credential = Credential(
            merchant_id=merchant_id,
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_at=parse_expires_at(data.get("expires_at")),
            locations=locations,
        )
        self.store.put(merchant_id, credential)
        logger.info(
            "Merchant %s connected with %d active locations",
            mask_identifier(merchant_id),
            len(locations),
        )
        return credential


def _without_secrets(data: dict) -> dict:
    return {k: v for k, v in data.items() if k not in ("access_token", "refresh_token")}
