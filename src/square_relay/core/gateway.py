"""
Square gateway.

Everything the relay asks of Square goes through the small capability
interface defined here. The Square SDK is synchronous, so each call runs in a
worker thread and the event loop only waits at these calls.
"""

import functools
import logging
from typing import Any, Callable, Protocol

import anyio
from square.client import Client
from square.http.auth.o_auth_2 import BearerAuthCredentials

from square_relay.core.errors import UpstreamError
from square_relay.core.models import Location, active_locations
from square_relay.core.settings import RelaySettings

# Setup module-level logger
logger = logging.getLogger("gateway")

class ProviderGateway(Protocol):
    """Operations the relay needs from the payments provider."""

    async def obtain_token(self, body: dict[str, Any]) -> dict[str, Any]: ...

    async def list_active_locations(self, access_token: str) -> list[Location]: ...

    async def search_customers(
        self, access_token: str, query: dict[str, Any]
    ) -> list[dict[str, Any]]: ...

    async def create_customer(
        self, access_token: str, body: dict[str, Any]
    ) -> dict[str, Any]: ...

    async def delete_customer(self, access_token: str, customer_id: str) -> dict[str, Any]: ...

    async def list_cards(self, access_token: str, customer_id: str) -> list[dict[str, Any]]: ...

    async def create_card(self, access_token: str, body: dict[str, Any]) -> dict[str, Any]: ...

    async def create_payment(
        self, access_token: str, body: dict[str, Any]
    ) -> dict[str, Any]: ...


class SquareGateway:
    """ProviderGateway backed by the Square SDK."""

    def __init__(
        self,
        settings: RelaySettings,
        client_factory: Callable[[str | None], Client] | None = None,
    ) -> None:
        self.settings = settings
        self._client_factory = client_factory or self._default_client

    def _default_client(self, access_token: str | None) -> Client:
        """Create a Square client acting on behalf of one merchant, or of the app itself."""
        credentials = (
            BearerAuthCredentials(access_token=access_token) if access_token else None
        )
        return Client(
            bearer_auth_credentials=credentials,
            environment=self.settings.square_env,
            timeout=self.settings.provider_timeout_seconds,
        )

    async def _call(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run one SDK call off the event loop and unwrap its response."""
        try:
            result = await anyio.to_thread.run_sync(functools.partial(func, *args, **kwargs))
        except Exception as e:
            logger.error("Square %s raised %s: %s", operation, type(e).__name__, str(e))
            raise UpstreamError(f"Square {operation} failed") from e

        if not result.is_success():
            logger.error("Square %s returned errors: %s", operation, result.errors)
            raise UpstreamError.from_square_errors(
                f"Square {operation} failed", result.errors, body=result.body
            )
        return result.body or {}

    async def obtain_token(self, body: dict[str, Any]) -> dict[str, Any]:
        """
        Call Square's ObtainToken endpoint.

        Args:
            body (dict[str, Any]): Grant parameters; client credentials are added here.

        Returns:
            dict[str, Any]: Token response with ``access_token``, ``refresh_token``,
            ``expires_at`` and ``merchant_id``.

        Raises:
            UpstreamError: On a network failure or a non-success response. The
                parsed response, when there is one, is kept on ``body``.
        """
        payload = {
            "client_id": self.settings.square_app_id,
            "client_secret": self.settings.square_app_secret,
            **body,
        }
        client = self._client_factory(None)
        return dict(await self._call("token request", client.o_auth.obtain_token, body=payload))

    async def list_active_locations(self, access_token: str) -> list[Location]:
        client = self._client_factory(access_token)
        body = await self._call("list locations", client.locations.list_locations)
        return active_locations(body.get("locations", []))

    async def search_customers(
        self, access_token: str, query: dict[str, Any]
    ) -> list[dict[str, Any]]:
        client = self._client_factory(access_token)
        body = await self._call(
            "customer search", client.customers.search_customers, body={"query": query}
        )
        return list(body.get("customers", []))

    async def create_customer(self, access_token: str, body: dict[str, Any]) -> dict[str, Any]:
        client = self._client_factory(access_token)
        result = await self._call("customer creation", client.customers.create_customer, body=body)
        return dict(result.get("customer", {}))

    async def delete_customer(self, access_token: str, customer_id: str) -> dict[str, Any]:
        client = self._client_factory(access_token)
        return dict(
            await self._call(
                "customer deletion", client.customers.delete_customer, customer_id=customer_id
            )
        )

    async def list_cards(self, access_token: str, customer_id: str) -> list[dict[str, Any]]:
        client = self._client_factory(access_token)
        body = await self._call("card list", client.cards.list_cards, customer_id=customer_id)
        return list(body.get("cards", []))

    async def create_card(self, access_token: str, body: dict[str, Any]) -> dict[str, Any]:
        client = self._client_factory(access_token)
        result = await self._call("card creation", client.cards.create_card, body=body)
        return dict(result.get("card", {}))

    async def create_payment(self, access_token: str, body: dict[str, Any]) -> dict[str, Any]:
        client = self._client_factory(access_token)
        result = await self._call("payment creation", client.payments.create_payment, body=body)
        return dict(result.get("payment", {}))
