"""Shared test fixtures."""

import datetime
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from square_relay.core.errors import UpstreamError
from square_relay.core.main import create_app
from square_relay.core.models import Credential, Location
from square_relay.core.settings import RelaySettings
from square_relay.core.store import InMemoryCredentialStore

MERCHANT_ID = "MERCHANT123456"
LOCATION_ID = "LOC123"


class FakeGateway:
    """In-memory stand-in for Square that records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple]] = []
        self.token_response: dict[str, Any] = {}
        self.token_error: UpstreamError | None = None
        self.locations: list[Location] = [Location(id=LOCATION_ID, name="Main", status="ACTIVE")]
        self.locations_error: UpstreamError | None = None
        self.customers_by_filter: dict[str, list[dict[str, Any]]] = {}
        self.search_errors: dict[str, UpstreamError] = {}
        self.cards: dict[str, list[dict[str, Any]]] = {}
        self.cards_error: UpstreamError | None = None
        self.create_card_error: Exception | None = None
        self.delete_error: UpstreamError | None = None
        self.payment_response: dict[str, Any] = {}

    def calls_to(self, name: str) -> list[tuple]:
        return [args for call, args in self.calls if call == name]

    async def obtain_token(self, body: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("obtain_token", (body,)))
        if self.token_error:
            raise self.token_error
        return self.token_response

    async def list_active_locations(self, access_token: str) -> list[Location]:
        self.calls.append(("list_active_locations", (access_token,)))
        if self.locations_error:
            raise self.locations_error
        return list(self.locations)

    async def search_customers(
        self, access_token: str, query: dict[str, Any]
    ) -> list[dict[str, Any]]:
        self.calls.append(("search_customers", (access_token, query)))
        customer_filter = query["filter"]
        value = next(iter(customer_filter.values()))["exact"]
        if value in self.search_errors:
            raise self.search_errors[value]
        return list(self.customers_by_filter.get(value, []))

    async def create_customer(self, access_token: str, body: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("create_customer", (access_token, body)))
        return {"id": "CUST_NEW", "version": 0, **body}

    async def delete_customer(self, access_token: str, customer_id: str) -> dict[str, Any]:
        self.calls.append(("delete_customer", (access_token, customer_id)))
        if self.delete_error:
            raise self.delete_error
        return {}

    async def list_cards(self, access_token: str, customer_id: str) -> list[dict[str, Any]]:
        self.calls.append(("list_cards", (access_token, customer_id)))
        if self.cards_error:
            raise self.cards_error
        return list(self.cards.get(customer_id, []))

    async def create_card(self, access_token: str, body: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("create_card", (access_token, body)))
        if self.create_card_error:
            raise self.create_card_error
        return {"id": "CARD_NEW", "exp_month": 12, "exp_year": 2030, **body["card"]}

    async def create_payment(self, access_token: str, body: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("create_payment", (access_token, body)))
        return self.payment_response or {
            "id": "PAY_NEW",
            "amount_money": body["amount_money"],
            "status": "COMPLETED",
        }


@pytest.fixture
def anyio_backend() -> str:
    """Run async tests on asyncio only."""
    return "asyncio"


@pytest.fixture
def settings() -> RelaySettings:
    """Settings for testing."""
    return RelaySettings(
        square_app_id="sq0idp-test",
        square_app_secret="test_app_secret",
        square_env="sandbox",
        square_redirect_url="http://localhost:8080/oauth/callback",
        square_webhook_signature_key="test_signature_key",
        frontend_url="http://localhost:3000/app",
        token_callback_url="",
        default_merchant_id=MERCHANT_ID,
        default_access_token="",
        default_location_id="",
        protection_bypass_token="",
        rate_limit_enabled=False,
    )


@pytest.fixture
def store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def credential() -> Credential:
    """A connected merchant whose token is good for another day."""
    return Credential(
        merchant_id=MERCHANT_ID,
        access_token="merchant_access_token",
        refresh_token="merchant_refresh_token",
        expires_at=datetime.datetime.now(datetime.UTC) + datetime.timedelta(days=1),
        locations=[Location(id=LOCATION_ID, name="Main", status="ACTIVE")],
    )


@pytest.fixture
def connected_store(store: InMemoryCredentialStore, credential: Credential) -> InMemoryCredentialStore:
    store.put(MERCHANT_ID, credential)
    return store


@pytest.fixture
def app(
    settings: RelaySettings, gateway: FakeGateway, connected_store: InMemoryCredentialStore
) -> FastAPI:
    return create_app(settings=settings, gateway=gateway, store=connected_store)


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app, raise_server_exceptions=False)
