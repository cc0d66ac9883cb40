"""Tests for the HTTP surface of the relay."""

import datetime
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from conftest import LOCATION_ID, MERCHANT_ID, FakeGateway
from square_relay.core.errors import UpstreamError
from square_relay.core.main import create_app
from square_relay.core.models import Credential
from square_relay.core.settings import RelaySettings
from square_relay.core.store import InMemoryCredentialStore


def test_health(client: TestClient) -> None:
    """Test both liveness routes."""
    for path in ("/health", "/api/health"):
        response = client.get(path)
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


def test_config_exposes_no_secrets(client: TestClient) -> None:
    """Test the public config carries the app id and flags only."""
    response = client.get("/api/config")

    assert response.json() == {
        "appId": "sq0idp-test",
        "environment": "sandbox",
        "isProduction": False,
        "isSquareProduction": False,
    }
    assert "test_app_secret" not in response.text


def test_init_reports_default_merchant(client: TestClient) -> None:
    """Test the debug endpoint reports the default merchant without its token."""
    body = client.get("/api/init").json()

    assert body["initialized"] is True
    assert body["merchantId"] == MERCHANT_ID
    assert "merchant_access_token" not in str(body)


def test_app_seeds_default_merchant(settings: RelaySettings, gateway: FakeGateway) -> None:
    """Test a configured default merchant is usable without onboarding."""
    settings = settings.model_copy(
        update={"default_access_token": "Bearer EAAAseed", "default_location_id": "SEEDLOC"}
    )
    store = InMemoryCredentialStore()
    client = TestClient(create_app(settings=settings, gateway=gateway, store=store))

    response = client.get("/api/locations")

    assert response.status_code == 200
    assert response.json()["locations"][0]["id"] == "SEEDLOC"
    seeded = store.get(MERCHANT_ID)
    assert seeded is not None
    assert seeded.access_token == "EAAAseed"


def test_token_status(client: TestClient) -> None:
    """Test token status requires a merchant id and reports state."""
    assert client.get("/api/token-status").status_code == 400
    assert client.get("/api/token-status", params={"merchant_id": "NOPE"}).json()["status"] == (
        "not_connected"
    )
    active = client.get("/api/token-status", params={"merchant_id": MERCHANT_ID}).json()
    assert active["status"] == "active"
    assert active["locations_count"] == 1


def test_unknown_merchant_is_unauthorized(client: TestClient, gateway: FakeGateway) -> None:
    """Test proxied routes answer 401 for merchants that are not connected."""
    headers = {"x-merchant-id": "UNKNOWN"}
    payment = {
        "amountCents": 100,
        "paymentToken": "t",
        "idempotencyKey": "k",
        "locationId": LOCATION_ID,
    }

    assert client.get("/api/locations", headers=headers).status_code == 401
    assert client.post("/api/payments/create", headers=headers, json=payment).status_code == 401
    assert client.get("/api/locations", params={"merchant_id": "UNKNOWN"}).status_code == 401
    assert gateway.calls == []


def test_merchant_selection_order(
    client: TestClient, gateway: FakeGateway, connected_store: InMemoryCredentialStore
) -> None:
    """Test the header wins over the query, which wins over the default merchant."""
    connected_store.put("OTHER", Credential(merchant_id="OTHER", access_token="other"))

    by_query = client.get("/api/locations", params={"merchant_id": "OTHER"})
    assert by_query.status_code == 200
    assert gateway.calls_to("list_active_locations") == [("other",)]

    by_header = client.get(
        "/api/locations", params={"merchant_id": "UNKNOWN"}, headers={"x-merchant-id": MERCHANT_ID}
    )
    assert by_header.status_code == 200
    assert by_header.json()["locations"][0]["id"] == LOCATION_ID


def test_locations(client: TestClient) -> None:
    """Test cached locations are returned."""
    response = client.get("/api/locations")
    assert response.json() == {
        "locations": [{"id": LOCATION_ID, "name": "Main", "status": "ACTIVE"}]
    }


def test_customer_search_endpoints(client: TestClient, gateway: FakeGateway) -> None:
    """Test GET search merges filters and POST search validates the phone."""
    gateway.customers_by_filter = {
        "a@example.com": [{"id": "C1"}],
        "+12125551234": [{"id": "C1"}, {"id": "C2"}],
    }

    merged = client.get(
        "/api/customers/search", params={"email": "a@example.com", "phone": "+12125551234"}
    )
    assert [c["id"] for c in merged.json()["customers"]] == ["C1", "C2"]

    assert client.post("/api/customers/search", json={"phone": "555"}).status_code == 400
    by_phone = client.post("/api/customers/search", json={"phone": "+12125551234"})
    assert [c["id"] for c in by_phone.json()["customers"]] == ["C1", "C2"]


def test_create_customer_endpoint(client: TestClient) -> None:
    """Test customer creation and its field-specific errors."""
    created = client.post("/api/customers", json={"givenName": "Jane", "familyName": "Doe"})
    assert created.status_code == 200
    assert created.json()["customer"]["given_name"] == "Jane"

    invalid = client.post(
        "/api/customers",
        json={"givenName": "Jane", "familyName": "Doe", "emailAddress": "invalid-email"},
    )
    assert invalid.status_code == 400
    assert invalid.json()["detail"] == "Invalid email format"


def test_delete_customer_endpoint(client: TestClient, gateway: FakeGateway) -> None:
    """Test deletion goes through the resolved merchant credential."""
    response = client.request("DELETE", "/api/customers/delete", json={"customerId": "C1"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert gateway.calls_to("delete_customer") == [("merchant_access_token", "C1")]

    missing = client.request("DELETE", "/api/customers/delete", json={})
    assert missing.status_code == 400


def test_cards_endpoint_fails_open(client: TestClient, gateway: FakeGateway) -> None:
    """Test a failed card lookup still answers 200 with no cards."""
    gateway.cards_error = UpstreamError("Square card list failed")

    response = client.get("/api/customers/C1/cards")

    assert response.status_code == 200
    assert response.json() == {"cards": [], "status": "unavailable"}


def test_create_card_endpoint_hides_detail(client: TestClient, gateway: FakeGateway) -> None:
    """Test card creation failures only expose the generic code."""
    gateway.create_card_error = UpstreamError(
        "Square card creation failed", errors=[{"detail": "Card declined: CVV mismatch"}]
    )

    response = client.post(
        "/api/cards",
        json={"sourceId": "cnon:abc", "customerId": "C1", "cardholderName": "Jane Doe"},
    )

    assert response.status_code == 500
    assert response.json()["detail"]["code"] == "CARD_CREATION_FAILED"
    assert "CVV" not in response.text


def test_create_payment_endpoint(client: TestClient, gateway: FakeGateway) -> None:
    """Test a payment round trip and the amount ceiling."""
    payment = {
        "amountCents": 1500,
        "currency": "USD",
        "paymentToken": "cnon:ok",
        "idempotencyKey": "key-1",
        "locationId": LOCATION_ID,
    }

    response = client.post("/api/payments/create", json=payment)
    assert response.status_code == 200
    assert response.json()["payment"]["amount_money"] == {"amount": "1500", "currency": "USD"}

    too_large = client.post("/api/payments/create", json={**payment, "amountCents": 1_000_001})
    assert too_large.status_code == 400
    assert len(gateway.calls_to("create_payment")) == 1


def test_expired_credential_refreshed_on_request(
    client: TestClient, gateway: FakeGateway, connected_store: InMemoryCredentialStore
) -> None:
    """Test a request inside the expiry window transparently refreshes the token."""
    connected_store.put(
        MERCHANT_ID,
        Credential(
            merchant_id=MERCHANT_ID,
            access_token="stale",
            refresh_token="refresh",
            expires_at=datetime.datetime.now(datetime.UTC) + datetime.timedelta(minutes=1),
        ),
    )
    gateway.token_response = {
        "access_token": "fresh",
        "expires_at": (datetime.datetime.now(datetime.UTC) + datetime.timedelta(days=30)).isoformat(),
    }

    response = client.get("/api/locations")

    assert response.status_code == 200
    stored = connected_store.get(MERCHANT_ID)
    assert stored is not None
    assert stored.access_token == "fresh"


def test_update_token(client: TestClient, connected_store: InMemoryCredentialStore) -> None:
    """Test a pushed token is stored with its locations."""
    response = client.post(
        "/api/update-token",
        json={"access_token": "Bearer EAAApushed", "merchant_id": "PUSHED", "expires_at": 1900000000},
    )

    assert response.status_code == 200
    assert response.json()["locations_count"] == 1
    stored = connected_store.get("PUSHED")
    assert stored is not None
    assert stored.access_token == "EAAApushed"
    assert stored.expires_at == datetime.datetime.fromtimestamp(1900000000, tz=datetime.UTC)


def test_update_token_requires_fields(client: TestClient) -> None:
    """Test both token and merchant id are required."""
    assert client.post("/api/update-token", json={"merchant_id": "M"}).status_code == 400
    assert client.post("/api/update-token", json={"access_token": "t"}).status_code == 400


def test_update_token_notifies_callback(
    settings: RelaySettings, gateway: FakeGateway, connected_store: InMemoryCredentialStore
) -> None:
    """Test the configured callback hears about success and failure."""
    settings = settings.model_copy(update={"token_callback_url": "https://hooks.example.com/t"})
    client = TestClient(
        create_app(settings=settings, gateway=gateway, store=connected_store),
        raise_server_exceptions=False,
    )

    with patch("square_relay.api.tokens.notify_token_update", new=AsyncMock()) as notify:
        ok = client.post("/api/update-token", json={"access_token": "t", "merchant_id": "M"})
        gateway.locations_error = UpstreamError("Square list locations failed")
        failed = client.post("/api/update-token", json={"access_token": "t", "merchant_id": "M2"})

    assert ok.status_code == 200
    assert failed.status_code == 500
    statuses = [call.args[1]["status"] for call in notify.await_args_list]
    assert statuses == ["success", "error"]
    assert notify.await_args_list[0].args[0] == "https://hooks.example.com/t"
    assert connected_store.get("M2") is None


def test_update_env_bypass_token(
    settings: RelaySettings, gateway: FakeGateway, connected_store: InMemoryCredentialStore
) -> None:
    """Test update-env is gated by the bypass token when one is configured."""
    settings = settings.model_copy(update={"protection_bypass_token": "let-me-in"})
    client = TestClient(create_app(settings=settings, gateway=gateway, store=connected_store))
    body = {"access_token": "EAAAenv", "merchant_id": "ENV", "location_id": "ENVLOC"}

    assert client.post("/api/update-env", json=body).status_code == 401
    assert (
        client.post(
            "/api/update-env", json=body, headers={"x-vercel-protection-bypass": "wrong"}
        ).status_code
        == 401
    )

    response = client.post(
        "/api/update-env", json=body, params={"x-vercel-protection-bypass": "let-me-in"}
    )
    assert response.status_code == 200
    stored = connected_store.get("ENV")
    assert stored is not None
    assert stored.expires_at is None
    assert [loc.id for loc in stored.locations] == ["ENVLOC"]


def test_update_token_rejects_out_of_range_expiry(
    client: TestClient, connected_store: InMemoryCredentialStore
) -> None:
    """Test an epoch no datetime can hold is a bad request."""
    response = client.post(
        "/api/update-token",
        json={"access_token": "t", "merchant_id": "HUGE", "expires_at": 10**20},
    )

    assert response.status_code == 400
    assert connected_store.get("HUGE") is None


def limited_client(
    settings: RelaySettings, gateway: FakeGateway, store: InMemoryCredentialStore
) -> TestClient:
    settings = settings.model_copy(update={"rate_limit_enabled": True})
    return TestClient(create_app(settings=settings, gateway=gateway, store=store))


def test_default_rate_limit_applies_to_plain_routes(
    settings: RelaySettings, gateway: FakeGateway, connected_store: InMemoryCredentialStore
) -> None:
    """Test the 101st request of a client within the window is refused."""
    client = limited_client(settings, gateway, connected_store)

    statuses = [client.get("/api/health").status_code for _ in range(100)]
    assert set(statuses) == {200}
    assert client.get("/api/health").status_code == 429


def test_default_rate_limit_is_shared_across_routes(
    settings: RelaySettings, gateway: FakeGateway, connected_store: InMemoryCredentialStore
) -> None:
    """Test requests to different routes draw from the same allowance."""
    client = limited_client(settings, gateway, connected_store)

    for _ in range(50):
        assert client.get("/api/health").status_code == 200
    for _ in range(50):
        assert client.get("/api/config").status_code == 200
    assert client.get("/api/locations").status_code == 429


def test_payment_rate_limit_per_app(
    settings: RelaySettings, gateway: FakeGateway, connected_store: InMemoryCredentialStore
) -> None:
    """Test each app counts payments once and allows exactly 20 per window."""
    limited_client(settings, gateway, connected_store)
    client = limited_client(settings, gateway, connected_store)
    payment = {
        "amountCents": 100,
        "paymentToken": "cnon:ok",
        "idempotencyKey": "key",
        "locationId": LOCATION_ID,
    }

    statuses = [client.post("/api/payments/create", json=payment).status_code for _ in range(20)]
    assert set(statuses) == {200}
    assert client.post("/api/payments/create", json=payment).status_code == 429
    assert len(gateway.calls_to("create_payment")) == 20


def test_rate_limit_disabled(client: TestClient, app) -> None:
    """Test a disabled limiter lets every request through."""
    assert app.state.limiter.enabled is False
    for _ in range(101):
        assert client.get("/api/health").status_code == 200
