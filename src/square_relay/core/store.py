"""
Credential storage.

Credentials live in process memory only; a restart forces merchants to
reconnect. Callers depend on the ``CredentialStore`` protocol so another
backend can be dropped in.
"""

import logging
from typing import Protocol

from square_relay.core.models import Credential, Location
from square_relay.core.settings import RelaySettings
from square_relay.core.validation import mask_identifier

logger = logging.getLogger("store")


class CredentialStore(Protocol):
    """Mapping from merchant id to its current credential."""

    def get(self, merchant_id: str) -> Credential | None: ...

    def put(self, merchant_id: str, credential: Credential) -> None: ...

    def delete(self, merchant_id: str) -> None: ...


class InMemoryCredentialStore:
    """Credential store backed by a dict. Every write replaces the whole entry."""

    def __init__(self) -> None:
        self._credentials: dict[str, Credential] = {}

    def get(self, merchant_id: str) -> Credential | None:
        return self._credentials.get(merchant_id)

    def put(self, merchant_id: str, credential: Credential) -> None:
        if not credential.access_token:
            raise ValueError("Refusing to store a credential without an access token")
        if credential.merchant_id != merchant_id:
            raise ValueError("Credential merchant_id does not match the store key")
        self._credentials[merchant_id] = credential

    def delete(self, merchant_id: str) -> None:
        self._credentials.pop(merchant_id, None)

    def __len__(self) -> int:
        return len(self._credentials)


def strip_bearer(token: str) -> str:
    """Drop a leading ``Bearer`` scheme some automations prepend to tokens."""
    token = token.strip()
    if token.lower().startswith("bearer "):
        return token[len("bearer ") :].strip()
    return token


def seed_default_merchant(settings: RelaySettings, store: CredentialStore) -> Credential | None:
    """
    Register the configured default merchant, if its token and location are set.

    Args:
        settings (RelaySettings): Relay settings holding the default merchant.
        store (CredentialStore): Store to populate.

    Returns:
        Credential | None: The stored credential, or None when not configured.
    """
    if not (
        settings.default_merchant_id
        and settings.default_access_token
        and settings.default_location_id
    ):
        logger.info("No default merchant configured")
        return None

    credential = Credential(
        merchant_id=settings.default_merchant_id,
        access_token=strip_bearer(settings.default_access_token),
        locations=[
            Location(
                id=settings.default_location_id,
                name=settings.default_location_name,
            )
        ],
    )
    store.put(credential.merchant_id, credential)
    logger.info(
        "Default merchant initialized: %s", mask_identifier(settings.default_merchant_id)
    )
    return credential
