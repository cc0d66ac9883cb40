"""
Models for merchant credentials and the request bodies the relay accepts.
"""

import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

ACTIVE = "ACTIVE"


class Location(BaseModel):
    """A Square location of a merchant, as cached by the relay."""

    id: str
    name: str = ""
    status: str = ACTIVE

    @classmethod
    def from_square(cls, data: dict[str, Any]) -> "Location":
        """Create a Location from a Square location object."""
        return cls(id=data["id"], name=data.get("name", ""), status=data.get("status", ""))


class Credential(BaseModel):
    """
    The relay's record of a merchant's Square OAuth tokens.

    Attributes:
        merchant_id (str): Square merchant identifier, key of the credential store.
        access_token (str): Bearer token used for every Square call. Never empty.
        refresh_token (str | None): Token used to renew the access token, if any.
        expires_at (datetime | None): Expiry of the access token; None never expires.
        locations (list[Location]): Cached ACTIVE locations of the merchant.
    """

    merchant_id: str = Field(..., min_length=1)
    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime.datetime] = None
    locations: list[Location] = Field(default_factory=list)

    def needs_refresh(self, now: datetime.datetime, window: datetime.timedelta) -> bool:
        """Whether the access token is expired or expires within ``window``."""
        if self.expires_at is None:
            return False
        return now >= self.expires_at - window

    def is_expired(self, now: datetime.datetime) -> bool:
        """Whether the access token has passed its expiry."""
        return self.expires_at is not None and now > self.expires_at

    def has_location(self, location_id: str) -> bool:
        """Whether ``location_id`` is one of the cached locations."""
        return any(location.id == location_id for location in self.locations)


def active_locations(raw_locations: list[dict[str, Any]]) -> list[Location]:
    """Keep only the ACTIVE locations of a Square ListLocations response."""
    return [Location.from_square(loc) for loc in raw_locations if loc.get("status") == ACTIVE]


class BillingAddress(BaseModel):
    """Billing address fields forwarded on card creation."""

    postal_code: Optional[str] = None
    locality: Optional[str] = None


class CustomerSearchRequest(BaseModel):
    """Phone-only customer search."""

    phone: Optional[str] = None


class CustomerCreateRequest(BaseModel):
    """Customer creation request from the frontend."""

    givenName: Optional[str] = None
    familyName: Optional[str] = None
    emailAddress: Optional[str] = None
    phoneNumber: Optional[str] = None


class CustomerDeleteRequest(BaseModel):
    """Customer deletion request."""

    customerId: Optional[str] = None


class CardCreateRequest(BaseModel):
    """Card-on-file creation request. ``sourceId`` comes from Square's web SDK."""

    sourceId: Optional[str] = None
    customerId: Optional[str] = None
    cardholderName: Optional[str] = None
    billingAddress: Optional[BillingAddress] = None


class PaymentCreateRequest(BaseModel):
    """Payment creation request. Amount is in minor currency units."""

    amountCents: Any = None
    currency: str = "CAD"
    paymentToken: Optional[str] = None
    customerId: Optional[str] = None
    idempotencyKey: Optional[str] = None
    locationId: Optional[str] = None


class TokenUpdateRequest(BaseModel):
    """Token pushed by an external automation."""

    access_token: Optional[str] = None
    merchant_id: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[int | float | str] = None


class EnvUpdateRequest(BaseModel):
    """Token pushed together with the merchant's single location."""

    access_token: Optional[str] = None
    merchant_id: Optional[str] = None
    location_id: Optional[str] = None
