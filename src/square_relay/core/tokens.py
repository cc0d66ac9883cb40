"""
Token lifecycle management.

``TokenManager.resolve`` turns a merchant id into a credential that is safe
to use right now, renewing it through Square's refresh grant when it is
about to expire and evicting it when renewal is impossible.
"""

import datetime
import logging
from typing import Any, Callable

import anyio

from square_relay.core.errors import Unauthenticated
from square_relay.core.gateway import ProviderGateway
from square_relay.core.models import Credential
from square_relay.core.store import CredentialStore
from square_relay.core.validation import mask_identifier

logger = logging.getLogger("tokens")

DEFAULT_REFRESH_WINDOW = datetime.timedelta(minutes=5)


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def _from_epoch(seconds: int | float) -> datetime.datetime:
    try:
        return datetime.datetime.fromtimestamp(seconds, tz=datetime.UTC)
    except (OverflowError, OSError) as e:
        raise ValueError(f"Expiry out of range: {seconds!r}") from e


def parse_expires_at(
    value: Any, now: datetime.datetime | None = None
) -> datetime.datetime | None:
    """
    Parse an access token expiry.

    Square returns ISO 8601 strings such as ``2024-01-15T12:00:00Z``; token
    pushes may send epoch seconds instead. Naive datetimes are taken as UTC.

    Returns:
        datetime | None: Aware expiry, or None when ``value`` is empty.

    Raises:
        ValueError: If ``value`` cannot be read as a timestamp.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid expiry: {value!r}")
    if isinstance(value, (int, float)):
        return _from_epoch(value)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return _from_epoch(int(text))
        if text.upper().endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=datetime.UTC)
        return parsed.astimezone(datetime.UTC)
    raise ValueError(f"Invalid expiry: {value!r}")


class TokenManager:
    """Resolves merchant ids to valid credentials, refreshing them when needed."""

    def __init__(
        self,
        store: CredentialStore,
        gateway: ProviderGateway,
        refresh_window: datetime.timedelta = DEFAULT_REFRESH_WINDOW,
        clock: Callable[[], datetime.datetime] = utc_now,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.refresh_window = refresh_window
        self._clock = clock
        self._refresh_locks: dict[str, anyio.Lock] = {}

    async def resolve(self, merchant_id: str | None) -> Credential:
        """
        Return a currently valid credential for ``merchant_id``.

        Concurrent callers for the same merchant share one refresh: the first
        one refreshes while the others wait for it and then reuse its result.

        Raises:
            Unauthenticated: If the merchant is not connected, or its token
                expired and could not be refreshed.
        """
        if not merchant_id:
            raise Unauthenticated()

        credential = self.store.get(merchant_id)
        if credential is None:
            raise Unauthenticated()

        if not credential.needs_refresh(self._clock(), self.refresh_window):
            return credential

        lock = self._refresh_locks.setdefault(merchant_id, anyio.Lock())
        async with lock:
            # Another request may have refreshed or evicted it while we waited
            current = self.store.get(merchant_id)
            if current is None:
                raise Unauthenticated()
            if not current.needs_refresh(self._clock(), self.refresh_window):
                return current
            return await self._refresh(current)

    async def _refresh(self, credential: Credential) -> Credential:
        merchant_id = credential.merchant_id
        logger.info("Token needs refresh for merchant: %s", mask_identifier(merchant_id))

        if not credential.refresh_token:
            logger.warning(
                "No refresh token for merchant %s, evicting credential",
                mask_identifier(merchant_id),
            )
            self._evict(merchant_id)
            raise Unauthenticated()

        try:
            data = await self.gateway.obtain_token(
                {"grant_type": "refresh_token", "refresh_token": credential.refresh_token}
            )
            access_token = data.get("access_token")
            if not access_token:
                raise ValueError("Token refresh response has no access token")

            locations = await self.gateway.list_active_locations(access_token)
            refreshed = Credential(
                merchant_id=merchant_id,
                access_token=access_token,
                refresh_token=data.get("refresh_token") or credential.refresh_token,
                expires_at=parse_expires_at(data.get("expires_at")),
                locations=locations,
            )
        except Exception as e:
            logger.error(
                "Failed to refresh token for merchant %s: %s",
                mask_identifier(merchant_id),
                type(e).__name__,
            )
            self._evict(merchant_id)
            raise Unauthenticated() from e

        self.store.put(merchant_id, refreshed)
        logger.info("Token refreshed successfully for merchant: %s", mask_identifier(merchant_id))
        return refreshed

    def _evict(self, merchant_id: str) -> None:
        """Drop the credential and its refresh lock. Waiters on the lock see no credential."""
        self.store.delete(merchant_id)
        self._refresh_locks.pop(merchant_id, None)

    def token_status(self, merchant_id: str) -> dict[str, Any]:
        """Report whether a merchant is connected and its token still valid."""
        credential = self.store.get(merchant_id)
        if credential is None:
            return {
                "status": "not_connected",
                "merchant_id": merchant_id,
                "message": "No access token found for this merchant",
            }

        expired = credential.is_expired(self._clock())
        return {
            "status": "expired" if expired else "active",
            "merchant_id": merchant_id,
            "expires_at": credential.expires_at.isoformat() if credential.expires_at else None,
            "locations_count": len(credential.locations),
            "message": "Access token has expired" if expired else "Access token is active",
        }
