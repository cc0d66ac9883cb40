"""Per-client rate limits."""

from typing import Callable

from slowapi import Limiter
from slowapi.util import get_remote_address

DEFAULT_LIMIT = "100/15minutes"
# Card and payment creation, on top of the default limit
SENSITIVE_LIMIT = "20/15minutes"

# Bucket shared by every route for the default limit
GLOBAL_SCOPE = "global"


def create_limiter(enabled: bool = True) -> Limiter:
    """Create the limiter of one application. Counters live in its own memory storage."""
    return Limiter(key_func=get_remote_address, enabled=enabled)


def default_limit(limiter: Limiter) -> Callable:
    """
    Decorator counting a route against the per-client default limit.

    Decorated endpoints must take a ``request: Request`` argument.
    """
    return limiter.shared_limit(DEFAULT_LIMIT, scope=GLOBAL_SCOPE)


def sensitive_limit(limiter: Limiter) -> Callable:
    """Decorator for the stricter per-route limit of card and payment creation."""
    return limiter.limit(SENSITIVE_LIMIT)
