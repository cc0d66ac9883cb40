"""Square webhook verification and dispatch."""

import base64
import hashlib
import hmac
import logging
from typing import Any, Callable

logger = logging.getLogger("webhooks")

SIGNATURE_HEADER = "x-square-hmacsha256-signature"

IGNORED = "ignored"


def compute_signature(signature_key: str, body: bytes) -> str:
    """Base64 HMAC-SHA256 of the raw request body."""
    digest = hmac.new(signature_key.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(body: bytes, signature: str | None, signature_key: str | None) -> bool:
    """Whether ``signature`` was produced from ``body`` with ``signature_key``."""
    if not signature or not signature_key:
        return False
    expected = compute_signature(signature_key, body)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))


def _object_id(event: dict[str, Any], kind: str) -> str | None:
    node: Any = event
    for key in ("data", "object", kind):
        node = node.get(key) if isinstance(node, dict) else None
    return node.get("id") if isinstance(node, dict) else None


def handle_payment_updated(event: dict[str, Any]) -> None:
    logger.info("Payment updated: %s", _object_id(event, "payment"))


def handle_refund_updated(event: dict[str, Any]) -> None:
    logger.info("Refund updated: %s", _object_id(event, "refund"))


EVENT_HANDLERS: dict[str, Callable[[dict[str, Any]], None]] = {
    "payment.updated": handle_payment_updated,
    "refund.updated": handle_refund_updated,
}


def dispatch_event(event: dict[str, Any]) -> str:
    """
    Route a verified event to its handler.

    Returns:
        str: The event type when it was handled, ``ignored`` otherwise.
    """
    event_type = event.get("type")
    logger.info("Webhook received: %s", event_type)

    handler = EVENT_HANDLERS.get(event_type) if isinstance(event_type, str) else None
    if handler is None:
        logger.info("Unhandled webhook event: %s", event_type)
        return IGNORED

    handler(event)
    return str(event_type)
