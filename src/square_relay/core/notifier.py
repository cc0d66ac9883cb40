"""Best-effort status notifications to the automation that pushes tokens."""

import datetime
import functools
import logging
from typing import Any

import anyio
import requests

logger = logging.getLogger("notifier")


async def notify_token_update(
    callback_url: str, payload: dict[str, Any], timeout: float = 10.0
) -> bool:
    """
    Post a token update status to ``callback_url``.

    Failures are logged and reported through the return value; they never
    change the outcome of the token update itself.

    Returns:
        bool: True if the callback accepted the notification.
    """
    if not callback_url:
        return False

    body = {**payload, "timestamp": datetime.datetime.now(datetime.UTC).isoformat()}
    try:
        response = await anyio.to_thread.run_sync(
            functools.partial(requests.post, callback_url, json=body, timeout=timeout)
        )
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error("Failed to notify token callback: %s", type(e).__name__)
        return False

    logger.info("Token callback notified with status %s", payload.get("status"))
    return True
