"""
FastAPI dependencies for the Square relay.
"""

import logging
from functools import lru_cache

from fastapi import Header, Query

from .settings import SQUARE_BASE_URL_PRODUCTION, SQUARE_BASE_URL_SANDBOX, RelaySettings

# Setup logger
logger = logging.getLogger("dependencies")


@lru_cache()
def get_settings() -> RelaySettings:
    """
    Get the settings for the relay.
    """
    settings = RelaySettings()  # Reads relay and Square vars from .env
    logger.info("get_settings returning RelaySettings with environment: %s", settings.square_env)
    return settings


def get_square_base_url(settings: RelaySettings) -> str:
    """
    Returns the Square base URL depending on the environment.
    """
    base_urls = {
        "sandbox": SQUARE_BASE_URL_SANDBOX,
        "production": SQUARE_BASE_URL_PRODUCTION,
    }

    try:
        url = base_urls[settings.square_env]
        logger.info("Using Square base URL for environment %s: %s", settings.square_env, url)
        return url
    except KeyError as e:
        raise ValueError(f"Invalid environment: {settings.square_env}") from e


def merchant_id_selector(default_merchant_id: str):
    """
    Build a dependency that picks the merchant a request acts for.

    The ``x-merchant-id`` header wins over the ``merchant_id`` query parameter;
    without either the configured default merchant is used.
    """

    def select_merchant_id(
        x_merchant_id: str | None = Header(default=None),
        merchant_id: str | None = Query(default=None),
    ) -> str:
        return x_merchant_id or merchant_id or default_merchant_id

    return select_merchant_id
