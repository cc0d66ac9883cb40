"""
Settings for the Square relay.
"""

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

SQUARE_BASE_URL_SANDBOX = "https://connect.squareupsandbox.com"
SQUARE_BASE_URL_PRODUCTION = "https://connect.squareup.com"
SQUARE_OAUTH_REDIRECT_URI = "http://localhost:8080/oauth/callback"

load_dotenv()


class RelaySettings(BaseSettings):
    """
    Settings for the relay and its Square application.
    """

    square_app_id: str = ""
    square_app_secret: str = ""
    square_env: str = "sandbox"
    square_redirect_url: str = SQUARE_OAUTH_REDIRECT_URI
    square_webhook_signature_key: str = ""
    frontend_url: str = "https://pay.yourdomain.com"
    token_callback_url: str = ""
    app_env: str = "development"

    # Merchant used when a request names none
    default_merchant_id: str = ""
    default_access_token: str = ""
    default_location_id: str = ""
    default_location_name: str = "Main Location"

    protection_bypass_token: str = ""
    provider_timeout_seconds: float = 30.0
    refresh_window_seconds: int = 300
    rate_limit_enabled: bool = True
    allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:8080"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        """Whether the relay itself runs in production."""
        return self.app_env == "production"

    @property
    def is_square_production(self) -> bool:
        """Whether Square calls go to the production environment."""
        return self.square_env == "production"

    @property
    def cors_origins(self) -> list[str]:
        """Origins allowed to call the API from a browser."""
        if self.is_production:
            return [self.frontend_url]
        return self.allowed_origins
