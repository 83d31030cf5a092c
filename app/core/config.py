from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.exceptions import ConfigurationError

# An empty value (e.g. `MPESA_PASSKEY=` in .env) counts as missing.
MISSING_ERROR_TYPES = {"missing", "string_too_short"}

MPESA_BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore', str_strip_whitespace=True)

    DATABASE_URL: str
    LOG_LEVEL: str = "INFO"

    # M-Pesa Daraja settings
    MPESA_CONSUMER_KEY: str = Field(min_length=1)
    MPESA_CONSUMER_SECRET: str = Field(min_length=1)
    MPESA_SHORTCODE: str = Field(min_length=1)
    MPESA_PASSKEY: str = Field(min_length=1)
    MPESA_ENVIRONMENT: Literal["sandbox", "production"] = "sandbox"
    MPESA_BASE_URL: Optional[str] = None
    MPESA_CALLBACK_URL: Optional[str] = None  # derived from the request when unset
    MPESA_TRANSACTION_TYPE: str = "CustomerPayBillOnline"
    MPESA_ACCOUNT_REFERENCE: str = "Marketplace Subscription"
    MPESA_TIMEOUT_SECONDS: float = 30.0

    # Status polling
    PAYMENT_POLL_INTERVAL_SECONDS: float = 5.0
    PAYMENT_POLL_MAX_ATTEMPTS: int = 12
    STALE_PAYMENT_MINUTES: int = 5

    # Authentication settings
    SECRET_KEY: str = "secret-key"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # Redis settings for Celery
    REDIS_URL: str = "redis://localhost:6379/0"

    @property
    def mpesa_base_url(self) -> str:
        return (self.MPESA_BASE_URL or MPESA_BASE_URLS[self.MPESA_ENVIRONMENT]).rstrip("/")


def load_settings(env_file: Optional[str] = ".env") -> Settings:
    """
    Builds the settings, turning missing required variables into a ConfigurationError.
    """
    try:
        return Settings(_env_file=env_file)
    except PydanticValidationError as e:
        missing = [".".join(map(str, err["loc"])) for err in e.errors() if err["type"] in MISSING_ERROR_TYPES]
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}") from e
        raise ConfigurationError(f"Invalid configuration: {e}") from e


@lru_cache
def get_settings() -> Settings:
    return load_settings()
