from decimal import Decimal

from pydantic import field_validator
from pydantic_settings import BaseSettings


def _strip_inline_comment(value: str) -> str:
    """Strip trailing inline comments that python-dotenv keeps for unquoted values."""
    idx = value.find(" #")
    if idx != -1:
        value = value[:idx]
    return value.strip()


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./booking_pipeline.db"
    use_real_apis: bool = False
    log_level: str = "INFO"

    # Offers provider
    duffel_api_key: str = ""
    duffel_base_url: str = "https://api.duffel.com"
    duffel_version: str = "v2"

    # Payment gateway
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    checkout_success_url: str = "http://localhost:3000/booking-success"
    checkout_cancel_url: str = "http://localhost:3000/passenger-details?canceled=true"

    @field_validator("duffel_api_key", "stripe_secret_key", "stripe_webhook_secret", mode="before")
    @classmethod
    def clean_secret(cls, v: str) -> str:
        if isinstance(v, str):
            return _strip_inline_comment(v)
        return v

    # Price reconciliation
    reconcile_timeout_seconds: float = 10.0
    price_tolerance: Decimal = Decimal("0.01")

    # Confirmation polling
    poll_interval_seconds: float = 1.0
    poll_max_attempts: int = 20
    poll_backoff: float = 1.0

    # Passenger validation
    passport_min_validity_months: int = 6
    strict_passport_validity: bool = False
    max_passengers: int = 9

    # Display-only fare split when the provider omits itemized amounts
    estimated_tax_ratio: Decimal = Decimal("0.30")

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
