from pydantic import Field
from pydantic_settings import BaseSettings

from domain.enums import ShareType


class Settings(BaseSettings):
    # Booking core
    reservation_pending_ttl_min: int = Field(default=10, ge=0)
    deposit_auth_days: int = Field(default=7, ge=0)
    payment_timeout_seconds: float = Field(default=10.0, gt=0)
    default_share: ShareType = ShareType.PLATFORM_70

    # Auth
    secret_key: str = "change-me-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30
    admin_username: str = "admin"
    admin_password: str = "admin123"

    # Shared secret expected from the cron trigger
    cron_secret: str = "change-me-cron"

    # HMAC key shared with the payment provider for webhook signatures
    webhook_secret: str = "change-me-webhook"

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
