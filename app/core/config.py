from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Slotbook API"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "bookings@slotbook.local"

    SENDGRID_API_KEY: str = ""
    SENDGRID_FROM_EMAIL: str = ""

    CLIENT_BASE_URL: str = "http://localhost:5173"  # checkout success/cancel pages live here

    # Payments
    PAYMENTS_ENABLED: bool = True  # when False every booking is confirmed immediately
    PLATFORM_FEE_PERCENTAGE: Decimal = Decimal("5.0")

    # Stripe Checkout
    STRIPE_SECRET_KEY: str = ""
    STRIPE_PUBLISHABLE_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_WEBHOOK_VERIFY: bool = True
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    STRIPE_SANDBOX: bool = False  # If True, skip the real Stripe call and return a fake checkout session
    STRIPE_TIMEOUT_SECONDS: int = 10
    STRIPE_MAX_NETWORK_RETRIES: int = 1

    # Admission: also reject requests overlapping PENDING_PAYMENT/CONFIRMED bookings
    BOOKING_PREVENT_OVERLAP: bool = True
    # Admission: reject requests outside the tenant's business hours (tenants without a schedule stay open)
    BOOKING_ENFORCE_BUSINESS_HOURS: bool = False

    @field_validator("PLATFORM_FEE_PERCENTAGE", mode="after")
    @classmethod
    def check_fee_percentage(cls, v: Decimal) -> Decimal:
        if v < 0 or v > 100:
            raise ValueError("PLATFORM_FEE_PERCENTAGE must be between 0 and 100")
        return v


settings = Settings()
