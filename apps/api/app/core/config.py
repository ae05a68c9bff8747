"""Application configuration with environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CRM_CUSTOM_FIELD_IDS: dict[str, str] = {
    "lead_source_id": "lead_source_id",
    "lead_type": "lead_type",
    "property_address": "property_address",
    "property_city": "property_city",
    "property_state": "property_state",
    "property_zip": "property_zip",
    "estimated_value": "estimated_value",
    "cash_offer": "cash_offer",
    "ai_state": "ai_state",
    "sms_touch_count": "sms_touch_count",
    "email_touch_count": "email_touch_count",
    "last_touch_date": "last_touch_date",
    "call_outcome": "call_outcome",
    "opportunity_disposition": "disposition",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str = "sqlite+pysqlite:///./outreach.db"

    # Redis (inbound dedup store); empty disables Redis and uses the DB fallback
    REDIS_URL: str = ""

    # Error tracking
    SENTRY_DSN: str = ""

    # Shared secrets for scheduler and CRM webhooks
    INTERNAL_SECRET: str = ""
    WEBHOOK_SECRET: str = ""

    # GoHighLevel CRM
    CRM_BASE_URL: str = "https://services.leadconnectorhq.com"
    CRM_API_VERSION: str = "2021-07-28"
    CRM_CLIENT_ID: str = ""
    CRM_CLIENT_SECRET: str = ""
    CRM_TIMEOUT_SECONDS: float = 10.0
    CRM_TOKEN_ENCRYPTION_KEY: str = ""  # Fernet key for stored OAuth tokens
    CRM_TOKEN_REFRESH_MARGIN_SECONDS: int = 300
    CRM_CALENDAR_ID: str = ""
    CRM_RETRY_ATTEMPTS: int = 3
    CRM_RETRY_BASE_DELAY_SECONDS: float = 1.0
    # Logical field name -> vendor custom field id
    CRM_CUSTOM_FIELD_IDS: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_CRM_CUSTOM_FIELD_IDS)
    )

    # Business hours
    BUSINESS_TIMEZONE: str = "America/New_York"

    # Cadence
    SMS_MAX_TOUCHES: int = 7
    EMAIL_MAX_TOUCHES: int = 7
    DIAL_MAX_TOUCHES: int = 8
    CADENCE_SPACING_ENABLED: bool = False
    CADENCE_MIN_BUSINESS_DAYS: int = 5

    # Batching and compliance pacing
    SMS_BATCH_LIMIT: int = 10
    EMAIL_BATCH_LIMIT: int = 20
    SMS_SEND_DELAY_SECONDS: float = 2.0
    EMAIL_SEND_DELAY_SECONDS: float = 2.0
    DISPOSITION_SPACING_SECONDS: float = 2.0

    # Rate limit caps per CRM location
    SMS_HOURLY_CAP: int = 12
    SMS_DAILY_CAP: int = 200
    EMAIL_HOURLY_CAP: int = 12
    EMAIL_DAILY_CAP: int = 200
    CRM_WRITE_HOURLY_CAP: int = 100
    CRM_WRITE_DAILY_CAP: int = 1000

    # Inbound message dedup
    INBOUND_DEDUP_TTL_SECONDS: int = 7 * 24 * 3600

    # AI generation
    AI_PROVIDER: str = "openai"
    AI_API_KEY: str = ""
    AI_MODEL: str = "gpt-4o-mini"
    AI_BASE_URL: str = "https://api.openai.com/v1"
    AI_TIMEOUT_SECONDS: float = 30.0

    # Conversation tool collaborators
    GOOGLE_MAPS_API_KEY: str = ""
    BRIDGE_API_KEY: str = ""
    BRIDGE_BASE_URL: str = "https://api.bridgedataoutput.com/api/v2"
    KVCORE_API_KEY: str = ""
    KVCORE_BASE_URL: str = "https://api.kvcore.com/v2"
    CASH_OFFER_RATIO: float = 0.70

    # Request rate limits (slowapi), per client IP
    RATE_LIMIT_API: int = 120
    RATE_LIMIT_WEBHOOK: str = "300/minute"

    # Worker
    WORKER_POLL_INTERVAL_SECONDS: int = 10
    WORKER_BATCH_SIZE: int = 10

    @property
    def is_dev(self) -> bool:
        return self.ENV == "dev"


settings = Settings()
