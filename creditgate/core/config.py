"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Public base URL of this service; verification pages live under it (/verify, /verify-credits).
    public_base_url: str = "http://localhost:8000"
    cors_origins: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # TELEGRAM BOT
    # ===========================================
    telegram_bot_token: str  # Required, no default
    # Used for deep links before the bot resolved its own username via getMe.
    telegram_bot_username: str = ""
    # Comma-separated Telegram ids that are always admins.
    admin_ids: str = ""
    # Membership lookups for force-subscribe fail closed after this many seconds.
    membership_check_timeout: float = 5.0
    # FSM state lifetime for the admin ingestion wizard (seconds).
    ingest_state_ttl: int = 1800

    # ===========================================
    # ENTITLEMENT POLICY
    # ===========================================
    access_validity_hours: int = 12
    credit_cycle_hours: int = 12
    credit_cycle_cap: int = 2
    credit_earn_amount: int = 2
    credit_spend_amount: int = 1
    verification_token_ttl_minutes: int = 60
    # /getlink: try to pay with a credit before falling back to verification.
    spend_credit_before_verification: bool = True

    # ===========================================
    # REFERRAL PROGRAM
    # ===========================================
    referral_award_credits: int = 1

    # ===========================================
    # LINK SHORTENER
    # ===========================================
    shortener_api_url: str = "https://api.gplinks.com/api"
    # Fallback when no active token is stored in the database.
    shortener_api_token: str = ""
    shortener_timeout: float = 10.0

    # ===========================================
    # ADMIN API
    # ===========================================
    # Admin routes reject every request while unset.
    admin_api_key: str | None = None

    # ===========================================
    # INTERNAL SERVICES
    # ===========================================
    http_client_timeout: float = 10.0

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("admin_ids")
    @classmethod
    def validate_admin_ids(cls, v: str) -> str:
        """Admin ids must be numeric Telegram ids."""
        for part in v.split(","):
            part = part.strip()
            if part and not part.lstrip("-").isdigit():
                raise ValueError(f"admin_ids contains a non-numeric id: {part!r}")
        return v

    @field_validator("credit_cycle_cap", "credit_earn_amount", "credit_spend_amount")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("credit amounts must be positive")
        return v

    @property
    def admin_ids_set(self) -> set[str]:
        """Get trusted admin Telegram ids as a set of strings."""
        return {i.strip() for i in self.admin_ids.split(",") if i.strip()}

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
