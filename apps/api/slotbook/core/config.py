"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.03.00"

    # Database
    DATABASE_URL: str = "sqlite:///./slotbook.db"

    # CORS
    CORS_ORIGINS: str = "http://localhost:5173"

    # Public web app (cancel links and "book again" links point here)
    WEB_ORIGIN: str = "http://localhost:5173"

    # Shop calendar
    SHOP_TIMEZONE: str = "America/Sao_Paulo"
    SLOT_MINUTES: int = 30
    DEFAULT_OPEN_TIME: str = "09:00"
    DEFAULT_CLOSE_TIME: str = "18:30"
    DEFAULT_CLOSED_WEEKDAY: int = 0  # 0 = Sunday, matches provider schedule keys

    # Phone normalization
    DEFAULT_COUNTRY_CODE: str = "55"

    # Cancel codes are stored as sha256(pepper:code)
    CANCEL_CODE_PEPPER: str = "change-this-in-production"

    # Admin console (shared key; identity issuance lives outside this service)
    ADMIN_API_KEY: str = ""

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""  # Secret for /internal/scheduled/* endpoints

    # Evolution API (WhatsApp gateway)
    EVOLUTION_API_BASE_URL: str = ""
    EVOLUTION_API_KEY: str = ""
    EVOLUTION_INSTANCE_NAME: str = "slotbook"
    GATEWAY_TIMEOUT_SECONDS: float = 12.0

    # Outbound queue / sweeper
    OUTBOUND_MAX_ATTEMPTS: int = 3
    SWEEP_BATCH_SIZE: int = 10
    SWEEP_SEND_DELAY_SECONDS: float = 0.5
    BROADCAST_SEND_DELAY_SECONDS: float = 1.0
    BROADCAST_MAX_ERRORS: int = 10

    # Worker
    WORKER_POLL_INTERVAL: int = 60

    # Catalog config cache
    CATALOG_CACHE_TTL_SECONDS: float = 30.0

    # Rate limiting (requests per minute per IP on public write endpoints)
    RATE_LIMIT_PUBLIC: int = 20

    # Monitoring
    SENTRY_DSN: str = ""

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def gateway_configured(self) -> bool:
        """True when the WhatsApp gateway has enough config to send."""
        return bool(self.EVOLUTION_API_BASE_URL and self.EVOLUTION_API_KEY)


settings = Settings()
