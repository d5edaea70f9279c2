"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str

    # Session Token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Web app origin (inline image proxy URLs are issued under this origin)
    WEBAPP_URL: str = "http://localhost:3000"

    # Attachment storage service
    STORAGE_URL: str = "http://localhost:3200"
    STORAGE_KEY: str = ""

    # Mail bridge (outbound email dispatch)
    MAILBRIDGE_URL: str = "http://localhost:3100"
    MAILBRIDGE_KEY: str = ""

    # Timeout applied to storage and mail bridge calls
    EXTERNAL_HTTP_TIMEOUT_SECONDS: float = 10.0

    # Max concurrent realtime deliveries per fan-out
    REALTIME_FANOUT_LIMIT: int = 8

    # Org shortcode cache entry lifetime
    ORG_CACHE_TTL_SECONDS: int = 300

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Rate Limiting (requests per minute)
    RATE_LIMIT_API: int = 60

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def cookie_secure(self) -> bool:
        """Secure cookies only in production."""
        return self.ENV != "dev"


settings = Settings()
