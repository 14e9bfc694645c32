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
    DATABASE_URL: str = "sqlite:///./messaging.db"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Messaging limits
    MESSAGE_MAX_LENGTH: int = 4000
    MESSAGE_EDIT_WINDOW_SECONDS: int = 15 * 60
    MESSAGE_PAGE_SIZE: int = 50
    MESSAGE_PAGE_CAP: int = 100
    MESSAGE_MAX_THREAD_DEPTH: int = 50
    MESSAGE_RATE_LIMIT_PER_MINUTE: int = 20

    # Compliance
    PURGE_REQUIRED_APPROVALS: int = 2

    # Rate Limiting (requests per minute)
    RATE_LIMIT_API: int = 60
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
