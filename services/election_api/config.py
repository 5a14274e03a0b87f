"""Configuration management for the Election API service."""
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service configuration
    SERVICE_NAME: str = "election-api"
    API_VERSION: str = "v1"
    DEBUG: bool = False

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # PostgreSQL configuration
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "election_db"
    POSTGRES_USER: str = "election_user"
    POSTGRES_PASSWORD: str = "election_pass"

    # Connection pools
    POSTGRES_POOL_MIN_SIZE: int = 2
    POSTGRES_POOL_MAX_SIZE: int = 10

    # Frontend used for shareable and one-time voting links
    FRONTEND_URL: str = "http://localhost:5173"

    # API keys
    API_KEY_HASH_SECRET: str = "change-me"
    API_KEY_ENVIRONMENT: str = "live"
    API_KEY_RATE_LIMIT_PER_MINUTE: int = 60
    API_KEY_USAGE_MAX_DAYS: int = 90

    # IP throttling (slowapi); storage may be memory:// or redis://
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT: str = "30/minute"
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    # Publishing
    ALLOW_PAST_START_DATE: bool = False

    # One-time voting links
    ONE_TIME_LINK_DEFAULT_HOURS: int = 24

    # CORS settings
    CORS_ORIGINS: list = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list = ["*"]
    CORS_ALLOW_HEADERS: list = ["*"]

    # Lottery worker
    WORKER_INTERVAL_SECONDS: int = 60
    WORKER_METRICS_PORT: int = 9102
    RATE_LIMIT_RETENTION_MINUTES: int = 60

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def postgres_dsn(self) -> str:
        """Generate PostgreSQL connection string."""
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def api_prefix(self) -> str:
        """Versioned path prefix for every route."""
        return f"/api/{self.API_VERSION}"

    @property
    def redis_url(self) -> Optional[str]:
        """Redis URL backing the IP limiter, if one is configured."""
        if self.RATE_LIMIT_STORAGE_URI.startswith(("redis://", "rediss://")):
            return self.RATE_LIMIT_STORAGE_URI
        return None


settings = Settings()
