"""Application configuration"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    API_V1_PREFIX: str = "/api"
    PROJECT_NAME: str = "Agency CRM API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Security
    # WHY: Tokens are issued by the identity service; this API only verifies them
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_MINUTES: int = 1440  # 24 hours

    # Database
    DATABASE_URL: str

    # Billing
    DEFAULT_CURRENCY: str = "USD"
    INVOICE_DEFAULT_DUE_DAYS: int = 30
    INVOICE_NUMBER_PREFIX: str = "INV"

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    RECURRING_CHECK_INTERVAL_SECONDS: int = 3600  # hourly
    # WHY: Bounds how many missed occurrences a single run will back-fill
    # for one template after a long outage
    RECURRING_MAX_CATCH_UP: int = 12

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    @property
    def async_database_url(self) -> str:
        """Get async database URL"""
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")


settings = Settings()
