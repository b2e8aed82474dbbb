from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
import json
from uuid import UUID


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # JWT Settings (tokens are issued by the identity provider)
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # App Settings
    APP_NAME: str = "Inventory Count Audit"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Quantities are stored as Numeric(18, 4); every input is quantized to this scale
    QUANTITY_DECIMAL_PLACES: int = 4

    # Reconciliation locking
    RECONCILE_LOCK_RETRY_DELAY_MS: int = 250  # Wait before the single retry on a busy reference
    RECONCILE_CLAIM_TTL_SECONDS: int = 30  # Claim rows older than this are considered abandoned

    # Reconciliation triggers
    AUTO_RECONCILE_ON_COUNT: bool = True  # Schedule reconciliation after each count save
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "America/Bogota"
    RECONCILE_SWEEP_INTERVAL_MINUTES: int = 10
    RECONCILE_SWEEP_BATCH_SIZE: int = 200
    # Recorded as admin_id on outcomes produced by the sweep
    SYSTEM_USER_ID: UUID = UUID(int=0)

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return list(self.CORS_ORIGINS)

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
