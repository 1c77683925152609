from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./refurbline.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes
    SQLITE_BUSY_TIMEOUT_SECONDS: float = 30.0  # Wait for the write lock instead of failing

    # App Settings
    APP_NAME: str = "Refurbline Lifecycle Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Job lifecycle policy
    DEFAULT_MAX_ATTEMPTS: int = 2  # Final-test attempts before disposition
    AUTO_DISPOSE_ON_ATTEMPT_LIMIT: bool = True  # Route to FAILED_DISPOSITION on the last failure
    STALE_STATE_MAX_RETRIES: int = 3  # Re-read-and-retry bound for optimistic conflicts
    OVERRIDE_ROLES: list[str] = ["SUPERVISOR", "ADMIN"]  # Roles allowed to force a stage

    # Certification
    CERTIFICATION_ID_PREFIX: str = "CRT"
    CERTIFICATION_VALIDITY_DAYS: int = 90

    @field_validator('CORS_ORIGINS', 'OVERRIDE_ROLES', mode='before')
    @classmethod
    def parse_string_list(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [item.strip() for item in v.split(',') if item.strip()]
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return self.CORS_ORIGINS

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
