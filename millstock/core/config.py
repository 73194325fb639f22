"""
Mill Stock Configuration
Core settings for the rice mill stock ledger
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
from pathlib import Path


class Settings(BaseSettings):
    """Application settings"""

    # Application Info
    APP_NAME: str = "Mill Stock Ledger API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database Configuration
    DATABASE_URL: str = "postgresql://millstock@localhost:5432/millstock_db"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20
    STATEMENT_TIMEOUT_MS: int = 30000  # Applied per connection on PostgreSQL

    # Projection cache
    CACHE_ENABLED: bool = True
    CACHE_BACKEND: str = "memory"  # memory | redis
    REDIS_URL: Optional[str] = None
    CACHE_TTL_SECONDS: int = 30
    CACHE_MAX_ITEMS: int = 10000
    CACHE_KEY_PREFIX: str = "millstock"

    # CORS
    ALLOWED_HOSTS: list = ["*"]
    CORS_ORIGINS: list = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = False
    LOG_DIR: Path = Path("logs")
    LOG_FILE: str = "app.log"
    ERROR_LOG_FILE: str = "error.log"

    # Business rules
    RATE_UNIT_KG: int = 75  # Rates are quoted per 75 kg bag
    PADDY_BAGS_PER_QUINTAL: int = 3
    RATE_DECIMAL_PLACES: int = 2
    WEIGHT_DECIMAL_PLACES: int = 2
    EXEMPT_BYPRODUCTS: List[str] = ["BRAN", "FARM BRAN", "FARAM", "FARM"]

    # API Configuration
    API_V1_STR: str = "/api/v1"
    DOCS_URL: str = "/docs"
    REDOC_URL: str = "/redoc"
    OPENAPI_URL: str = "/openapi.json"

    @field_validator("CACHE_BACKEND")
    @classmethod
    def check_cache_backend(cls, v: str) -> str:
        """Only the local memory and redis backends are supported"""
        v = v.lower()
        if v not in ("memory", "redis"):
            raise ValueError(f"Unsupported cache backend: {v}")
        return v

    @field_validator("EXEMPT_BYPRODUCTS")
    @classmethod
    def normalize_byproducts(cls, v: List[str]) -> List[str]:
        """Store exempt product names in comparison form"""
        return [name.strip().upper() for name in v]

    @field_validator("PADDY_BAGS_PER_QUINTAL", "RATE_UNIT_KG")
    @classmethod
    def check_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


# Global settings instance
settings = Settings()
