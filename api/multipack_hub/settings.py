# multipack_hub/settings.py
"""
Multipack Hub Settings - PostgreSQL + Shopify Admin API.
"""
from __future__ import annotations
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices

class Settings(BaseSettings):
    # =========================================================================
    # Local storage (logs)
    # =========================================================================
    DATA_ROOT: Path = Field(
        default=(Path(__file__).resolve().parents[2] / "multipack-data"),
        validation_alias=AliasChoices("DATA_ROOT", "MULTIPACK_DATA_ROOT"),
    )
    LOG_LEVEL: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # =========================================================================
    # PostgreSQL Database
    # =========================================================================
    DB_HOST: str = Field(default="localhost", validation_alias="DB_HOST")
    DB_PORT: int = Field(default=5432, validation_alias="DB_PORT")
    DB_NAME: str = Field(default="multipack_hub", validation_alias="DB_NAME")
    DB_USER: str = Field(default="postgres", validation_alias="DB_USER")
    DB_PASSWORD: str = Field(default="postgres", validation_alias="DB_PASSWORD")

    # Connection pool settings
    DB_POOL_SIZE: int = Field(default=5, validation_alias="DB_POOL_SIZE")
    DB_MAX_OVERFLOW: int = Field(default=10, validation_alias="DB_MAX_OVERFLOW")
    DB_ECHO: bool = Field(default=False, validation_alias="DB_ECHO")

    # Full URL wins over the DB_* parts (e.g. sqlite+aiosqlite:// for local runs)
    DATABASE_URL: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")

    # =========================================================================
    # Shopify Admin API
    # =========================================================================
    SHOPIFY_API_VERSION: str = Field(default="2025-01", validation_alias="SHOPIFY_API_VERSION")
    SHOPIFY_API_SECRET: str = Field(
        default="",
        description="Webhook HMAC key; empty disables signature checks",
        validation_alias=AliasChoices("SHOPIFY_API_SECRET", "SHOPIFY_API_SECRET_KEY"),
    )
    SHOPIFY_HTTP_TIMEOUT: float = Field(default=30.0, validation_alias="SHOPIFY_HTTP_TIMEOUT")

    # =========================================================================
    # Operations
    # =========================================================================
    ENVIRONMENT: str = Field(default="development", validation_alias=AliasChoices("ENVIRONMENT", "NODE_ENV"))
    CRON_SECRET: str = Field(default="", validation_alias="CRON_SECRET")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

settings = Settings()
