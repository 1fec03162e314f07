# stock_hub/settings.py
"""
Stock Hub Settings - packaging stations + bundle-aware stock.
"""
from __future__ import annotations
from pathlib import Path
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices

class Settings(BaseSettings):
    # =========================================================================
    # File Storage (logs)
    # =========================================================================
    STOCK_DATA_ROOT: Path = Field(
        default=(Path(__file__).resolve().parents[2] / "stock-data"),
        validation_alias=AliasChoices("STOCK_DATA_ROOT", "sh_data_root"),
    )
    LOG_LEVEL: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # =========================================================================
    # PostgreSQL Database
    # =========================================================================
    DB_HOST: str = Field(default="localhost", validation_alias="DB_HOST")
    DB_PORT: int = Field(default=5432, validation_alias="DB_PORT")
    DB_NAME: str = Field(default="stock_hub", validation_alias="DB_NAME")
    DB_USER: str = Field(default="postgres", validation_alias="DB_USER")
    DB_PASSWORD: str = Field(default="postgres", validation_alias="DB_PASSWORD")

    # Connection pool settings
    DB_POOL_SIZE: int = Field(default=5, validation_alias="DB_POOL_SIZE")
    DB_MAX_OVERFLOW: int = Field(default=10, validation_alias="DB_MAX_OVERFLOW")
    DB_ECHO: bool = Field(default=False, validation_alias="DB_ECHO")

    # Full URL override, e.g. sqlite+aiosqlite:///./stock.db
    DATABASE_URL: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "sh_database_url"),
    )

    # =========================================================================
    # Stock engine
    # =========================================================================
    CATALOG_BACKEND: Literal["sql", "memory"] = Field(
        default="sql",
        description="Where products, bundle edges and packaging records live",
    )
    WRITE_CONCURRENCY: int = Field(
        default=20,
        ge=1,
        description="Max stock writes in flight for one commit/restore batch",
    )
    AUDIT_LOG_ENABLED: bool = Field(default=True, validation_alias="AUDIT_LOG_ENABLED")
    SESSION_IDLE_MINUTES: int = Field(
        default=240,
        ge=0,
        description="Open packaging sessions idle this long are abandoned; 0 keeps them",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

settings = Settings()
