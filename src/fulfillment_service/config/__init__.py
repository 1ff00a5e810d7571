"""Application configuration loading helpers."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal

from pydantic import BaseModel, Field, PrivateAttr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    url: str
    pool_size: int = 10
    echo: bool = False


class AllocationSettings(BaseModel):
    max_attempts: int = 5
    row_locks: bool = True
    pick_task_prefix: str = "PICK"
    shipment_prefix: str = "SHP"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="Fulfillment Service", alias="APP_NAME")
    environment: Literal["development", "staging", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"],
        alias="CORS_ORIGINS",
    )

    database_url: str = Field(alias="DATABASE_URL")
    database_pool_size: int = Field(default=10, alias="DATABASE_POOL_SIZE")
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    allocation_max_attempts: int = Field(default=5, ge=1, alias="ALLOCATION_MAX_ATTEMPTS")
    allocation_row_locks: bool = Field(default=True, alias="ALLOCATION_ROW_LOCKS")
    pick_task_prefix: str = Field(default="PICK", alias="PICK_TASK_PREFIX")
    shipment_prefix: str = Field(default="SHP", alias="SHIPMENT_PREFIX")

    _database: DatabaseSettings = PrivateAttr()
    _allocation: AllocationSettings = PrivateAttr()

    def model_post_init(self, __context: Any) -> None:  # pragma: no cover - simple data wiring
        object.__setattr__(
            self,
            "_database",
            DatabaseSettings(
                url=self.database_url,
                pool_size=self.database_pool_size,
                echo=self.database_echo,
            ),
        )
        object.__setattr__(
            self,
            "_allocation",
            AllocationSettings(
                max_attempts=self.allocation_max_attempts,
                row_locks=self.allocation_row_locks,
                pick_task_prefix=self.pick_task_prefix,
                shipment_prefix=self.shipment_prefix,
            ),
        )

    @property
    def database(self) -> DatabaseSettings:
        return self._database

    @property
    def allocation(self) -> AllocationSettings:
        return self._allocation


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


__all__ = ["Settings", "get_settings", "DatabaseSettings", "AllocationSettings"]
