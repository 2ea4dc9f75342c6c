from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_env: str = "local"
    api_port: int = 8000
    log_level: str = "INFO"

    store_backend: Literal["sql", "memory"] = "sql"

    postgres_host: str = "127.0.0.1"
    postgres_port: int = 5432
    postgres_db: str = "chat_routing"
    postgres_user: str = "routing_user"
    postgres_password: str = "routing_password"
    database_url_override: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL_OVERRIDE", "DATABASE_URL"),
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_auto_create: bool = False
    store_read_retries: int = Field(default=2, ge=0, le=10)
    store_retry_delay_seconds: float = Field(default=0.2, ge=0)

    default_max_chats: int = Field(default=3, ge=1, le=50)
    auto_assign_attempts: int = Field(default=3, ge=1, le=10)
    request_expiry_minutes: int = Field(default=15, ge=1)
    request_sweep_interval_seconds: int = Field(default=30, ge=1)

    cors_allowed_origins_raw: str = "http://127.0.0.1:5173,http://localhost:5173"
    trusted_hosts_raw: str = "127.0.0.1,localhost"
    force_https: bool = False

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def cors_allowed_origins(self) -> list[str]:
        return [
            origin.strip()
            for origin in self.cors_allowed_origins_raw.split(",")
            if origin.strip()
        ]

    @property
    def trusted_hosts(self) -> list[str]:
        return [
            host.strip() for host in self.trusted_hosts_raw.split(",") if host.strip()
        ]

    def validate_security_settings(self) -> None:
        if self.app_env.lower() != "production":
            return

        if self.store_backend == "memory":
            raise ValueError(
                "STORE_BACKEND=memory is single-process only and not allowed in production."
            )
        if not self.cors_allowed_origins:
            raise ValueError(
                "CORS_ALLOWED_ORIGINS_RAW must define explicit origins in production."
            )
        if "*" in self.cors_allowed_origins:
            raise ValueError("Wildcard CORS origin is not allowed in production.")
        if not self.trusted_hosts:
            raise ValueError(
                "TRUSTED_HOSTS_RAW must define explicit hosts in production."
            )
        if "*" in self.trusted_hosts:
            raise ValueError("Wildcard trusted host is not allowed in production.")


@lru_cache
def get_settings() -> Settings:
    return Settings()
