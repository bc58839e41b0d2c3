from functools import lru_cache
from pathlib import Path
from typing import Annotated, List, Literal

from pydantic import AliasChoices, AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _env(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Parley API", description="Human readable service name")
    environment: str = Field(default="development", description="Deployment environment name")
    debug: bool = Field(default=False, description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1",
        ],
        description="List of allowed CORS origins",
    )

    storage_backend: Literal["sql", "memory"] = Field(
        default="sql",
        description="Repository implementation selected at startup.",
    )
    database_url_override: str | None = Field(
        default=None,
        validation_alias=_env("DATABASE_URL", "database_url_override"),
        description="Full SQLAlchemy URL; takes precedence over the DB_* fields.",
    )
    database_user: str = Field(default="parley", validation_alias=_env("DB_USER", "database_user"))
    database_password: str = Field(default="parley", validation_alias=_env("DB_PASSWORD", "database_password"))
    database_host: str = Field(default="db", validation_alias=_env("DB_HOST", "database_host"))
    database_port: int = Field(default=3306, validation_alias=_env("DB_PORT", "database_port"))
    database_name: str = Field(default="parley", validation_alias=_env("DB_NAME", "database_name"))

    jwt_secret_key: str = Field(default="changeme")
    jwt_algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=60 * 24)

    chat_message_max_length: int = Field(default=2000)
    realtime_close_displaced_connections: bool = Field(
        default=True,
        description="Close the previous live connection when a user authenticates again elsewhere.",
    )

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"mysql+pymysql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):  # type: ignore[override]
        if v in (None, "", Ellipsis):
            return v
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
