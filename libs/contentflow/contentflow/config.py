"""Configuration management using pydantic-settings."""

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from contentflow.exceptions import ConfigurationError

_ENV_FILES = (".env", "../.env", "../../.env")

_REPO_ROOT = Path(__file__).resolve().parents[3]


def _resolve_repo_path(value: str) -> str:
    raw = str(value or "").strip()
    if not raw:
        return raw
    p = Path(raw)
    if p.is_absolute():
        return str(p)
    return str((_REPO_ROOT / p).resolve())


class DatabaseSettings(BaseSettings):
    """Connection pool configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=_ENV_FILES,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    pool_min_size: int = Field(default=2, ge=0)
    pool_max_size: int = Field(default=10, ge=1)
    pool_timeout_s: float = Field(
        default=30.0,
        gt=0,
        description="Seconds to wait for a free connection before failing.",
    )

    @model_validator(mode="after")
    def _validate_pool_sizes(self) -> "DatabaseSettings":
        if int(self.pool_max_size) < int(self.pool_min_size):
            raise ConfigurationError("DB_POOL_MAX_SIZE must be >= DB_POOL_MIN_SIZE")
        return self


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=_ENV_FILES,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt: str = "%Y-%m-%d %H:%M:%S"
    console: bool = True
    file: str | None = None
    max_bytes: int = Field(default=10 * 1024 * 1024, ge=0)
    backup_count: int = Field(default=5, ge=0)
    # psycopg and psycopg.pool log connection and pool events here.
    driver_level: str = "WARNING"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=_ENV_FILES, env_file_encoding="utf-8", extra="ignore"
    )

    log_dir: str = "./logs"

    # Database
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_db: str = "contentflow"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    database_url_override: str | None = Field(
        default=None,
        description="Full conninfo; takes precedence over the postgres_* fields.",
    )

    db: DatabaseSettings = DatabaseSettings()

    # Logging
    logging: LoggingSettings = LoggingSettings()

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        # Relative paths are anchored at the repo root, not the current directory.
        self.log_dir = _resolve_repo_path(self.log_dir)
        return self

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return str(self.database_url_override)
        return f"postgresql://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
