"""
Configuration management for Potion.

Settings are read from environment variables and an optional .env file. Every
field has a local-first default, so a bare checkout runs without any
configuration.
"""
from pydantic import ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}


class Settings(BaseSettings):
    """Loads and validates all application settings from the environment."""

    model_config: SettingsConfigDict = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="POTION_",
        extra="ignore",
    )
    # --- Storage ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/potion.db"
    SQL_ECHO: bool = False
    # --- Workspace defaults ---
    DEFAULT_WORKSPACE_ID: str = "default-workspace"
    DEFAULT_WORKSPACE_NAME: str = "My Workspace"
    # --- Migration backups ---
    BACKUP_DIR: str = "./data/backups"
    BACKUP_KEEP: int = 3
    # --- General ---
    LOG_LEVEL: str = "INFO"

    @model_validator(mode="after")
    def _validate_settings(self) -> "Settings":
        """
        Performs cross-field validation.
        Raises:
            ValueError: When a setting is missing or invalid.
        """
        try:
            url = make_url(self.DATABASE_URL)
        except ArgumentError as error:
            raise ValueError(f"DATABASE_URL is not a valid SQLAlchemy URL: {error}") from error
        if "+" not in url.drivername:
            raise ValueError("DATABASE_URL must name an async driver, e.g. sqlite+aiosqlite.")
        if not self.DEFAULT_WORKSPACE_ID.strip():
            raise ValueError("DEFAULT_WORKSPACE_ID must be a non-empty string.")
        if not self.DEFAULT_WORKSPACE_NAME.strip():
            raise ValueError("DEFAULT_WORKSPACE_NAME must be a non-empty string.")
        if not self.BACKUP_DIR.strip():
            raise ValueError("BACKUP_DIR must be a non-empty string.")
        if self.BACKUP_KEEP < 1:
            raise ValueError("BACKUP_KEEP must be at least 1.")
        log_level = self.LOG_LEVEL.strip().upper()
        if log_level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"LOG_LEVEL must be one of {sorted(VALID_LOG_LEVELS)}, got '{self.LOG_LEVEL}'."
            )
        return self


try:
    settings = Settings()
except ValidationError as error:
    raise RuntimeError(f"Invalid application configuration: {error}") from error
