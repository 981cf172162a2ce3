"""
Centralized Configuration Management

This module provides centralized configuration management for the relay bot.
It loads and validates configuration from environment variables and .env files,
grouped into nested sections per collaborator.
"""

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class MatrixConfig(BaseSettings):
    """Matrix-specific configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MATRIX_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    homeserver: Optional[str] = None
    user_id: Optional[str] = None
    password: Optional[str] = None
    device_name: str = "relaybot"

    auto_join_invites: bool = True
    sync_timeout_ms: int = 30000

    # Needs python-olm (matrix-nio[e2e]); ignored with a warning when missing
    encryption_enabled: bool = True
    # Key store directory, defaults to matrix_store/ beside SESSION_DB_PATH
    store_path: Optional[str] = None


class GeminiConfig(BaseSettings):
    """Generative-text API configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_key: Optional[str] = None
    model: str = "gemini-2.0-flash"
    temperature: Optional[float] = None
    max_output_tokens: Optional[int] = None
    system_instruction: Optional[str] = None
    verify_on_startup: bool = True


class PairingConfig(BaseSettings):
    """First-time pairing (SSO login) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PAIRING_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    callback_host: str = "127.0.0.1"
    callback_port: int = 8765
    # Externally reachable base URL of the callback server, if not localhost
    public_url: Optional[str] = None
    refresh_interval: float = 20.0
    timeout: float = 300.0


class RelayConfig(BaseSettings):
    """Message relay behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    failure_policy: Literal["drop", "retry"] = "drop"
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0

    # 0 means one task per message with no upper bound
    max_concurrent_requests: int = 0


class AppConfig(BaseSettings):
    """
    Centralized application configuration with nested sections.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    session_db_path: str = "data/relaybot.db"
    log_level: str = "INFO"
    log_format: Literal["text", "json"] = "text"
    log_file: Optional[str] = None

    matrix: MatrixConfig = Field(default_factory=MatrixConfig)
    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    pairing: PairingConfig = Field(default_factory=PairingConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)

    @property
    def matrix_store_path(self) -> str:
        """Directory of nio's encryption key store."""
        if self.matrix.store_path:
            return self.matrix.store_path
        return str(Path(self.session_db_path).parent / "matrix_store")

    def validate_required(self) -> None:
        """Raise ConfigurationError if a setting needed at startup is missing."""
        missing = []
        if not self.matrix.homeserver:
            missing.append("MATRIX_HOMESERVER")
        if not self.gemini.api_key:
            missing.append("GEMINI_API_KEY")
        if missing:
            raise ConfigurationError(
                f"Required environment variables not set: {', '.join(missing)}"
            )


def create_settings() -> AppConfig:
    """Create settings instance from environment variables and .env files only."""
    return AppConfig()


settings = create_settings()
