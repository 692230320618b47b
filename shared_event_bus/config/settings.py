"""
PURPOSE: Configuration settings for the shared event bus.

This module uses Pydantic Settings to manage configuration from environment
variables and .env files. All settings are validated and typed.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import DEFAULT_CHANNEL_PREFIX


class Settings(BaseSettings):
    """
    PURPOSE: Central configuration class for the event bus.

    An empty REDIS_URL keeps every bus in local-only mode.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Broker Configuration
    REDIS_URL: str = ""
    EVENT_CHANNEL_PREFIX: str = DEFAULT_CHANNEL_PREFIX
    EVENT_BUS_CONNECT_RETRIES: int = 2
    EVENT_BUS_CONNECT_RETRY_DELAY: float = 0.5

    # System Settings
    LOG_LEVEL: str = "INFO"

    def is_distributed(self) -> bool:
        """
        PURPOSE: Tell whether a broker URL is configured.

        Returns:
            bool: True when REDIS_URL is non-blank.
        """
        return bool(self.REDIS_URL.strip())


def load_settings() -> Settings:
    """
    PURPOSE: Build a fresh Settings instance from the current environment.

    Reading at call time lets a service (or a test) change REDIS_URL right
    before creating its bus.

    Returns:
        Settings: Newly loaded settings.
    """
    return Settings()
