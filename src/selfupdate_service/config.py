"""Configuration for the self-update web service."""
import os
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values

from selfupdate_engine.config import DEFAULT_CONFIG_FILE, InstallationConfig, load_config


def _settings(env_file: Path = Path('.env')) -> Dict[str, Optional[str]]:
    # Process environment wins over the .env file
    return {**dotenv_values(env_file), **os.environ}


class Config:
    """Configuration settings for the update service."""

    def __init__(self, settings: Optional[Dict[str, Optional[str]]] = None):
        settings = _settings() if settings is None else settings

        # Server settings
        self.HOST: str = settings.get('HOST') or '0.0.0.0'
        self.PORT: int = int(settings.get('PORT') or 8123)

        # Installation managed by this service
        self.UPDATER_CONFIG: Path = Path(settings.get('UPDATER_CONFIG') or DEFAULT_CONFIG_FILE).absolute()

        # Seconds between state polls of the progress stream
        self.STREAM_INTERVAL: float = float(settings.get('STREAM_INTERVAL') or 1.0)

        # Seconds the progress stream waits for a run to take the lock
        self.STREAM_IDLE_TIMEOUT: float = float(settings.get('STREAM_IDLE_TIMEOUT') or 10.0)

    def installation(self) -> InstallationConfig:
        """Load the installation configuration (re-read on every call).

        Raises:
            ConfigError: If the configuration cannot be loaded
        """
        return load_config(self.UPDATER_CONFIG)


config = Config()
