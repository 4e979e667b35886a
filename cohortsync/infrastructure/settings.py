"""Application Settings and Configuration.

This module combines configuration from the configuration manager with
application-level defaults read from the environment.
"""

import os
from typing import Optional

from cohortsync.infrastructure.config_manager import ConfigManager, ServerConfig, StoreConfig

# Application metadata
APP_NAME = "Cohort-Sync"
APP_VERSION = "1.0.0"


class Settings:
    """Application settings loaded from configuration manager and environment.

    Store and server configs are loaded lazily so that commands which never
    touch the network do not require a server URL.
    """

    def __init__(self):
        self._config_manager: Optional[ConfigManager] = None
        self._store_config: Optional[StoreConfig] = None
        self._server_config: Optional[ServerConfig] = None

        self.app_name = os.getenv("CS_APP_NAME", APP_NAME)

        # Logging
        self.log_level = os.getenv("CS_LOG_LEVEL", "INFO")
        self.log_json = os.getenv("CS_LOG_JSON", "false").lower() == "true"

    @property
    def config_manager(self) -> ConfigManager:
        if self._config_manager is None:
            self._config_manager = ConfigManager.from_environment()
        return self._config_manager

    @property
    def store_config(self) -> StoreConfig:
        if self._store_config is None:
            self._store_config = self.config_manager.get_store_config()
        return self._store_config

    @property
    def server_config(self) -> ServerConfig:
        """Server configuration.

        Raises:
            ValueError: If no server URL is configured
        """
        if self._server_config is None:
            self._server_config = self.config_manager.get_server_config()
        return self._server_config


# Global settings instance
settings = Settings()
