"""Configuration Manager for Store and Server Settings.

This module loads the local store location and the clinical-data server
connection settings, keeping server credentials out of logs and error
messages.

Security Impact:
    - Passwords are held as SecretStr and never logged
    - Configuration is validated before use (fail-fast)

Architecture:
    - Infrastructure layer, isolated from the domain
    - Type-safe configuration using Pydantic models
    - Sources: environment variables (with optional .env file) or a JSON file
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator

logger = logging.getLogger(__name__)

REST_API_PATH = "/ws/rest/v1"


class StoreConfig(BaseModel):
    """Local index store configuration.

    Parameters:
        db_path: Path to the DuckDB file, or ':memory:'
    """

    db_path: str = Field(default=":memory:", description="Path to DuckDB file or ':memory:'")

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: str) -> str:
        """Validate the parent directory of the database file exists."""
        if v == ":memory:":
            return v

        db_path_obj = Path(v)
        # The file itself may not exist yet
        if not db_path_obj.parent.exists():
            raise ValueError(f"Database directory does not exist: {db_path_obj.parent}")

        return str(db_path_obj)


class ServerConfig(BaseModel):
    """Clinical-data server connection settings.

    Parameters:
        base_url: Server root, e.g. https://openmrs.example.org/openmrs
        username: Basic-auth user
        password: Basic-auth password (SecretStr - never logged)
        timeout: Per-request timeout in seconds
        verify_ssl: Verify TLS certificates
    """

    base_url: str = Field(..., description="Server root URL")
    username: Optional[str] = Field(None, description="Basic-auth user")
    password: Optional[SecretStr] = Field(None, description="Basic-auth password (secret)")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify TLS certificates")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) URL and drop any trailing slash."""
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Server URL must start with http:// or https://. Got: {v}")
        return v.rstrip("/")

    @property
    def api_root(self) -> str:
        """REST root (``<base_url>/ws/rest/v1``)."""
        if self.base_url.endswith(REST_API_PATH):
            return self.base_url
        return f"{self.base_url}{REST_API_PATH}"

    def get_auth(self) -> Optional[tuple[str, str]]:
        """Basic-auth pair for requests, or None when no user is configured."""
        if not self.username:
            return None
        password = self.password.get_secret_value() if self.password else ""
        return self.username, password


class ConfigManager:
    """Configuration manager for store and server settings.

    Example Usage:
        ```python
        # Load from environment variables
        config = ConfigManager.from_environment()
        server_config = config.get_server_config()

        # Load from file
        config = ConfigManager.from_file("config.json")
        store_config = config.get_store_config()
        ```
    """

    def __init__(self, config_data: Dict[str, Any]):
        self._config_data = config_data
        self._store_config: Optional[StoreConfig] = None
        self._server_config: Optional[ServerConfig] = None

    @classmethod
    def from_environment(cls) -> 'ConfigManager':
        """Load configuration from environment variables.

        Environment Variables:
            - CS_DB_PATH: Path to the DuckDB file (default ':memory:')
            - CS_SERVER_URL: Server root URL
            - CS_SERVER_USER: Basic-auth user
            - CS_SERVER_PASSWORD: Basic-auth password (secret)
            - CS_SERVER_TIMEOUT: Request timeout in seconds
            - CS_SERVER_VERIFY_SSL: "true"/"false"

        The nearest ``.env`` file, searched upward from the working directory,
        is loaded first when present; variables already set take precedence.
        """
        env_path = find_dotenv(usecwd=True)
        if env_path:
            load_dotenv(env_path)
            logger.debug(f"Loaded environment variables from {env_path}")

        config_data = {
            "store": {
                "db_path": os.getenv("CS_DB_PATH", ":memory:"),
            },
            "server": {
                "base_url": os.getenv("CS_SERVER_URL"),
                "username": os.getenv("CS_SERVER_USER"),
                "password": os.getenv("CS_SERVER_PASSWORD"),
                "timeout": float(os.getenv("CS_SERVER_TIMEOUT", "30")),
                "verify_ssl": os.getenv("CS_SERVER_VERIFY_SSL", "true").lower() == "true",
            },
        }

        return cls(config_data)

    @classmethod
    def from_file(cls, config_path: str) -> 'ConfigManager':
        """Load configuration from a JSON file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        # Credential files should not be group/world readable
        stat_info = config_file.stat()
        if stat_info.st_mode & 0o077 != 0:
            logger.warning(
                f"Configuration file has overly permissive permissions: {config_path}. "
                "Consider setting to 600 for credential files."
            )

        try:
            with open(config_file, 'r') as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {str(e)}")

        return cls(config_data)

    def get_store_config(self) -> StoreConfig:
        """Get the local store configuration."""
        if self._store_config is None:
            store_data = {k: v for k, v in self._config_data.get("store", {}).items() if v is not None}
            self._store_config = StoreConfig(**store_data)
        return self._store_config

    def get_server_config(self) -> ServerConfig:
        """Get the server configuration.

        Raises:
            ValueError: If no server URL is configured
        """
        if self._server_config is None:
            server_data = {k: v for k, v in self._config_data.get("server", {}).items() if v is not None}
            if not server_data.get("base_url"):
                raise ValueError("No server URL configured (set CS_SERVER_URL or server.base_url)")
            if server_data.get("password"):
                server_data["password"] = SecretStr(server_data["password"])
            self._server_config = ServerConfig(**server_data)
        return self._server_config

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dotted key (e.g. "server.timeout")."""
        value = self._config_data

        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default


# ============================================================================
# Convenience Functions
# ============================================================================

def get_store_config() -> StoreConfig:
    """Store configuration from the environment (in-memory by default)."""
    return ConfigManager.from_environment().get_store_config()


def get_server_config() -> ServerConfig:
    """Server configuration from the environment."""
    return ConfigManager.from_environment().get_server_config()
