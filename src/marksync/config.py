"""Configuration management.

Two files live in the configuration directory (``~/.marksync`` unless
``MARKSYNC_CONFIG_DIR`` or an explicit path says otherwise):

* ``config.yaml``: the non-secret AppConfig
* ``.env``: secrets, currently just the HTTP remote's bearer token
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from .models.config import AppConfig, EnvSettings

CONFIG_DIR_ENV = "MARKSYNC_CONFIG_DIR"
DEFAULT_CONFIG_DIR = Path.home() / ".marksync"

ENV_TEMPLATE = """# Marksync secrets
# Bearer token for remote_provider=http. Leave empty for drive_folder.
MARKSYNC_REMOTE_TOKEN={token}
"""


class ConfigError(Exception):
    """Configuration-related error."""

    pass


class ConfigManager:
    """Loads, validates and writes config.yaml and .env."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_dir: Configuration directory. Falls back to MARKSYNC_CONFIG_DIR,
                then ~/.marksync
        """
        if config_dir is None:
            config_dir = os.environ.get(CONFIG_DIR_ENV) or DEFAULT_CONFIG_DIR

        self.config_dir = Path(config_dir)
        self.config_file = self.config_dir / "config.yaml"
        self.env_file = self.config_dir / ".env"

    def load_env_settings(self) -> EnvSettings:
        """Load secrets. A missing .env is fine: only the HTTP remote needs one.

        Raises:
            ConfigError: If the settings do not validate
        """
        if self.env_file.exists():
            load_dotenv(self.env_file)

        try:
            return EnvSettings()
        except ValidationError as e:
            raise ConfigError(f"Invalid .env file: {e}") from e

    def load_app_config(self) -> AppConfig:
        """Read config.yaml and check the remote settings are complete.

        Raises:
            ConfigError: If the file is missing, not YAML, or fails validation
        """
        if not self.config_file.exists():
            raise ConfigError(
                f"Config file not found at {self.config_file}. "
                f"Run 'marksync init' to create configuration."
            )

        data = self._read_yaml()
        try:
            config = AppConfig(**data)
        except (ValidationError, TypeError) as e:
            raise ConfigError(f"Failed to load config: {e}") from e

        self.validate_remote_config(config)
        return config

    def save_app_config(self, config: AppConfig) -> None:
        """Write config.yaml, leaving unset optional fields out.

        Raises:
            ConfigError: If the remote settings are incomplete or the write fails
        """
        self.validate_remote_config(config)

        data = config.model_dump(mode="json", exclude_none=True)
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise ConfigError(f"Failed to save config: {e}") from e

    def create_env_file(self, remote_token: Optional[str] = None) -> None:
        """Write .env with the remote token, readable by the owner only.

        Raises:
            ConfigError: If the file cannot be written
        """
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            self.env_file.write_text(ENV_TEMPLATE.format(token=remote_token or ""), encoding="utf-8")
            if os.name != "nt":
                os.chmod(self.env_file, 0o600)
        except OSError as e:
            raise ConfigError(f"Failed to create .env file: {e}") from e

    def validate_remote_config(self, config: AppConfig) -> None:
        """Check the selected remote provider has what it needs.

        Raises:
            ConfigError: If a required remote setting is missing
        """
        if config.remote_provider == "drive_folder" and not config.remote_path:
            raise ConfigError("remote_provider=drive_folder requires remote_path")
        if config.remote_provider == "http" and not config.remote_url:
            raise ConfigError("remote_provider=http requires remote_url")

    def validate_data_dir(self, config: AppConfig) -> None:
        """Check the local data directory exists and is readable and writable.

        Raises:
            ConfigError: Naming the first problem found
        """
        path = Path(config.data_dir)

        if not path.exists():
            raise ConfigError(f"Data directory does not exist: {config.data_dir}")
        if not path.is_dir():
            raise ConfigError(f"Data path is not a directory: {config.data_dir}")
        if not os.access(path, os.R_OK | os.W_OK):
            raise ConfigError(f"Data directory is not readable and writable: {config.data_dir}")

    def _read_yaml(self) -> Dict[str, Any]:
        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in config file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read config: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError("Failed to load config: config.yaml must be a mapping")
        return data
