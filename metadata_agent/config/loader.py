"""Configuration loader with YAML parsing and environment variable substitution."""

import yaml
import os
import re
from pathlib import Path
from typing import Any, Dict

from pydantic import ValidationError

from ..errors import ConfigError
from .models import AgentConfig, DEFAULT_ENDPOINT
from .settings import Settings


class ConfigLoader:
    """Load and validate agent configuration."""

    @staticmethod
    def load_from_file(config_path: str) -> AgentConfig:
        """
        Load configuration from YAML file with environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            AgentConfig: Validated configuration object

        Raises:
            ConfigError: If the file is missing, unparsable or invalid
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file, 'r') as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse {config_path}: {e}") from e

        if not isinstance(raw_config, dict):
            raise ConfigError(f"Configuration file {config_path} must contain a mapping")

        # Substitute environment variables
        raw_config = ConfigLoader._substitute_env_vars(raw_config)

        return ConfigLoader._validate(raw_config)

    @staticmethod
    def load_from_env() -> AgentConfig:
        """
        Build configuration from environment variables only.

        Returns:
            AgentConfig: Validated configuration object

        Raises:
            ConfigError: If required variables are missing or values are invalid
        """
        try:
            Settings.validate_required()
        except ValueError as e:
            raise ConfigError(str(e)) from e

        raw_config: Dict[str, Any] = {
            "cloud": {
                "api_key": Settings.get(Settings.API_KEY),
                "endpoint": Settings.get(Settings.ENDPOINT, DEFAULT_ENDPOINT),
            },
            "database": {
                "url": Settings.get(Settings.DATABASE_URL),
                "provider": Settings.get(Settings.DATABASE_PROVIDER, "auto").lower(),
            },
            "collection": {},
            "logging": {
                "level": Settings.get(Settings.LOG_LEVEL, "INFO"),
                "format": Settings.get(Settings.LOG_FORMAT, "json"),
            },
        }

        interval = Settings.get(Settings.COLLECTION_INTERVAL)
        if interval:
            raw_config["collection"]["interval"] = interval
        metrics = Settings.get(Settings.COLLECTION_METRICS)
        if metrics:
            raw_config["collection"]["metrics"] = metrics

        return ConfigLoader._validate(raw_config)

    @staticmethod
    def _validate(raw_config: Dict[str, Any]) -> AgentConfig:
        """Validate with Pydantic, reporting failures as ConfigError."""
        try:
            return AgentConfig(**raw_config)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    @staticmethod
    def _substitute_env_vars(obj: Any) -> Any:
        """
        Recursively substitute ${ENV_VAR} placeholders with environment values.

        Args:
            obj: Object to process (str, dict, list, or primitive)

        Returns:
            Object with environment variables substituted
        """
        if isinstance(obj, str):
            # Replace ${VAR_NAME} with os.getenv('VAR_NAME')
            pattern = r'\$\{(\w+)\}'
            return re.sub(pattern, lambda m: os.getenv(m.group(1), ''), obj)

        elif isinstance(obj, dict):
            return {k: ConfigLoader._substitute_env_vars(v) for k, v in obj.items()}

        elif isinstance(obj, list):
            return [ConfigLoader._substitute_env_vars(item) for item in obj]

        return obj
