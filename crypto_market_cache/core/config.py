"""
Layered configuration with YAML defaults and environment overrides.

Configuration is merged from the packaged ``default.yaml``, then
``config.yaml`` and ``<ENVIRONMENT>.yaml`` from the configuration directory,
then ``CRYPTO_MARKET_CACHE_*`` environment variables (a ``.env`` file is
loaded first if present).
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PACKAGE_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"

# Env values for these keys are kept verbatim, never coerced to numbers
STRING_KEYS = {"api.key"}


class ConfigError(Exception):
    """Configuration-related errors."""
    pass


class ConfigManager:
    """
    Configuration management system.

    Values are addressed with dot notation (``cache.market_ttl_ms``). In
    environment variables a double underscore separates levels, because key
    names contain single underscores:
    ``CRYPTO_MARKET_CACHE_CACHE__MARKET_TTL_MS=30000``.
    """

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        env_prefix: str = "CRYPTO_MARKET_CACHE",
        load_env_file: bool = True
    ):
        self.config_dir = Path(config_dir) if config_dir else Path("config")
        self.env_prefix = env_prefix
        self.load_env_file = load_env_file

        self._config: Dict[str, Any] = {}
        self._loaded = False

    def initialize(self) -> None:
        """Initialize the configuration manager."""
        logger.debug("Initializing configuration manager")

        if self.load_env_file:
            load_dotenv()

        self.load_config()

        self._loaded = True
        logger.debug("Configuration manager initialized")

    def load_config(self) -> None:
        """Load configuration from all sources."""
        self._config = {}

        self._load_yaml_config()
        self._apply_env_overrides()

        logger.debug(f"Loaded configuration with {len(self._config)} top-level keys")

    def _load_yaml_config(self) -> None:
        """Load configuration from YAML files."""
        config_files = [
            PACKAGE_CONFIG_DIR / "default.yaml",
            self.config_dir / "config.yaml",
        ]

        # Also check for environment-specific config
        env = os.getenv("ENVIRONMENT", "development")
        config_files.append(self.config_dir / f"{env}.yaml")

        for config_file in config_files:
            if not config_file.exists():
                continue

            try:
                with open(config_file, 'r') as f:
                    file_config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(f"Failed to load config from {config_file}: {e}")

            if not isinstance(file_config, dict):
                raise ConfigError(f"Config file {config_file} must contain a mapping")

            self._merge_config(self._config, file_config)
            logger.debug(f"Loaded config from {config_file}")

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        prefix = f"{self.env_prefix}_"

        for key, value in os.environ.items():
            if key.startswith(prefix):
                config_key = key[len(prefix):].lower().replace('__', '.')
                if config_key in STRING_KEYS:
                    self._set_nested_value(self._config, config_key, value, convert=False)
                else:
                    self._set_nested_value(self._config, config_key, value)
                logger.debug(f"Applied env override: {config_key}")

    def _merge_config(self, target: Dict[str, Any], source: Dict[str, Any]) -> None:
        """Recursively merge configuration dictionaries."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._merge_config(target[key], value)
            else:
                target[key] = value

    def _set_nested_value(self, config: Dict[str, Any], key_path: str, value: Any,
                          convert: bool = True) -> None:
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = self._convert_value(value) if convert else value

    def _convert_value(self, value: Any) -> Any:
        """Convert string value to appropriate type."""
        if not isinstance(value, str):
            return value

        # Boolean conversion
        if value.lower() in ('true', 'false'):
            return value.lower() == 'true'

        # Integer conversion
        try:
            return int(value)
        except ValueError:
            pass

        # Float conversion
        try:
            return float(value)
        except ValueError:
            pass

        return value

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value using dot notation."""
        if not self._loaded:
            raise ConfigError("Configuration not loaded")

        current = self._config

        for k in key.split('.'):
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return default

        return current

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value using dot notation."""
        self._set_nested_value(self._config, key, value)

    def get_all(self) -> Dict[str, Any]:
        """Get a copy of the whole configuration, with the API key masked."""
        config = copy.deepcopy(self._config)
        api = config.get('api')
        if isinstance(api, dict) and api.get('key'):
            api['key'] = '***'
        return config

    def has(self, key: str) -> bool:
        """Check if a configuration key exists."""
        if not self._loaded:
            return False

        current = self._config

        for k in key.split('.'):
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return False

        return True
