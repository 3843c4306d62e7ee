"""Provides functions for loading and accessing configuration settings.

Supports loading from a YAML configuration file (``~/.wtmigrate/config.yaml``),
a ``.env`` file and environment variables.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".wtmigrate"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "WTMIGRATE_"

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}  # For testing purposes
_loaded = False


def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file
    4. Default values passed to ``get_config``

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. YAML file (lowest priority)
    if config_file.exists():
        try:
            with open(config_file, "r") as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(yaml_config)
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. .env file; override=False keeps real environment variables on top
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("Skipping .env file loading (not found).")

    # 3. Environment variables are read by get_config
    _loaded = True
    logger.debug("Configuration loading process completed.")


def env_var_name(key: str) -> str:
    """Maps ``retry.max_attempts`` to ``WTMIGRATE_RETRY_MAX_ATTEMPTS``."""
    return ENV_PREFIX + key.upper().replace(".", "_").replace("-", "_")


def _coerce(value: str) -> Any:
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    try:
        return float(value) if "." in value else int(value)
    except ValueError:
        return value


def _lookup(config: Dict[str, Any], key: str) -> Any:
    if key in config:
        return config[key]
    node: Any = config
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(key)
        node = node[part]
    return node


def get_config(key: str, default: Any = None) -> Any:
    """Get a configuration value by (dotted) key.

    Priority:
    1. Test configuration
    2. Environment variable (``WTMIGRATE_<KEY>``)
    3. YAML config (nested mappings are addressed with dots)
    4. Default value

    Args:
        key: The configuration key, e.g. ``retry.max_attempts``.
        default: Default value if the key is not found.

    Returns:
        The configuration value.
    """
    if key in _test_config:
        return _test_config[key]

    env_key = env_var_name(key)
    if env_key in os.environ:
        return _coerce(os.environ[env_key])

    try:
        return _lookup(_config, key)
    except KeyError:
        return default


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


# --- Convenience Functions ---

def get_deployment_url() -> Optional[str]:
    url = get_config("deployment_url")
    return str(url) if url else None


def get_master_token() -> Optional[str]:
    token = get_config("master_token")
    return str(token) if token else None


def get_max_concurrent() -> int:
    return int(get_config("max_concurrent", 10))


def get_retry_settings() -> Dict[str, Any]:
    """Keyword arguments for ``RetryPolicy``."""
    return {
        "max_attempts": int(get_config("retry.max_attempts", 10)),
        "base_delay_ms": float(get_config("retry.base_delay_ms", 50)),
        "max_delay_ms": float(get_config("retry.max_delay_ms", 5000)),
    }


def get_provision_settings() -> Dict[str, Any]:
    """Keyword arguments for ``ModuleProvisioner``."""
    return {
        "batch_limit": int(get_config("provision.batch_limit", 25)),
        "per_item_delay": float(get_config("provision.per_item_delay", 0.1)),
    }


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """Set configuration values for testing purposes.

    These values override any other configuration source.
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")


# Load configuration when the module is imported
load_configuration()
