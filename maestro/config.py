"""
Configuration loading for maestro tools.

Config file layout (YAML):

    mixer:
      host: 192.168.1.50
      port: 10023
    osc:
      local_host: 0.0.0.0
      local_port: 0          # 0 = OS-assigned
    logging:
      level: INFO

Missing sections and keys fall back to DEFAULT_CONFIG. The MAESTRO_MIXER_HOST
environment variable overrides mixer.host.
"""

import copy
import os
from pathlib import Path
from typing import Optional

import yaml

from maestro.osc import DEFAULT_LOCAL_HOST, EPHEMERAL_PORT, X32_PORT, validate_port

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

DEFAULT_CONFIG = {
    "mixer": {
        "host": "192.168.1.50",
        "port": X32_PORT,
    },
    "osc": {
        "local_host": DEFAULT_LOCAL_HOST,
        "local_port": EPHEMERAL_PORT,
    },
    "logging": {
        "level": "INFO",
    },
}


def _merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[str] = None) -> dict:
    """
    Load and validate configuration from a YAML file.

    Args:
        path: Path to configuration YAML file, or None for defaults only

    Returns:
        Validated configuration dictionary merged over DEFAULT_CONFIG

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML syntax is invalid
        ValueError: If configuration is invalid (via validate_config)
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {path}\n"
                f"See the module docstring of maestro.config for the layout."
            )

        with open(config_path, 'r') as f:
            loaded = yaml.safe_load(f) or {}

        if not isinstance(loaded, dict):
            raise ValueError(f"Configuration root must be a mapping, got {type(loaded).__name__}")
        config = _merge(config, loaded)

    env_host = os.getenv("MAESTRO_MIXER_HOST")
    if env_host:
        config["mixer"]["host"] = env_host

    validate_config(config)
    return config


def validate_config(config: dict) -> None:
    """
    Validate configuration values.

    Validates:
    - mixer.host: non-empty string
    - mixer.port: 1-65535
    - osc.local_port: 0 (OS-assigned) or 1-65535
    - logging.level: one of DEBUG/INFO/WARNING/ERROR

    Raises:
        ValueError: If any validation fails
    """
    for section in ("mixer", "osc", "logging"):
        if not isinstance(config.get(section), dict):
            raise ValueError(f"Configuration section '{section}' must be a mapping")

    host = config["mixer"].get("host")
    if not isinstance(host, str) or not host.strip():
        raise ValueError(
            "Configuration missing 'mixer.host'\n"
            "Must specify the console address, e.g. mixer.host: 192.168.1.50"
        )

    try:
        validate_port(config["mixer"].get("port"))
    except ValueError as e:
        raise ValueError(f"Invalid mixer.port: {e}") from e

    local_port = config["osc"].get("local_port")
    if local_port != EPHEMERAL_PORT:
        try:
            validate_port(local_port)
        except ValueError as e:
            raise ValueError(f"Invalid osc.local_port (use 0 for OS-assigned): {e}") from e

    if not isinstance(config["osc"].get("local_host"), str):
        raise ValueError("osc.local_host must be a string")

    level = config["logging"].get("level")
    if not isinstance(level, str) or level.upper() not in LOG_LEVELS:
        raise ValueError(
            f"Invalid logging.level: {level!r}\n"
            f"Must be one of: {', '.join(LOG_LEVELS)}"
        )
