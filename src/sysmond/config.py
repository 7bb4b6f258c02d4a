"""Configuration loading."""

import copy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_CONFIG_PATH = Path("/etc/sysmond/config.yaml")

DEFAULTS: Dict[str, Any] = {
    "thermal": {
        "enabled": True,
        "poll_interval": 1.0,
        "source": "sensors",
        "sensor_name": "coretemp-isa-0000",
        "sensor_label": None,
        "hwmon_names": ["coretemp", "k10temp", "zenpower", "cpu_thermal"],
        "command_timeout": 5,
    },
    "power": {
        "enabled": True,
        "poll_interval": 2.0,
        "supply_root": "/sys/class/power_supply",
    },
    "telemetry": {
        "poll_interval": 5.0,
        "identifier": "kernel",
    },
    "store": {
        "path": "/var/lib/sysmond/state.yaml",
    },
    "instance": {
        "lock_file": "/run/lock/sysmond.lock",
    },
    "shutdown": {
        "dry_run": False,
        "use_sudo": True,
    },
    "notifications": {
        "desktop": True,
        "home_assistant": {
            "url": None,
            "service": "notify",
            "token_env": "HA_TOKEN",
            "timeout": 5,
        },
    },
    "logging": {
        "level": "INFO",
        "file": None,
    },
    "lifecycle": {
        "exit_grace": 3.0,
    },
}


class ConfigError(Exception):
    """Configuration file missing or malformed."""

    pass


def merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file on top of the built-in defaults.

    Args:
        config_path: Explicit file; must exist. When None, the default path
            is used if present, otherwise the defaults alone.

    Raises:
        ConfigError: If the file is missing (explicit path) or unparsable
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        if config_path:
            raise ConfigError(f"Config file not found: {path}")
        return copy.deepcopy(DEFAULTS)

    try:
        with open(path, "r") as f:
            cfg = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Error parsing config file: {e}") from e

    if not isinstance(cfg, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    return merge(DEFAULTS, cfg)
