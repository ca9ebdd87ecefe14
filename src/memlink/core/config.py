"""Configuration loading with minimal error handling"""

import copy
from pathlib import Path
from typing import Any

import yaml

SUPPORTED_BACKENDS = ("sqlite", "falkordb")

DEFAULT_CONFIG: dict[str, Any] = {
    "storage": {
        "backend": "sqlite",
        "db_path": "./data/memlink.db",
        "falkordb": {
            "host": "localhost",
            "port": 6379,
            "graph_name": "memlink",
        },
    },
    "defaults": {
        "search_limit": 10,
        "list_limit": 50,
        "max_depth": 1,
        "strength": 1.0,
    },
    "limits": {
        "max_limit": 1000,
        "max_depth": 10,
    },
    "logging": {
        "level": "INFO",
    },
    "server": {
        "host": "127.0.0.1",
        "port": 8765,
    },
}


def merge_config(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: str = "config.yaml") -> dict[str, Any]:
    """
    Load configuration from YAML file, filling gaps from DEFAULT_CONFIG.

    Args:
        config_path: Path to config file

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
        ValueError: If config values are invalid
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            f"Please create a config.yaml file or specify path with --config"
        )

    with open(path) as f:
        loaded = yaml.safe_load(f) or {}

    if not isinstance(loaded, dict):
        raise ValueError(f"Invalid config: top level of {config_path} must be a mapping")

    config = merge_config(DEFAULT_CONFIG, loaded)
    validate_config(config)
    return config


def validate_config(config: dict[str, Any]) -> None:
    """
    Validate config values.

    Args:
        config: Configuration dictionary

    Raises:
        ValueError: If a key is missing or has an invalid value
    """
    storage = config.get("storage", {})
    backend = storage.get("backend")
    if backend not in SUPPORTED_BACKENDS:
        raise ValueError(
            f"Invalid config: storage.backend must be one of {SUPPORTED_BACKENDS}, got {backend!r}"
        )

    if backend == "sqlite" and not storage.get("db_path"):
        raise ValueError("Missing required config key: storage.db_path")

    if backend == "falkordb":
        for key in ("host", "port", "graph_name"):
            if not storage.get("falkordb", {}).get(key):
                raise ValueError(f"Missing required config key: storage.falkordb.{key}")

    for section, key in (
        ("defaults", "search_limit"),
        ("defaults", "list_limit"),
        ("defaults", "max_depth"),
        ("limits", "max_limit"),
        ("limits", "max_depth"),
    ):
        value = config.get(section, {}).get(key)
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            raise ValueError(f"Invalid config: {section}.{key} must be a positive integer")

    if config["defaults"]["max_depth"] > config["limits"]["max_depth"]:
        raise ValueError("Invalid config: defaults.max_depth exceeds limits.max_depth")
