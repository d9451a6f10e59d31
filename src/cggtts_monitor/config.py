"""
Configuration loading for cggtts-monitor.

Configuration is a TOML file merged over built-in defaults:

    [monitor]
    root_dir = "/data/cggtts"
    interval_seconds = 300
    missing_window_days = 3

    [refresh]
    interval_seconds = 600
    views = ["sat_common_view_difference", "station_session_counts"]

    [database]
    backend = "postgres"
    dsn = "dbname=timing user=cggtts host=localhost"
"""

import copy
from pathlib import Path
from typing import Any, Dict, Optional

import toml

DEFAULT_CONFIG: Dict[str, Any] = {
    'monitor': {
        'root_dir': '/var/lib/cggtts/incoming',
        'interval_seconds': 300.0,
        'missing_window_days': 3,
        'header_lines': 20,
        'min_tokens': 24,
        'primary_encoding': 'utf-8',
        'fallback_encoding': 'latin-1',
    },
    'refresh': {
        'enabled': True,
        'interval_seconds': 600.0,
        'views': ['sat_common_view_difference', 'station_session_counts'],
    },
    'database': {
        'backend': 'sqlite',
        'path': '/var/lib/cggtts-monitor/cggtts.db',
        'dsn': '',
        'busy_timeout_seconds': 5.0,
        'retry': {
            'attempts': 3,
            'base_delay_seconds': 0.1,
            'max_delay_seconds': 2.0,
            'jitter_seconds': 0.1,
        },
    },
    'output': {
        'health_port': 8080,
        'bind_address': '127.0.0.1',
    },
    'logging': {
        'level': 'INFO',
    },
}


class ConfigError(ValueError):
    """Configuration file is unreadable or holds invalid values."""


def merge_config(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def _number(section: Dict[str, Any], name: str, key: str, kind=float):
    """Convert one numeric setting, reporting bad values as ConfigError."""
    value = section.get(key)
    if isinstance(value, bool):
        raise ConfigError(f"{name}.{key} must be a number, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name}.{key} must be a number, got {value!r}") from None


def validate_config(config: Dict[str, Any]):
    """Raise ConfigError for values the daemon cannot run with."""
    for name in ('monitor', 'refresh', 'database', 'output', 'logging'):
        if not isinstance(config.get(name), dict):
            raise ConfigError(f"[{name}] must be a table")
    monitor = config['monitor']
    refresh = config['refresh']
    database = config['database']
    if not isinstance(database.get('retry'), dict):
        raise ConfigError("[database.retry] must be a table")

    if _number(monitor, 'monitor', 'interval_seconds') <= 0:
        raise ConfigError("monitor.interval_seconds must be positive")
    if _number(refresh, 'refresh', 'interval_seconds') <= 0:
        raise ConfigError("refresh.interval_seconds must be positive")
    if _number(monitor, 'monitor', 'missing_window_days', int) < 0:
        raise ConfigError("monitor.missing_window_days must not be negative")
    if _number(monitor, 'monitor', 'header_lines', int) < 0:
        raise ConfigError("monitor.header_lines must not be negative")
    _number(monitor, 'monitor', 'min_tokens', int)
    _number(config['output'], 'output', 'health_port', int)
    _number(database, 'database', 'busy_timeout_seconds')
    for key in ('base_delay_seconds', 'max_delay_seconds', 'jitter_seconds'):
        _number(database['retry'], 'database.retry', key)
    if not isinstance(refresh['views'], list):
        raise ConfigError("refresh.views must be a list of view names")
    if database['backend'] not in ('sqlite', 'postgres'):
        raise ConfigError(f"Unknown database backend: {database['backend']!r}")
    if database['backend'] == 'postgres' and not database.get('dsn'):
        raise ConfigError("database.dsn is required for the postgres backend")
    if _number(database['retry'], 'database.retry', 'attempts', int) < 1:
        raise ConfigError("database.retry.attempts must be at least 1")


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a TOML file.

    Args:
        config_path: TOML file; None or a missing file yields the defaults

    Returns:
        Validated configuration dictionary
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path and Path(config_path).exists():
        try:
            with open(config_path, 'r') as f:
                config = merge_config(config, toml.load(f))
        except toml.TomlDecodeError as e:
            raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

    validate_config(config)
    return config
