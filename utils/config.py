"""
config.py

Configuration management for ServiceDiscovery.
Loads settings from config.yaml, layers environment overrides on top,
and provides access throughout the application.
"""

import copy
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import yaml


DEFAULTS: Dict[str, Any] = {
    "scan": {
        "host": "127.0.0.1",
        "probe_timeout_ms": 500,
        "scan_timeout_s": 120,
        "workers": 10,
    },
    "sources": {
        "native": True,
        "lsof": True,
        "ss": True,
        "netstat": True,
        "docker": True,
        "systemd": True,
        "kubernetes": True,
        "command_timeout_s": 10,
    },
    "paths": {
        "discovery_log": None,
        "inventory_dir": "inventory",
        "logs_dir": "logs",
    },
    "logging": {
        "level": "INFO",
        "verbose": False,
        "console_output": True,
        "file_output": True,
        "max_log_size_mb": 10,
        "backup_count": 5,
    },
}


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {raw!r}")


# Environment variable -> (dot key, converter)
ENV_OVERRIDES: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "INCLUDE_NATIVE": ("sources.native", _parse_bool),
    "INCLUDE_LSOF": ("sources.lsof", _parse_bool),
    "INCLUDE_SS": ("sources.ss", _parse_bool),
    "INCLUDE_NETSTAT": ("sources.netstat", _parse_bool),
    "INCLUDE_DOCKER": ("sources.docker", _parse_bool),
    "INCLUDE_SYSTEMD": ("sources.systemd", _parse_bool),
    "INCLUDE_KUBERNETES": ("sources.kubernetes", _parse_bool),
    "VERBOSE": ("logging.verbose", _parse_bool),
    "MAX_PARALLEL_JOBS": ("scan.workers", int),
    "TIMEOUT_MS": ("scan.probe_timeout_ms", int),
    "SCAN_TIMEOUT_S": ("scan.scan_timeout_s", float),
    "DISCOVERY_LOG": ("paths.discovery_log", str),
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """
    Singleton configuration manager that loads and provides access to settings.
    """

    _instance = None
    _config: Dict[str, Any] = {}

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
            cls._instance.reload()
        return cls._instance

    @staticmethod
    def _find_config_file() -> Optional[Path]:
        """Locate config.yaml: $SVCDISCOVERY_CONFIG, then cwd, then project root."""
        explicit = os.environ.get("SVCDISCOVERY_CONFIG")
        if explicit:
            path = Path(explicit)
            if not path.exists():
                raise FileNotFoundError(f"Config file not found: {path}")
            return path

        for candidate in (Path("config.yaml"), Path(__file__).resolve().parent.parent / "config.yaml"):
            if candidate.exists():
                return candidate
        return None

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from config.yaml over the built-in defaults."""
        config_path = self._find_config_file()
        if config_path is None:
            return copy.deepcopy(DEFAULTS)

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}")

        if not isinstance(loaded, dict):
            raise ValueError(f"Invalid config in {config_path}: top level must be a mapping")

        return _deep_merge(DEFAULTS, loaded)

    def _apply_env_overrides(self) -> None:
        for env_name, (key_path, convert) in ENV_OVERRIDES.items():
            raw = os.environ.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                self.set(key_path, convert(raw))
            except ValueError:
                # Keep the configured value; the logger is not available yet.
                continue

    def reload(self) -> None:
        """Re-read the config file and environment."""
        self._config = self._load_config()
        self._apply_env_overrides()

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Example:
            config.get("scan.workers")
            config.get("sources.docker")
        """
        keys = key_path.split(".")
        value = self._config

        try:
            for key in keys:
                value = value[key]
        except (KeyError, TypeError):
            return default
        return default if value is None else value

    def set(self, key_path: str, value: Any) -> None:
        """Set a configuration value using dot notation (runtime only)."""
        keys = key_path.split(".")
        node = self._config
        for key in keys[:-1]:
            node = node.setdefault(key, {})
        node[keys[-1]] = value

    def get_all(self) -> Dict[str, Any]:
        """Return the entire configuration dictionary."""
        return copy.deepcopy(self._config)

    def discovery_log_path(self) -> Path:
        """Path of the append-only discovery log (temp dir unless configured)."""
        configured = self.get("paths.discovery_log")
        if configured:
            return Path(configured)
        return Path(tempfile.gettempdir()) / "discovery.log"


# Create a global instance for easy import
config = ConfigManager()
