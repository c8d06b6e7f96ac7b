"""Configuration management for the BLE poller."""

from __future__ import annotations

import os
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

import yaml

DEFAULT_DEVICE_NAME = "Intech_BLE"

_MAC_RE = re.compile(r"^[0-9A-Fa-f]{2}(:[0-9A-Fa-f]{2}){5}$")


@dataclass
class TargetConfig:
    """Which peripheral to look for."""

    mac: str = ""
    name: str = DEFAULT_DEVICE_NAME
    adapter: str = "hci0"


@dataclass
class GattConfig:
    """GATT service and characteristic UUIDs read by the poller."""

    service_uuid: str = "77880001-b5a3-f393-e0a9-150e24fcca8e"
    config_uuid: str = "77880002-b5a3-f393-e0a9-150e24fcca8e"
    value_uuid: str = "77880003-b5a3-f393-e0a9-150e24fcca8e"


@dataclass
class TimingConfig:
    """Fixed poll intervals and back-offs, in seconds."""

    discovery_poll_sec: float = 1.0
    retry_backoff_sec: float = 2.0
    cooldown_sec: float = 2.0

    def __post_init__(self) -> None:
        # Values substituted from the environment arrive as strings
        for field_name in ("discovery_poll_sec", "retry_backoff_sec", "cooldown_sec"):
            value = getattr(self, field_name)
            if isinstance(value, str):
                try:
                    setattr(self, field_name, float(value))
                except ValueError:
                    pass  # reported by validate_config


@dataclass
class LoggingConfig:
    """Configuration for the NDJSON session journal."""

    dir: str = "./logs"
    file_prefix: str = "poller"
    mode: str = "regular"  # regular or verbose


@dataclass
class AppConfig:
    """Main application configuration."""

    target: TargetConfig = None
    gatt: GattConfig = None
    timing: TimingConfig = None
    logging: LoggingConfig = None

    def __post_init__(self) -> None:
        if self.target is None:
            self.target = TargetConfig()
        if self.gatt is None:
            self.gatt = GattConfig()
        if self.timing is None:
            self.timing = TimingConfig()
        if self.logging is None:
            self.logging = LoggingConfig()


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Load configuration from YAML file with environment variable support.

    Without a path the built-in defaults are returned.
    """
    if config_path is None:
        return AppConfig()

    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_file.open("r", encoding="utf-8") as f:
        raw_config = yaml.safe_load(f)

    if not raw_config:
        raise ValueError(f"Empty or invalid configuration file: {config_path}")
    if not isinstance(raw_config, dict):
        raise ValueError(f"Configuration root must be a mapping: {config_path}")

    _substitute_env_vars(raw_config)

    config = AppConfig()

    if raw_config.get("target"):
        config.target = TargetConfig(**raw_config["target"])

    if raw_config.get("gatt"):
        config.gatt = GattConfig(**raw_config["gatt"])

    if raw_config.get("timing"):
        config.timing = TimingConfig(**raw_config["timing"])

    if raw_config.get("logging"):
        config.logging = LoggingConfig(**raw_config["logging"])

    return config


def _substitute_env_vars(data: Any) -> None:
    """Recursively substitute ``${VAR}`` values from the environment."""
    if isinstance(data, dict):
        for key, value in data.items():
            if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
                env_var = value[2:-1]
                data[key] = os.getenv(env_var, value)
            else:
                _substitute_env_vars(value)
    elif isinstance(data, list):
        for i, item in enumerate(data):
            if isinstance(item, str) and item.startswith("${") and item.endswith("}"):
                data[i] = os.getenv(item[2:-1], item)
            else:
                _substitute_env_vars(item)


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except (ValueError, TypeError, AttributeError):
        return False
    return True


def validate_config(config: AppConfig) -> List[str]:
    """Validate configuration and return list of validation errors."""
    errors = []

    # Target: an address, or a name to fall back on
    if config.target.mac and not _MAC_RE.match(config.target.mac):
        errors.append(f"Target MAC address is malformed: {config.target.mac}")
    if not config.target.mac and not config.target.name:
        errors.append("Either target.mac or target.name is required")

    for field_name in ("service_uuid", "config_uuid", "value_uuid"):
        value = getattr(config.gatt, field_name)
        if not _is_uuid(value):
            errors.append(f"gatt.{field_name} is not a valid UUID: {value!r}")

    for field_name in ("discovery_poll_sec", "retry_backoff_sec", "cooldown_sec"):
        value = getattr(config.timing, field_name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"timing.{field_name} must be a number, got {value!r}")
        elif value < 0:
            errors.append(f"timing.{field_name} must not be negative")

    if config.logging.mode not in ("regular", "verbose"):
        errors.append(f"logging.mode must be 'regular' or 'verbose', got {config.logging.mode!r}")

    try:
        Path(config.logging.dir).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        errors.append(f"Cannot create directory logging.dir: {config.logging.dir} - {e}")

    return errors
