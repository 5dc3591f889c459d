"""Configuration management for the cache coordinator."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError


@dataclass
class CacheManagerConfig:
    """Tunables for operation tracking, eviction and monitoring.

    Durations are expressed in milliseconds to match the UI tick model.
    """

    # Service identification
    service_name: str = "medverse-cache"
    environment: str = "development"

    # Loading supervision
    max_load_time_ms: int = 15000
    tick_interval_ms: int = 1000
    medium_escalation_ms: int = 25000
    auto_clear_on_timeout: bool = False
    default_operation_name: str = "loading-operation"

    # Eviction
    stale_query_age_ms: int = 60000
    protected_query_fragments: tuple[str, ...] = ("auth", "profile", "critical")
    owned_session_prefix: str = "cache-manager:"
    reload_marker_key: str = "cache-manager-reload"

    # Action log / statistics
    action_log_cap: int = 20
    last_log_size: int = 10

    # Monitoring
    monitor_poll_interval_ms: int = 5000

    # Start-up auto clean
    enable_auto_clean: bool = True
    show_notifications: bool = True
    slow_page_load_ms: int = 10000
    slow_page_clear_delay_ms: int = 2000
    reload_notice_window_ms: int = 60000

    # Memory pressure / long tasks
    enable_memory_monitor: bool = True
    memory_check_interval_ms: int = 30000
    memory_pressure_percent: int = 85
    long_task_threshold_ms: int = 200

    def validate(self) -> None:
        """Raise ``ConfigurationError`` if any value is out of range."""
        positive = {
            "max_load_time_ms": self.max_load_time_ms,
            "tick_interval_ms": self.tick_interval_ms,
            "monitor_poll_interval_ms": self.monitor_poll_interval_ms,
            "action_log_cap": self.action_log_cap,
            "last_log_size": self.last_log_size,
            "memory_check_interval_ms": self.memory_check_interval_ms,
        }
        for name, value in positive.items():
            if value <= 0:
                msg = f"{name} must be positive, got {value}"
                raise ConfigurationError(msg, {"field": name, "value": value})
        if self.medium_escalation_ms < self.max_load_time_ms:
            msg = "medium_escalation_ms must not be shorter than max_load_time_ms"
            raise ConfigurationError(
                msg,
                {
                    "medium_escalation_ms": self.medium_escalation_ms,
                    "max_load_time_ms": self.max_load_time_ms,
                },
            )
        if not 0 < self.memory_pressure_percent <= 100:
            msg = f"memory_pressure_percent must be within 1..100, got {self.memory_pressure_percent}"
            raise ConfigurationError(msg, {"value": self.memory_pressure_percent})
        if not self.reload_marker_key:
            raise ConfigurationError("reload_marker_key must not be empty")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheManagerConfig:
        """Create configuration from dictionary."""
        config = cls()
        for key, value in (data or {}).items():
            if not hasattr(config, key):
                msg = f"Unknown cache configuration key: {key}"
                raise ConfigurationError(msg, {"key": key})
            if key == "protected_query_fragments":
                value = tuple(value)
            setattr(config, key, value)
        config.validate()
        return config

    @classmethod
    def from_yaml_file(cls, file_path: str | Path) -> CacheManagerConfig:
        """Load configuration from YAML file."""
        path = Path(file_path)
        if not path.exists():
            msg = f"Configuration file not found: {path}"
            raise FileNotFoundError(msg)

        with path.open() as f:
            data = yaml.safe_load(f) or {}

        # Allow either a bare mapping or one nested under ``cache``
        if "cache" in data and isinstance(data["cache"], dict):
            data = data["cache"]
        return cls.from_dict(data)

    @classmethod
    def from_environment(cls, prefix: str = "MEDVERSE_CACHE") -> CacheManagerConfig:
        """Load configuration from environment variables."""
        config = cls()

        config.service_name = os.getenv(f"{prefix}_SERVICE_NAME", config.service_name)
        config.environment = os.getenv(f"{prefix}_ENVIRONMENT", config.environment)

        int_fields = (
            "max_load_time_ms",
            "tick_interval_ms",
            "medium_escalation_ms",
            "stale_query_age_ms",
            "action_log_cap",
            "last_log_size",
            "monitor_poll_interval_ms",
            "slow_page_load_ms",
            "slow_page_clear_delay_ms",
            "reload_notice_window_ms",
            "memory_check_interval_ms",
            "memory_pressure_percent",
            "long_task_threshold_ms",
        )
        for name in int_fields:
            raw = os.getenv(f"{prefix}_{name.upper()}")
            if raw:
                try:
                    setattr(config, name, int(raw))
                except ValueError as exc:
                    msg = f"{prefix}_{name.upper()} must be an integer, got {raw!r}"
                    raise ConfigurationError(msg) from exc

        for name in (
            "auto_clear_on_timeout",
            "enable_auto_clean",
            "show_notifications",
            "enable_memory_monitor",
        ):
            raw = os.getenv(f"{prefix}_{name.upper()}")
            if raw is not None:
                setattr(config, name, raw.lower() in ("true", "1", "yes", "on"))

        fragments = os.getenv(f"{prefix}_PROTECTED_QUERY_FRAGMENTS")
        if fragments:
            config.protected_query_fragments = tuple(
                part.strip() for part in fragments.split(",") if part.strip()
            )

        config.validate()
        return config

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "service_name": self.service_name,
            "environment": self.environment,
            "max_load_time_ms": self.max_load_time_ms,
            "tick_interval_ms": self.tick_interval_ms,
            "medium_escalation_ms": self.medium_escalation_ms,
            "auto_clear_on_timeout": self.auto_clear_on_timeout,
            "default_operation_name": self.default_operation_name,
            "stale_query_age_ms": self.stale_query_age_ms,
            "protected_query_fragments": list(self.protected_query_fragments),
            "owned_session_prefix": self.owned_session_prefix,
            "reload_marker_key": self.reload_marker_key,
            "action_log_cap": self.action_log_cap,
            "last_log_size": self.last_log_size,
            "monitor_poll_interval_ms": self.monitor_poll_interval_ms,
            "enable_auto_clean": self.enable_auto_clean,
            "show_notifications": self.show_notifications,
            "slow_page_load_ms": self.slow_page_load_ms,
            "slow_page_clear_delay_ms": self.slow_page_clear_delay_ms,
            "reload_notice_window_ms": self.reload_notice_window_ms,
            "enable_memory_monitor": self.enable_memory_monitor,
            "memory_check_interval_ms": self.memory_check_interval_ms,
            "memory_pressure_percent": self.memory_pressure_percent,
            "long_task_threshold_ms": self.long_task_threshold_ms,
        }

    def save_to_yaml_file(self, file_path: str | Path) -> None:
        """Save configuration to YAML file."""
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with path.open("w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, indent=2)


def load_config(
    config_file: str | Path | None = None,
    environment_prefix: str = "MEDVERSE_CACHE",
    use_defaults: bool = True,
) -> CacheManagerConfig:
    """Load cache configuration from various sources.

    Priority order:
    1. Explicit config file (if provided)
    2. Environment variables
    3. Default configuration (if use_defaults=True)
    """
    if config_file:
        return CacheManagerConfig.from_yaml_file(config_file)

    try:
        return CacheManagerConfig.from_environment(environment_prefix)
    except ConfigurationError:
        if use_defaults:
            return CacheManagerConfig()
        raise


def get_development_config() -> CacheManagerConfig:
    """Verbose notifications and a shorter timeout for local work."""
    config = CacheManagerConfig()
    config.environment = "development"
    config.max_load_time_ms = 10000
    config.medium_escalation_ms = 20000
    return config


def get_production_config() -> CacheManagerConfig:
    config = CacheManagerConfig()
    config.environment = "production"
    config.auto_clear_on_timeout = True
    return config


def get_testing_config() -> CacheManagerConfig:
    """Fast, quiet configuration with no start-up side effects."""
    config = CacheManagerConfig()
    config.environment = "testing"
    config.enable_auto_clean = False
    config.enable_memory_monitor = False
    config.show_notifications = False
    config.slow_page_clear_delay_ms = 0
    return config


__all__ = [
    "CacheManagerConfig",
    "get_development_config",
    "get_production_config",
    "get_testing_config",
    "load_config",
]
