"""
Configuration management for Certificate Monitor.
"""

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from cert_monitor.errors import ConfigRejectedError

# Keys of the ``settings`` section of a configuration document
SETTINGS_KEYS = (
    "metrics_port",
    "log_level",
    "check_interval",
    "connect_timeout",
    "expire_warning_days",
    "max_concurrent_checks",
    "nacos_poll_interval",
    "threshold_days",
)

LOG_LEVEL_ALIASES = {"warning": "warn", "critical": "fatal"}
VALID_LOG_LEVELS = ("debug", "info", "warn", "error", "fatal")


class MonitoringConfig(BaseModel):
    """
    Operating parameters that may change at runtime.

    Instances are immutable snapshots: a configuration change produces a
    new object that replaces the old one as a whole.
    """

    model_config = ConfigDict(frozen=True)

    domains: Tuple[str, ...] = Field(default=())
    check_interval: int = Field(default=60, gt=0)
    connect_timeout: int = Field(default=10, gt=0)
    expire_warning_days: int = Field(default=30, gt=0)
    threshold_days: int = Field(default=30, gt=0)
    max_concurrent_checks: int = Field(default=50, gt=0)
    metrics_port: int = Field(default=9393, ge=1, le=65535)
    log_level: str = Field(default="info")
    nacos_poll_interval: int = Field(default=30, gt=0)

    @field_validator("domains", mode="before")
    @classmethod
    def validate_domains(cls, v: Any) -> Tuple[str, ...]:
        """Validate domains and drop duplicates while keeping source order."""
        if v is None:
            return ()
        if isinstance(v, str):
            v = [v]
        if not isinstance(v, (list, tuple)):
            raise ValueError("domains must be a list of strings")

        unique: Dict[str, None] = {}
        for domain in v:
            if not isinstance(domain, str) or not domain.strip():
                raise ValueError(f"Invalid domain format: {domain!r}")
            unique.setdefault(domain.strip(), None)
        return tuple(unique)

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: Any) -> str:
        """Validate log level."""
        level = str(v).strip().lower()
        level = LOG_LEVEL_ALIASES.get(level, level)
        if level not in VALID_LOG_LEVELS:
            raise ValueError(f"Log level must be one of: {list(VALID_LOG_LEVELS)}")
        return level


class NacosSettings(BaseModel):
    """Connection parameters for the Nacos configuration store."""

    addr: Optional[str] = None
    namespace: Optional[str] = None
    group: str = Field(default="DEFAULT_GROUP")
    data_id: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    path: str = Field(default="/nacos/v2/cs/config")
    connect_timeout: float = Field(default=5.0, gt=0)
    read_timeout: float = Field(default=10.0, gt=0)

    @property
    def enabled(self) -> bool:
        return bool(self.addr and self.data_id)


class Settings(BaseModel):
    """Process-level settings loaded once at start-up."""

    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    nacos: NacosSettings = Field(default_factory=NacosSettings)

    bind_address: str = Field(default="0.0.0.0")  # nosec B104
    cert_directory: Optional[str] = None
    watch_cert_directory: bool = Field(default=True)
    verify_certificates: bool = Field(default=False)

    pid_file: str = Field(default="tmp/pids/cert-monitor.pid")
    restart_signal: str = Field(default="SIGHUP")

    log_file: Optional[str] = None

    @field_validator("restart_signal")
    @classmethod
    def validate_restart_signal(cls, v: str) -> str:
        """Validate the restart signal name exists on this platform."""
        import signal

        name = v.upper()
        if not name.startswith("SIG"):
            name = f"SIG{name}"
        if not hasattr(signal, name):
            raise ValueError(f"Unknown signal: {v}")
        return name


def merge_remote_document(
    current: MonitoringConfig, document: Mapping[str, Any]
) -> MonitoringConfig:
    """
    Build a new configuration from a configuration document.

    Fields missing from the document keep their current values. The result
    is validated as a whole; nothing is applied if any field is invalid.

    Args:
        current: The live configuration snapshot
        document: Parsed configuration document (``domains`` + ``settings``)

    Returns:
        New validated configuration

    Raises:
        ConfigRejectedError: If the merged configuration is invalid
    """
    merged: Dict[str, Any] = current.model_dump()

    if "domains" in document:
        merged["domains"] = document["domains"]

    # Older documents carry threshold_days at the top level
    if document.get("threshold_days") is not None:
        merged["threshold_days"] = document["threshold_days"]

    settings = document.get("settings") or {}
    if not isinstance(settings, Mapping):
        raise ConfigRejectedError("settings must be a mapping")

    for key in SETTINGS_KEYS:
        if settings.get(key) is not None:
            merged[key] = settings[key]

    try:
        new_config = MonitoringConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigRejectedError(f"Invalid configuration: {e}") from e

    if not new_config.domains:
        raise ConfigRejectedError("Domain list cannot be empty")

    return new_config


def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from file or environment variables.

    Args:
        config_path: Path to configuration file

    Returns:
        Settings object
    """
    config_data: Dict[str, Any] = {}

    if config_path:
        config_file = Path(config_path)
        if config_file.exists():
            with open(config_file, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}
        else:
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

    if not isinstance(config_data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {config_path}")

    monitoring: Dict[str, Any] = {}
    if "domains" in config_data:
        monitoring["domains"] = config_data.pop("domains")
    if config_data.get("threshold_days") is not None:
        monitoring["threshold_days"] = config_data.pop("threshold_days")
    for key, value in (config_data.pop("settings", None) or {}).items():
        if key in SETTINGS_KEYS and value is not None:
            monitoring[key] = value

    nacos: Dict[str, Any] = dict(config_data.pop("nacos", None) or {})

    env_monitoring, env_nacos, env_settings = _get_env_overrides()
    monitoring.update(env_monitoring)
    nacos.update(env_nacos)
    config_data.update(env_settings)

    return Settings(monitoring=monitoring, nacos=nacos, **config_data)


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _parse_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _get_env_overrides() -> Tuple[dict, dict, dict]:
    """Get configuration overrides from environment variables."""
    env_mapping: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
        "NACOS_ADDR": ("nacos", "addr", str),
        "NACOS_NAMESPACE": ("nacos", "namespace", str),
        "NACOS_GROUP": ("nacos", "group", str),
        "NACOS_DATA_ID": ("nacos", "data_id", str),
        "NACOS_USERNAME": ("nacos", "username", str),
        "NACOS_PASSWORD": ("nacos", "password", str),
        "PORT": ("monitoring", "metrics_port", int),
        "LOG_LEVEL": ("monitoring", "log_level", str),
        "CHECK_INTERVAL": ("monitoring", "check_interval", int),
        "CONNECT_TIMEOUT": ("monitoring", "connect_timeout", int),
        "EXPIRE_WARNING_DAYS": ("monitoring", "expire_warning_days", int),
        "THRESHOLD_DAYS": ("monitoring", "threshold_days", int),
        "NACOS_POLL_INTERVAL": ("monitoring", "nacos_poll_interval", int),
        "MAX_CONCURRENT_CHECKS": ("monitoring", "max_concurrent_checks", int),
        "DOMAINS": ("monitoring", "domains", _parse_list),
        "LOG_FILE": ("settings", "log_file", str),
        "CERT_DIRECTORY": ("settings", "cert_directory", str),
        "PID_FILE": ("settings", "pid_file", str),
        "VERIFY_CERTIFICATES": ("settings", "verify_certificates", _parse_bool),
        "WATCH_CERT_DIRECTORY": ("settings", "watch_cert_directory", _parse_bool),
    }

    overrides: Dict[str, dict] = {"monitoring": {}, "nacos": {}, "settings": {}}
    for env_var, (section, config_key, converter) in env_mapping.items():
        value = os.getenv(env_var)
        if value is None or value == "":
            continue
        try:
            overrides[section][config_key] = converter(value)
        except (ValueError, TypeError) as e:
            logging.warning(f"Invalid value for {env_var}: {value} - {e}")

    return overrides["monitoring"], overrides["nacos"], overrides["settings"]


def create_example_config(output_path: str = "config.example.yaml") -> None:
    """Create an example configuration file."""
    example_config = {
        "domains": ["example.com", "www.example.com"],
        "settings": {
            "metrics_port": 9393,
            "log_level": "info",
            "check_interval": 60,
            "connect_timeout": 10,
            "expire_warning_days": 30,
            "max_concurrent_checks": 50,
            "nacos_poll_interval": 30,
            "threshold_days": 30,
        },
        "nacos": {
            "addr": "http://nacos:8848",
            "namespace": "public",
            "group": "DEFAULT_GROUP",
            "data_id": "cert-monitor.yaml",
        },
        "cert_directory": "/app/certs/ssl",
        "pid_file": "tmp/pids/cert-monitor.pid",
        "verify_certificates": False,
        "watch_cert_directory": True,
    }

    with open(output_path, "w", encoding="utf-8") as f:
        yaml.dump(example_config, f, default_flow_style=False, sort_keys=False)
