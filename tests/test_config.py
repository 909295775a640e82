"""
Tests for configuration management.
"""

import os
import tempfile
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from cert_monitor.config import (
    MonitoringConfig,
    NacosSettings,
    Settings,
    create_example_config,
    load_config,
    merge_remote_document,
)
from cert_monitor.errors import ConfigRejectedError

ENV_VARS = (
    "NACOS_ADDR",
    "NACOS_NAMESPACE",
    "NACOS_GROUP",
    "NACOS_DATA_ID",
    "NACOS_USERNAME",
    "NACOS_PASSWORD",
    "PORT",
    "LOG_LEVEL",
    "CHECK_INTERVAL",
    "CONNECT_TIMEOUT",
    "EXPIRE_WARNING_DAYS",
    "THRESHOLD_DAYS",
    "NACOS_POLL_INTERVAL",
    "MAX_CONCURRENT_CHECKS",
    "DOMAINS",
    "LOG_FILE",
    "CERT_DIRECTORY",
    "PID_FILE",
    "VERIFY_CERTIFICATES",
    "WATCH_CERT_DIRECTORY",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Remove configuration variables inherited from the environment."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestMonitoringConfig:
    """Test the runtime configuration model."""

    def test_default_config(self):
        """Test default configuration values."""
        config = MonitoringConfig()

        assert config.domains == ()
        assert config.check_interval == 60
        assert config.connect_timeout == 10
        assert config.expire_warning_days == 30
        assert config.max_concurrent_checks == 50
        assert config.metrics_port == 9393
        assert config.log_level == "info"
        assert config.nacos_poll_interval == 30

    def test_domains_deduplicated_in_order(self):
        """Test duplicate domains are dropped."""
        config = MonitoringConfig(domains=["b.com", "a.com", "b.com", " c.com "])
        assert config.domains == ("b.com", "a.com", "c.com")

    def test_invalid_domain(self):
        """Test blank and non-string domains are rejected."""
        with pytest.raises(ValueError):
            MonitoringConfig(domains=["a.com", ""])
        with pytest.raises(ValueError):
            MonitoringConfig(domains=["a.com", 42])

    def test_log_level_aliases(self):
        """Test log level normalisation."""
        assert MonitoringConfig(log_level="WARNING").log_level == "warn"
        assert MonitoringConfig(log_level="critical").log_level == "fatal"
        assert MonitoringConfig(log_level="Debug").log_level == "debug"

    def test_invalid_log_level(self):
        """Test invalid log level."""
        with pytest.raises(ValueError):
            MonitoringConfig(log_level="INVALID")

    def test_positive_integers(self):
        """Test intervals and limits must be positive."""
        for field in ("check_interval", "connect_timeout", "max_concurrent_checks"):
            with pytest.raises(ValueError):
                MonitoringConfig(**{field: 0})

    def test_port_validation(self):
        """Test port validation."""
        with pytest.raises(ValueError):
            MonitoringConfig(metrics_port=0)

        with pytest.raises(ValueError):
            MonitoringConfig(metrics_port=70000)

    def test_frozen(self):
        """Test snapshots cannot be mutated in place."""
        config = MonitoringConfig()
        with pytest.raises(ValidationError):
            config.check_interval = 5


class TestSettings:
    """Test process-level settings."""

    def test_defaults(self):
        """Test default settings."""
        settings = Settings()

        assert settings.bind_address == "0.0.0.0"
        assert settings.pid_file == "tmp/pids/cert-monitor.pid"
        assert settings.restart_signal == "SIGHUP"
        assert settings.verify_certificates is False
        assert settings.watch_cert_directory is True
        assert settings.nacos.enabled is False

    def test_restart_signal_normalised(self):
        """Test signal names are normalised."""
        assert Settings(restart_signal="usr2").restart_signal == "SIGUSR2"

    def test_invalid_restart_signal(self):
        """Test unknown signals are rejected."""
        with pytest.raises(ValueError):
            Settings(restart_signal="SIGNOPE")

    def test_nacos_enabled(self):
        """Test Nacos needs an address and a data id."""
        assert NacosSettings(addr="http://nacos:8848").enabled is False
        assert NacosSettings(addr="http://nacos:8848", data_id="cfg").enabled is True
        assert NacosSettings().group == "DEFAULT_GROUP"
        assert NacosSettings().path == "/nacos/v2/cs/config"


class TestMergeRemoteDocument:
    """Test building configurations from remote documents."""

    def test_merge_keeps_missing_fields(self):
        """Test fields absent from the document keep their values."""
        current = MonitoringConfig(domains=["a.com"], connect_timeout=7)

        merged = merge_remote_document(
            current, {"domains": ["b.com"], "settings": {"check_interval": 90}}
        )

        assert merged.domains == ("b.com",)
        assert merged.check_interval == 90
        assert merged.connect_timeout == 7
        assert current.domains == ("a.com",)

    def test_top_level_threshold_days(self):
        """Test a top-level threshold_days is honoured."""
        merged = merge_remote_document(
            MonitoringConfig(domains=["a.com"]), {"domains": ["a.com"], "threshold_days": 14}
        )
        assert merged.threshold_days == 14

    def test_empty_domains_rejected(self):
        """Test an empty domain list is rejected."""
        with pytest.raises(ConfigRejectedError):
            merge_remote_document(MonitoringConfig(domains=["a.com"]), {"domains": []})

    def test_invalid_value_rejected(self):
        """Test invalid values are rejected as a whole."""
        with pytest.raises(ConfigRejectedError):
            merge_remote_document(
                MonitoringConfig(domains=["a.com"]),
                {"domains": ["a.com"], "settings": {"max_concurrent_checks": 0}},
            )

    def test_settings_must_be_mapping(self):
        """Test a non-mapping settings section is rejected."""
        with pytest.raises(ConfigRejectedError):
            merge_remote_document(
                MonitoringConfig(domains=["a.com"]), {"domains": ["a.com"], "settings": [1, 2]}
            )


class TestLoadConfig:
    """Test configuration loading."""

    def test_load_from_file(self):
        """Test loading configuration from YAML file."""
        config_data = {
            "domains": ["example.com", "www.example.com"],
            "settings": {"metrics_port": 8080, "check_interval": 30, "log_level": "debug"},
            "nacos": {"addr": "http://nacos:8848", "data_id": "cert-monitor.yaml"},
            "bind_address": "127.0.0.1",
            "cert_directory": "/test/certs",
        }

        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            yaml.dump(config_data, f)
            config_path = f.name

        try:
            settings = load_config(config_path)

            assert settings.monitoring.domains == ("example.com", "www.example.com")
            assert settings.monitoring.metrics_port == 8080
            assert settings.monitoring.check_interval == 30
            assert settings.monitoring.log_level == "debug"
            assert settings.nacos.enabled is True
            assert settings.bind_address == "127.0.0.1"
            assert settings.cert_directory == "/test/certs"
        finally:
            os.unlink(config_path)

    def test_load_nonexistent_file(self):
        """Test loading from nonexistent file."""
        with pytest.raises(FileNotFoundError):
            load_config("/nonexistent/config.yaml")

    def test_load_invalid_values(self, tmp_path):
        """Test invalid file values fail validation."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text("settings:\n  check_interval: -1\n")

        with pytest.raises(ValidationError):
            load_config(str(config_path))

    def test_load_without_file(self):
        """Test loading without config file (defaults)."""
        settings = load_config()
        assert settings.monitoring.metrics_port == 9393

    def test_environment_variable_override(self, monkeypatch):
        """Test environment variable overrides."""
        monkeypatch.setenv("PORT", "9090")
        monkeypatch.setenv("LOG_LEVEL", "WARN")
        monkeypatch.setenv("NACOS_ADDR", "http://nacos:8848")
        monkeypatch.setenv("NACOS_DATA_ID", "cert-monitor.yaml")
        monkeypatch.setenv("VERIFY_CERTIFICATES", "true")
        monkeypatch.setenv("CERT_DIRECTORY", "/env/certs")

        settings = load_config()

        assert settings.monitoring.metrics_port == 9090
        assert settings.monitoring.log_level == "warn"
        assert settings.nacos.addr == "http://nacos:8848"
        assert settings.nacos.enabled is True
        assert settings.verify_certificates is True
        assert settings.cert_directory == "/env/certs"

    def test_environment_list_variables(self, monkeypatch):
        """Test environment variables for lists."""
        monkeypatch.setenv("DOMAINS", "a.com, b.com,,c.com")

        settings = load_config()

        assert settings.monitoring.domains == ("a.com", "b.com", "c.com")

    def test_invalid_environment_value_ignored(self, monkeypatch):
        """Test unparseable environment values are ignored."""
        monkeypatch.setenv("CHECK_INTERVAL", "often")

        settings = load_config()

        assert settings.monitoring.check_interval == 60


class TestCreateExampleConfig:
    """Test example configuration creation."""

    def test_create_example_config(self):
        """Test creating example configuration file."""
        with tempfile.TemporaryDirectory() as temp_dir:
            example_path = Path(temp_dir) / "example.yaml"
            create_example_config(str(example_path))

            assert example_path.exists()

            with open(example_path, "r") as f:
                config_data = yaml.safe_load(f)

            assert "domains" in config_data
            assert "settings" in config_data
            assert "nacos" in config_data

            # Should be valid configuration
            settings = load_config(str(example_path))
            assert settings.monitoring.metrics_port == 9393
            assert settings.nacos.enabled is True
