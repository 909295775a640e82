"""
Tests for the application entry point.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner

from cert_monitor import __version__
from cert_monitor.remote import RemoteCertInspector
from main import CertMonitor, main


@pytest.fixture
def config_file(tmp_path, monkeypatch, cert_factory, cert_writer):
    """Write a configuration pointing at a temporary certificate directory."""
    for name in (
        "DOMAINS",
        "CERT_DIRECTORY",
        "PID_FILE",
        "LOG_FILE",
        "NACOS_ADDR",
        "NACOS_DATA_ID",
        "WATCH_CERT_DIRECTORY",
    ):
        monkeypatch.delenv(name, raising=False)

    cert_dir = tmp_path / "certs"
    cert_dir.mkdir()
    cert, key = cert_factory("local.example.com")
    cert_writer(cert_dir, "local.example.com.crt", cert, key)

    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        yaml.dump(
            {
                "domains": ["example.com"],
                "cert_directory": str(cert_dir),
                "watch_cert_directory": False,
                "pid_file": str(tmp_path / "cert-monitor.pid"),
            }
        )
    )
    return config_path


class TestCLI:
    """Test the command line interface."""

    def test_version(self):
        """Test the version flag."""
        result = CliRunner().invoke(main, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_missing_config_file(self, tmp_path):
        """Test a missing configuration file is rejected by the CLI."""
        result = CliRunner().invoke(main, ["--config", str(tmp_path / "missing.yaml")])

        assert result.exit_code != 0


class TestCertMonitor:
    """Test the application lifecycle."""

    @pytest.mark.asyncio
    async def test_dry_run_prints_summary(self, config_file, tmp_path, capsys):
        """Test a dry run performs one check and prints its summary."""
        monitor = CertMonitor(str(config_file), dry_run=True)

        with patch("main.setup_logging"), patch.object(
            RemoteCertInspector, "check_all", AsyncMock(return_value=[])
        ):
            await monitor.run()

        summary = json.loads(capsys.readouterr().out)
        assert summary["total_local"] == 1
        assert summary["successful_local"] == 1
        assert summary["total_remote"] == 0
        assert monitor.app is None
        assert not (tmp_path / "cert-monitor.pid").exists()

    @pytest.mark.asyncio
    async def test_initialize_writes_pid_file(self, config_file, tmp_path):
        """Test a serving process records its pid and removes it on shutdown."""
        monitor = CertMonitor(str(config_file))

        with patch("main.setup_logging"):
            await monitor.initialize()

        pid_file = tmp_path / "cert-monitor.pid"
        assert pid_file.exists()
        assert monitor.app is not None
        assert monitor.config_watcher is None
        assert monitor.directory_watcher is None

        await monitor.shutdown()
        assert not pid_file.exists()

    @pytest.mark.asyncio
    async def test_restart_keeps_pid_file(self, config_file, tmp_path):
        """Test the restart signal drains the server and keeps the pid file."""
        monitor = CertMonitor(str(config_file))
        with patch("main.setup_logging"):
            await monitor.initialize()
        monitor._server = MagicMock(should_exit=False)

        monitor._restart_handler(1, None)

        assert monitor.restart_requested is True
        assert monitor._server.should_exit is True

        await monitor.shutdown()
        assert (tmp_path / "cert-monitor.pid").exists()
