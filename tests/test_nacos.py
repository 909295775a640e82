"""
Tests for the Nacos configuration watcher.
"""

import asyncio
import json
from unittest.mock import MagicMock, patch

import httpx
import pytest
import pytest_asyncio

from cert_monitor.config import MonitoringConfig, NacosSettings, Settings
from cert_monitor.context import MonitorContext
from cert_monitor.errors import ConfigFetchError, ConfigParseError, ConfigRejectedError
from cert_monitor.nacos import ConfigWatcher, WatcherState

DOCUMENT = """
domains:
  - a.example.com
  - b.example.com
settings:
  check_interval: 120
  log_level: debug
  max_concurrent_checks: 10
  nacos_poll_interval: 15
"""


class FakeNacos:
    """Programmable Nacos config endpoint."""

    def __init__(self):
        self.status_code = 200
        self.body = DOCUMENT
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, text=self.body)


@pytest.fixture
def nacos_server():
    return FakeNacos()


@pytest.fixture
def log_level_updater():
    return MagicMock()


@pytest.fixture
def nacos_context(log_level_updater):
    settings = Settings(
        monitoring=MonitoringConfig(domains=["old.example.com"], nacos_poll_interval=5),
        nacos=NacosSettings(
            addr="nacos:8848",
            namespace="monitoring",
            data_id="cert-monitor.yaml",
            username="nacos",
            password="secret",
        ),
    )
    return MonitorContext(settings, log_level_updater=log_level_updater)


@pytest_asyncio.fixture
async def watcher(nacos_context, nacos_server):
    client = httpx.AsyncClient(transport=httpx.MockTransport(nacos_server))
    watcher = ConfigWatcher(nacos_context, client=client)
    yield watcher
    await watcher.stop()
    await client.aclose()


class TestConfigWatcherFetch:
    """Test fetching the configuration document."""

    @pytest.mark.asyncio
    async def test_request_parameters(self, watcher, nacos_server):
        """Test the request carries data id, group, namespace and credentials."""
        await watcher.fetch()

        request = nacos_server.requests[0]
        assert request.url.host == "nacos"
        assert request.url.port == 8848
        assert request.url.path == "/nacos/v2/cs/config"
        params = request.url.params
        assert params["dataId"] == "cert-monitor.yaml"
        assert params["group"] == "DEFAULT_GROUP"
        assert params["tenant"] == "monitoring"
        assert params["namespaceId"] == "monitoring"
        assert params["username"] == "nacos"
        assert params["password"] == "secret"

    @pytest.mark.asyncio
    async def test_raw_body(self, watcher):
        """Test a raw YAML body is returned as is."""
        assert await watcher.fetch() == DOCUMENT

    @pytest.mark.asyncio
    async def test_v2_envelope(self, watcher, nacos_server):
        """Test the v2 JSON envelope is unwrapped."""
        nacos_server.body = json.dumps({"code": 0, "message": "success", "data": DOCUMENT})
        assert await watcher.fetch() == DOCUMENT

    @pytest.mark.asyncio
    async def test_v2_error_envelope(self, watcher, nacos_server):
        """Test a non-zero envelope code is a fetch error."""
        nacos_server.body = json.dumps({"code": 20004, "message": "config not found", "data": None})
        with pytest.raises(ConfigFetchError, match="config not found"):
            await watcher.fetch()

    @pytest.mark.asyncio
    async def test_http_error(self, watcher, nacos_server):
        """Test a non-2xx response is a fetch error."""
        nacos_server.status_code = 500
        with pytest.raises(ConfigFetchError, match="HTTP 500"):
            await watcher.fetch()

    @pytest.mark.asyncio
    async def test_transport_error(self, nacos_context):
        """Test connection failures are fetch errors."""

        def refuse(request):
            raise httpx.ConnectError("Connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
        watcher = ConfigWatcher(nacos_context, client=client)
        try:
            with pytest.raises(ConfigFetchError):
                await watcher.fetch()
        finally:
            await client.aclose()


class TestConfigWatcherPoll:
    """Test applying configuration documents."""

    @pytest.mark.asyncio
    async def test_poll_applies_document(self, watcher, nacos_context, log_level_updater):
        """Test a new document replaces the live configuration."""
        assert await watcher.poll_once() is True

        config = nacos_context.config
        assert config.domains == ("a.example.com", "b.example.com")
        assert config.check_interval == 120
        assert config.max_concurrent_checks == 10
        assert config.log_level == "debug"
        # Missing fields keep their previous values
        assert config.connect_timeout == 10
        log_level_updater.assert_called_once_with("debug")
        assert watcher.last_md5 is not None
        assert watcher.state is WatcherState.POLLING

    @pytest.mark.asyncio
    async def test_unchanged_document_is_noop(self, watcher, nacos_context):
        """Test an unchanged hash does not touch the configuration."""
        handler = MagicMock(return_value=None)
        nacos_context.subscribe(handler)

        assert await watcher.poll_once() is True
        applied = nacos_context.config

        assert await watcher.poll_once() is False
        assert nacos_context.config is applied
        assert watcher.state is WatcherState.UNCHANGED
        handler.assert_called_once()

    @pytest.mark.asyncio
    async def test_invalid_yaml_keeps_config(self, watcher, nacos_server, nacos_context):
        """Test a syntax error leaves the previous configuration in place."""
        nacos_server.body = "domains: [unclosed"
        previous = nacos_context.config

        with pytest.raises(ConfigParseError):
            await watcher.poll_once()

        assert nacos_context.config is previous
        assert watcher.last_md5 is None
        assert watcher.state is WatcherState.POLLING

    @pytest.mark.asyncio
    async def test_non_mapping_document(self, watcher, nacos_server, nacos_context):
        """Test a top-level list is rejected."""
        nacos_server.body = "- a.example.com\n- b.example.com\n"
        previous = nacos_context.config

        with pytest.raises(ConfigParseError):
            await watcher.poll_once()

        assert nacos_context.config is previous

    @pytest.mark.asyncio
    async def test_empty_domains_rejected(self, watcher, nacos_server, nacos_context):
        """Test an empty domain list is rejected."""
        nacos_server.body = "domains: []\n"
        previous = nacos_context.config

        with pytest.raises(ConfigRejectedError):
            await watcher.poll_once()

        assert nacos_context.config is previous
        assert watcher.state is WatcherState.POLLING

    @pytest.mark.asyncio
    async def test_invalid_value_rejected_and_retried(self, watcher, nacos_server, nacos_context):
        """Test a rejected document is evaluated again on the next poll."""
        nacos_server.body = "domains: [a.example.com]\nsettings:\n  check_interval: -5\n"

        with pytest.raises(ConfigRejectedError):
            await watcher.poll_once()
        with pytest.raises(ConfigRejectedError):
            await watcher.poll_once()

        assert nacos_context.config.domains == ("old.example.com",)

        nacos_server.body = DOCUMENT
        assert await watcher.poll_once() is True


class TestConfigWatcherLifecycle:
    """Test starting and stopping the poll loop."""

    @pytest.mark.asyncio
    async def test_start_twice_single_task(self, watcher):
        """Test a second start does not spawn another loop."""
        await watcher.start()
        task = watcher._task

        await watcher.start()

        assert watcher._task is task
        assert watcher.is_running

    @pytest.mark.asyncio
    async def test_start_disabled(self, context):
        """Test the watcher does not start without an address."""
        watcher = ConfigWatcher(context)
        await watcher.start()
        assert watcher._task is None
        await watcher.close()

    @pytest.mark.asyncio
    async def test_stop(self, watcher):
        """Test stop ends a waiting loop."""
        await watcher.start()
        await asyncio.sleep(0.05)

        await asyncio.wait_for(watcher.stop(), timeout=1.0)

        assert watcher.state is WatcherState.STOPPED
        assert not watcher.is_running

    @pytest.mark.asyncio
    async def test_loop_backoff(self, watcher, nacos_server):
        """Test errors back off to at least 10 seconds and success uses the new interval."""
        nacos_server.status_code = 500
        delays = []

        async def fake_wait(seconds):
            delays.append(seconds)
            nacos_server.status_code = 200
            return len(delays) >= 2

        with patch.object(watcher, "_wait", side_effect=fake_wait):
            await watcher.start()
            await asyncio.wait_for(watcher._task, timeout=1.0)

        assert delays == [10, 15]
        assert watcher.get_status()["poll_count"] == 2
        assert watcher.get_status()["last_error"] is None

    @pytest.mark.asyncio
    async def test_status(self, watcher):
        """Test status reporting."""
        await watcher.poll_once()
        status = watcher.get_status()

        assert status["data_id"] == "cert-monitor.yaml"
        assert status["poll_count"] == 1
        assert status["last_md5"] == watcher.last_md5
        assert status["last_applied"] is not None
