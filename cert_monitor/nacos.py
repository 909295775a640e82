"""
Remote configuration polling for Certificate Monitor.
"""

import asyncio
import hashlib
import json
import time
from enum import Enum
from typing import Any, Dict, Optional

import httpx
import yaml

from cert_monitor.config import NacosSettings, merge_remote_document
from cert_monitor.context import MonitorContext
from cert_monitor.errors import ConfigFetchError, ConfigParseError, ConfigRejectedError
from cert_monitor.logger import get_logger, log_config_applied

MIN_ERROR_BACKOFF = 10


class WatcherState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    UNCHANGED = "unchanged"
    APPLYING = "applying"
    STOPPED = "stopped"


class ConfigWatcher:
    """
    Polls the Nacos configuration store and applies changed documents.

    Changes are detected by the MD5 of the raw document. A document that
    fails to parse or validate leaves the live configuration untouched and
    is evaluated again on the next poll.
    """

    def __init__(
        self,
        context: MonitorContext,
        nacos: Optional[NacosSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.context = context
        self.nacos = nacos or context.settings.nacos
        self._client = client
        self._owns_client = client is None
        self.logger = get_logger("nacos")

        self.state = WatcherState.IDLE
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

        self._last_md5: Optional[str] = None
        self._last_error: Optional[str] = None
        self._last_applied: Optional[float] = None
        self._poll_count = 0

    @property
    def last_md5(self) -> Optional[str]:
        return self._last_md5

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def url(self) -> str:
        addr = (self.nacos.addr or "").rstrip("/")
        if addr and "://" not in addr:
            addr = f"http://{addr}"
        return f"{addr}{self.nacos.path}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    def _build_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {
            "dataId": self.nacos.data_id or "",
            "group": self.nacos.group,
        }
        if self.nacos.namespace:
            # v1 names the namespace "tenant", v2 "namespaceId"
            params["tenant"] = self.nacos.namespace
            params["namespaceId"] = self.nacos.namespace
        if self.nacos.username:
            params["username"] = self.nacos.username
        if self.nacos.password:
            params["password"] = self.nacos.password
        return params

    async def start(self) -> None:
        """Start the poll loop."""
        if self.is_running:
            self.logger.warning("Nacos configuration listener is already running")
            return

        if not self.nacos.enabled:
            self.logger.warning("Nacos address or data id not configured, listener not started")
            return

        self._stop_event = asyncio.Event()
        self.state = WatcherState.POLLING
        self._task = asyncio.create_task(self._poll_loop())

        self.logger.info("Starting Nacos configuration listener")
        self.logger.debug(
            f"Configuration details: dataId={self.nacos.data_id}, "
            f"group={self.nacos.group}, namespace={self.nacos.namespace}"
        )
        self.logger.info(
            f"Initial polling interval: {self.context.config.nacos_poll_interval} seconds"
        )

    async def stop(self) -> None:
        """Stop the poll loop; an in-progress poll is allowed to complete."""
        if self._stop_event is not None:
            self._stop_event.set()

        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self.state = WatcherState.STOPPED
        self.logger.info("Stopped Nacos configuration listener")

    async def close(self) -> None:
        await self.stop()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(self) -> str:
        """
        Fetch the raw configuration document.

        Returns:
            YAML text of the document

        Raises:
            ConfigFetchError: On transport errors, non-2xx responses or an
                error envelope
        """
        timeout = httpx.Timeout(self.nacos.read_timeout, connect=self.nacos.connect_timeout)
        try:
            response = await self._get_client().get(
                self.url, params=self._build_params(), timeout=timeout
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ConfigFetchError(
                f"Failed to fetch configuration: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise ConfigFetchError(f"Failed to fetch configuration: {e}") from e

        return self._unwrap(response.text)

    def _unwrap(self, body: str) -> str:
        """Return the document from a v2 JSON envelope, or the body as is."""
        if not body.lstrip().startswith("{"):
            return body

        try:
            envelope = json.loads(body)
        except ValueError:
            return body

        if not isinstance(envelope, dict) or "code" not in envelope:
            return body

        if envelope.get("code") != 0 or envelope.get("data") is None:
            message = envelope.get("message") or "Unknown error"
            raise ConfigFetchError(f"Failed to fetch configuration: {message}")

        return str(envelope["data"])

    def _parse_document(self, content: str) -> Dict[str, Any]:
        try:
            document = yaml.safe_load(content)
        except yaml.YAMLError as e:
            self.logger.debug(f"Raw YAML content: {content}")
            raise ConfigParseError(f"YAML parsing failed: {e}") from e

        if not isinstance(document, dict):
            raise ConfigParseError(
                f"Invalid configuration format: expected mapping, got {type(document).__name__}"
            )
        self.logger.debug(f"Parsed YAML configuration: {document}")
        return document

    async def poll_once(self) -> bool:
        """
        Fetch the configuration once and apply it if it changed.

        Returns:
            True if a new configuration was applied

        Raises:
            ConfigFetchError: If the document could not be fetched
            ConfigParseError: If the document is not a YAML mapping
            ConfigRejectedError: If the document does not validate
        """
        self._poll_count += 1
        self.state = WatcherState.POLLING

        content = await self.fetch()
        current_md5 = hashlib.md5(content.encode("utf-8"), usedforsecurity=False).hexdigest()

        if current_md5 == self._last_md5:
            self.state = WatcherState.UNCHANGED
            self.logger.debug("Nacos configuration unchanged")
            return False

        self.state = WatcherState.APPLYING
        try:
            document = self._parse_document(content)
            new_config = merge_remote_document(self.context.config, document)
            self.context.replace_config(new_config)
        finally:
            self.state = WatcherState.POLLING

        self._last_md5 = current_md5
        self._last_applied = time.time()
        log_config_applied(self.logger, current_md5, len(new_config.domains))
        return True

    async def _wait(self, seconds: float) -> bool:
        if self._stop_event is None:
            await asyncio.sleep(seconds)
            return False
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _poll_loop(self) -> None:
        """Main poll loop."""
        while self._stop_event is not None and not self._stop_event.is_set():
            try:
                await self.poll_once()
                self._last_error = None
                # Poll interval may have just been changed by the document
                delay = self.context.config.nacos_poll_interval
            except asyncio.CancelledError:
                raise
            except (ConfigFetchError, ConfigParseError, ConfigRejectedError) as e:
                self._last_error = str(e)
                self.logger.error(f"Nacos configuration error: {e}")
                delay = max(self.context.config.nacos_poll_interval, MIN_ERROR_BACKOFF)
            except Exception as e:
                self._last_error = str(e)
                self.logger.error(f"Nacos configuration error: {e}", exc_info=True)
                delay = max(self.context.config.nacos_poll_interval, MIN_ERROR_BACKOFF)

            if await self._wait(delay):
                break

        self.state = WatcherState.STOPPED

    def get_status(self) -> Dict[str, Any]:
        """Get watcher status."""
        return {
            "state": self.state.value,
            "enabled": self.nacos.enabled,
            "running": self.is_running,
            "data_id": self.nacos.data_id,
            "group": self.nacos.group,
            "namespace": self.nacos.namespace,
            "last_md5": self._last_md5,
            "last_error": self._last_error,
            "last_applied": self._last_applied,
            "poll_count": self._poll_count,
        }
