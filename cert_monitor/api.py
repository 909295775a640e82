"""
FastAPI application for Certificate Monitor.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, PlainTextResponse

from cert_monitor import __version__
from cert_monitor.context import MonitorContext
from cert_monitor.hot_reload import CertificateDirectoryWatcher
from cert_monitor.logger import get_logger
from cert_monitor.metrics import MetricsCollector
from cert_monitor.nacos import ConfigWatcher
from cert_monitor.scheduler import CheckScheduler

REDACTED = "***REDACTED***"


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan handler that suppresses CancelledError during shutdown."""
    logger = get_logger("api")
    logger.info("Certificate Monitor API started")
    try:
        yield
    except asyncio.CancelledError:
        # Expected when the server is stopped for a restart
        pass
    finally:
        logger.info("Certificate Monitor API shutting down")


def redact_settings(context: MonitorContext) -> Dict[str, Any]:
    """Current configuration as a dict with credentials removed."""
    config_dict: Dict[str, Any] = context.settings.model_dump(exclude={"monitoring"})
    config_dict["monitoring"] = context.config.model_dump()

    nacos = config_dict.get("nacos") or {}
    for key in ("username", "password"):
        if nacos.get(key):
            nacos[key] = REDACTED

    return config_dict


def create_app(
    context: MonitorContext,
    scheduler: CheckScheduler,
    metrics: MetricsCollector,
    config_watcher: Optional[ConfigWatcher] = None,
    directory_watcher: Optional[CertificateDirectoryWatcher] = None,
    lifespan_override: Optional[Any] = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        context: Shared runtime context
        scheduler: Check scheduler instance
        metrics: Metrics collector instance
        config_watcher: Remote configuration watcher, if enabled
        directory_watcher: Local certificate directory watcher, if enabled

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Certificate Monitor",
        description="TLS certificate expiry monitoring",
        version=__version__,
        lifespan=lifespan_override or lifespan,
    )

    logger = get_logger("api")

    @app.get("/metrics", response_class=PlainTextResponse)
    async def get_metrics() -> PlainTextResponse:
        try:
            metrics_data: str = metrics.get_metrics()
            return PlainTextResponse(content=metrics_data, media_type=metrics.get_content_type())
        except Exception as e:
            logger.error(f"Failed to generate metrics: {e}")
            raise HTTPException(status_code=500, detail="Failed to generate metrics") from e

    @app.get("/health", response_class=PlainTextResponse)
    async def get_liveness() -> PlainTextResponse:
        return PlainTextResponse(content="OK")

    @app.get("/healthz", response_class=JSONResponse)
    async def get_health() -> JSONResponse:
        try:
            health_status: Dict[str, Any] = {
                "scheduler": scheduler.get_status(),
                **metrics.get_registry_status(),
                "domains_configured": len(context.config.domains),
                "status": "healthy",
                "version": __version__,
            }
            if config_watcher is not None:
                health_status["config_watcher"] = config_watcher.get_status()
            if directory_watcher is not None:
                health_status["directory_watcher"] = directory_watcher.get_status()

            return JSONResponse(content=health_status)
        except Exception as e:
            logger.error(f"Failed to get health status: {e}")
            return JSONResponse(content={"status": "error", "error": str(e)}, status_code=500)

    @app.get("/check", response_class=JSONResponse)
    async def trigger_check() -> JSONResponse:
        try:
            logger.info("Manual check triggered via API")
            result = await scheduler.run_check()
            return JSONResponse(content=result.to_dict())
        except Exception as e:
            logger.error(f"Manual check failed: {e}")
            raise HTTPException(status_code=500, detail=f"Check failed: {e}") from e

    @app.get("/config", response_class=JSONResponse)
    async def get_config() -> JSONResponse:
        try:
            return JSONResponse(content=redact_settings(context))
        except Exception as e:
            logger.error(f"Failed to get configuration: {e}")
            raise HTTPException(status_code=500, detail="Failed to get configuration") from e

    return app
