"""
HTTP endpoint exposing the probe metrics to Prometheus.
"""

import logging
from collections.abc import Callable

from aiohttp import web, web_runner
from prometheus_client import CONTENT_TYPE_LATEST

from . import ProbeMetrics

logger = logging.getLogger(__name__)


class MetricsServer:
    """Serves ``/metrics`` and ``/health`` on an aiohttp application."""

    def __init__(
        self,
        metrics: ProbeMetrics,
        port: int = 8080,
        host: str = "0.0.0.0",
        active_probes: Callable[[], int] | None = None,
    ):
        self.metrics = metrics
        self.host = host
        self.port = port
        self._active_probes = active_probes
        self._runner: web_runner.AppRunner | None = None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/metrics", self._metrics_handler)
        app.router.add_get("/health", self._health_handler)
        return app

    async def start(self) -> None:
        self._runner = web_runner.AppRunner(self.create_app())
        await self._runner.setup()
        site = web_runner.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Metrics endpoint started on port %d", self.port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Metrics endpoint stopped")

    async def _metrics_handler(self, request: web.Request) -> web.Response:
        """Handle Prometheus metrics requests."""
        response = web.Response(body=self.metrics.get_metrics_text().encode("utf-8"))
        response.headers["Content-Type"] = CONTENT_TYPE_LATEST
        return response

    async def _health_handler(self, request: web.Request) -> web.Response:
        body = {"status": "alive"}
        if self._active_probes is not None:
            body["active_probes"] = self._active_probes()
        return web.json_response(body)
