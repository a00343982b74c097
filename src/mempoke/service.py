"""
MemPoke service runtime.

Wires settings, metrics, discovery, the token bucket and the orchestrator
together, serves the metrics endpoint and runs until a shutdown signal.
"""

import asyncio
import logging
import signal

from .config import ProbeSettings
from .discovery import ConsulClient
from .errors import RateLimitExceeded
from .metrics import ProbeMetrics
from .metrics.server import MetricsServer
from .probes import ProbeOrchestrator
from .ratelimit import TokenBucket

logger = logging.getLogger(__name__)

# Tokens added to the discovery bucket every second
DISCOVERY_QUANTUM = 1


class MemPokeService:
    """Long running probe service."""

    def __init__(self, settings: ProbeSettings, metrics: ProbeMetrics | None = None):
        if settings.token_cost > settings.bucket_capacity:
            raise RateLimitExceeded(settings.token_cost, settings.bucket_capacity)

        self.settings = settings
        self.metrics = metrics or ProbeMetrics()
        self.consul = ConsulClient(
            settings.consul_base_url,
            wait=settings.consul_wait,
            token=settings.consul_token,
        )
        self.bucket = TokenBucket(settings.bucket_capacity, DISCOVERY_QUANTUM)
        self.orchestrator = ProbeOrchestrator(
            self.consul,
            settings.services_tag,
            self.metrics,
            self.bucket,
            settings.token_cost,
            probe_config=settings.probe_config(),
        )
        self.metrics_server = MetricsServer(
            self.metrics,
            port=settings.http_port,
            host=settings.http_host,
            active_probes=lambda: len(self.orchestrator.active_nodes),
        )
        self._shutdown = asyncio.Event()

    def request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self._shutdown.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal handler for %s not supported", sig)

    async def serve(self) -> None:
        """Run until shutdown is requested or the orchestrator fails."""
        self._install_signal_handlers()
        await self.metrics_server.start()
        logger.info(
            "Service ready",
            extra={"consul": self.settings.consul_base_url, "tag": self.settings.services_tag},
        )

        orchestrator_task = asyncio.create_task(self.orchestrator.run(), name="orchestrator")
        shutdown_task = asyncio.create_task(self._shutdown.wait(), name="shutdown")
        try:
            done, _ = await asyncio.wait(
                {orchestrator_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED
            )
            if orchestrator_task in done:
                orchestrator_task.result()
        finally:
            for task in (orchestrator_task, shutdown_task):
                task.cancel()
            await asyncio.gather(orchestrator_task, shutdown_task, return_exceptions=True)
            await self.stop()

    async def stop(self) -> None:
        logger.info("Service shutting down")
        await self.orchestrator.stop()
        await self.metrics_server.stop()
        await self.consul.close()
