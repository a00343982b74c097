"""
Per-node probe task.

Supervises the connection to one memcached node: connect, probe at a fixed
interval, reconnect after a backoff on any failure, and remove the node's
metrics once stopped unless a newer probe of the same node has taken them
over. Stop requests are checked once per iteration.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from ..discovery import ServiceNode
from ..errors import ConnectionFault, ProtocolMismatch
from ..memcached import MemcachedClient
from ..metrics import ProbeMetrics

logger = logging.getLogger(__name__)

Connector = Callable[[str, int, float], Awaitable[MemcachedClient]]


class ProbeState(Enum):
    """Lifecycle of a probe task."""

    CONNECTING = "connecting"
    PROBING = "probing"
    BACKOFF = "backoff"
    STOPPED = "stopped"


@dataclass
class ProbeConfig:
    """Timing and payload of node probes."""

    # Pause between two successful probes
    probe_interval: float = 1.0
    # Deadline of each Set/Get command
    command_timeout: float = 1.0
    connect_timeout: float = 1.0
    # Pause before reconnecting after a failure
    reconnect_backoff: float = 0.5

    key: str = "mempoke"
    value: bytes = b"mempoke"
    ttl: int = 60


class ProbeTask:
    """Probe loop bound to a single node."""

    def __init__(
        self,
        node: ServiceNode,
        stop_event: asyncio.Event,
        metrics: ProbeMetrics,
        config: ProbeConfig | None = None,
        connector: Connector = MemcachedClient.connect,
    ):
        self.node = node
        self.metrics = metrics
        self.config = config or ProbeConfig()
        self.state = ProbeState.CONNECTING
        self.probes = 0
        self.failures = 0
        self._stop_event = stop_event
        self._connector = connector
        self._client: MemcachedClient | None = None

    @property
    def cluster_name(self) -> str:
        return self.node.service_name

    @property
    def socket(self) -> str:
        return self.node.socket

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    async def run(self) -> None:
        """Probe the node until the stop event fires or the task is cancelled."""
        logger.info("Start probing %s", self.node)
        self.metrics.claim_node(self.cluster_name, self.socket, self)
        try:
            while not self.stop_requested:
                if self._client is None:
                    await self._connect()
                else:
                    await self._probe()
        finally:
            await self._shutdown()

    async def _connect(self) -> None:
        self.state = ProbeState.CONNECTING
        try:
            self._client = await self._connector(
                self.node.ip, self.node.port, self.config.connect_timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning("Failed to connect to %s: %s", self.node, e or type(e).__name__)
            self._record_failure()
            await self._backoff()
            return

        self.state = ProbeState.PROBING
        logger.debug("Connected to %s", self.node)

    async def _probe(self) -> None:
        try:
            await self._client.probe(
                self.cluster_name,
                self.metrics,
                key=self.config.key,
                value=self.config.value,
                ttl=self.config.ttl,
                timeout=self.config.command_timeout,
            )
        except (ConnectionFault, ProtocolMismatch, OSError) as e:
            logger.warning("Probe of %s failed: %s", self.node, e)
            self._record_failure()
            await self._disconnect()
            await self._backoff()
            return

        self.probes += 1
        await self._pause(self.config.probe_interval)

    def _record_failure(self) -> None:
        self.failures += 1
        self.metrics.record_probe_failure(self.cluster_name, self.socket)

    async def _backoff(self) -> None:
        self.state = ProbeState.BACKOFF
        await self._pause(self.config.reconnect_backoff)

    async def _pause(self, delay: float) -> None:
        """Sleep ``delay`` seconds, waking up early when a stop is requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), delay)
        except asyncio.TimeoutError:
            return

    async def _disconnect(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.close()

    async def _shutdown(self) -> None:
        self.state = ProbeState.STOPPED
        try:
            await self._disconnect()
        finally:
            self.metrics.release_node(self.cluster_name, self.socket, self)
            logger.info("Stop probing %s", self.node)
