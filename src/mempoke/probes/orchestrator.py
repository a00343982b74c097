"""
Probe orchestrator.

Polls the catalog through the token bucket and reconciles each snapshot with
the running probes: a probe task is started for every new node and stopped
for every node that is gone. The map of running probes is owned by this loop
alone.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from .task import ProbeConfig, ProbeTask
from ..discovery import ServiceNode, ServiceNodes
from ..errors import DiscoveryQueryFailed
from ..metrics import ProbeMetrics
from ..ratelimit import TokenBucket

logger = logging.getLogger(__name__)


class Discovery(Protocol):
    async def list_matching_nodes(self, prev_index: int, tag: str) -> ServiceNodes: ...


TaskFactory = Callable[[ServiceNode, asyncio.Event], Any]


@dataclass
class ProbeHandle:
    """Running probe of one node."""

    node: ServiceNode
    stop_event: asyncio.Event
    task: asyncio.Task

    @property
    def key(self) -> str:
        return self.node.key


class ProbeOrchestrator:
    """Keeps exactly one probe task running per discovered node."""

    def __init__(
        self,
        discovery: Discovery,
        tag: str,
        metrics: ProbeMetrics,
        bucket: TokenBucket,
        token_cost: int,
        probe_config: ProbeConfig | None = None,
        task_factory: TaskFactory | None = None,
    ):
        self.discovery = discovery
        self.tag = tag
        self.metrics = metrics
        self.bucket = bucket
        self.token_cost = token_cost
        self.probe_config = probe_config or ProbeConfig()
        self._task_factory = task_factory or self._default_task_factory
        self._probes: dict[str, ProbeHandle] = {}
        # Probes signalled to stop whose task has not finished yet
        self._retiring: set[asyncio.Task] = set()
        self._index = 0
        self._running = False
        self._stop_requested = asyncio.Event()

        logger.debug("Create a probe orchestrator for services with tag %s", tag)

    def _default_task_factory(self, node: ServiceNode, stop_event: asyncio.Event) -> ProbeTask:
        return ProbeTask(node, stop_event, self.metrics, self.probe_config)

    @property
    def index(self) -> int:
        return self._index

    @property
    def active_nodes(self) -> set[str]:
        return set(self._probes)

    def get_handle(self, key: str) -> ProbeHandle | None:
        return self._probes.get(key)

    async def run(self) -> None:
        """Poll and reconcile until ``stop`` is called."""
        if self._running:
            raise RuntimeError("Probe orchestrator loop is already running")

        self._running = True
        logger.info("Watching services with tag %s", self.tag)
        try:
            while not self._stop_requested.is_set():
                await self.poll_once()
        finally:
            self._running = False

    async def poll_once(self) -> ServiceNodes | None:
        """
        Run one discovery cycle.

        Returns:
            The snapshot reconciled, or None when discovery failed or the
            orchestrator is stopping
        """
        await self.bucket.wait_for(self.token_cost)

        try:
            snapshot = await self.discovery.list_matching_nodes(self._index, self.tag)
        except DiscoveryQueryFailed as e:
            logger.error("Failed to get list of matching nodes: %s", e)
            self.metrics.record_discovery_failure()
            self._index = 0
            return None

        if self._stop_requested.is_set():
            logger.debug("Discard snapshot at index %s received while stopping", snapshot.index)
            return None

        self._index = snapshot.index
        self.reconcile(snapshot)
        return snapshot

    def reconcile(self, snapshot: ServiceNodes) -> tuple[list[str], list[str]]:
        """
        Start probes for new nodes and stop probes of vanished ones.

        Returns:
            Keys started and keys stopped
        """
        started = [
            self._start_probe(node).key
            for key, node in snapshot.nodes.items()
            if key not in self._probes
        ]

        stopped = [key for key in list(self._probes) if key not in snapshot.nodes]
        for key in stopped:
            self.stop_probe(key)

        if started or stopped:
            logger.info(
                "Reconciled %d nodes: %d started, %d stopped",
                len(snapshot),
                len(started),
                len(stopped),
            )
        return started, stopped

    def _start_probe(self, node: ServiceNode) -> ProbeHandle:
        logger.debug("Start to watch node %s", node)
        stop_event = asyncio.Event()
        task = asyncio.create_task(
            self._task_factory(node, stop_event).run(), name=f"probe-{node.key}"
        )
        handle = ProbeHandle(node=node, stop_event=stop_event, task=task)
        task.add_done_callback(lambda t, h=handle: self._on_task_done(h, t))
        self._probes[node.key] = handle
        return handle

    def stop_probe(self, key: str) -> bool:
        """Signal the probe of ``key`` to stop without waiting for it."""
        handle = self._probes.pop(key, None)
        if handle is None:
            logger.warning("No running probe to stop for %s", key)
            return False

        if handle.stop_event.is_set():
            logger.warning("Probe of %s was already asked to stop", key)
        else:
            logger.debug("Stop watching node %s", key)
            handle.stop_event.set()
        if not handle.task.done():
            self._retiring.add(handle.task)
        return True

    def _on_task_done(self, handle: ProbeHandle, task: asyncio.Task) -> None:
        self._retiring.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Probe of %s crashed", handle.key, exc_info=task.exception()
            )

        # A probe that ended on its own is forgotten so the next snapshot restarts it
        if self._probes.get(handle.key) is handle:
            del self._probes[handle.key]

    async def stop(self, timeout: float | None = 5.0) -> None:
        """Stop polling, signal every probe and wait for their teardown."""
        self._stop_requested.set()

        handles = list(self._probes.values())
        for handle in handles:
            self.stop_probe(handle.key)

        tasks = [task for task in self._retiring if not task.done()]
        if not tasks:
            return

        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Stopped %d probes", len(tasks))
