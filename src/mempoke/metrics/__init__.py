"""
Prometheus metrics exported by the probes.

``ProbeMetrics`` is the handle passed to every component that records
something. It owns its ``CollectorRegistry`` and remembers which label sets
each node has produced, so that every series of a node can be removed once
the node leaves the fleet.
"""

import logging
import threading
from collections import defaultdict

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

logger = logging.getLogger(__name__)

DEFAULT_BUCKETS = (0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)


class ProbeMetrics:
    """Label-vector counters and histograms for node probes and discovery."""

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        buckets: tuple[float, ...] = DEFAULT_BUCKETS,
        process_metrics: bool = True,
    ):
        """
        Args:
            registry: Registry to register on, a private one by default
            buckets: Histogram buckets of response times, in seconds
            process_metrics: Also export process_* and python_info series
        """
        self.registry = registry or CollectorRegistry()
        if process_metrics:
            ProcessCollector(registry=self.registry)
            PlatformCollector(registry=self.registry)

        self.number_of_requests = Counter(
            "number_of_requests",
            "Number of total requests",
            ["cluster_name", "socket", "status", "type"],
            registry=self.registry,
        )
        self.response_time = Histogram(
            "response_time_seconds",
            "Response Times",
            ["cluster_name", "socket", "type"],
            buckets=buckets,
            registry=self.registry,
        )
        self.failure_probe = Counter(
            "failure_probe",
            "Number of failed connections or probes",
            ["cluster_name", "socket"],
            registry=self.registry,
        )
        self.failure_services_discovery = Counter(
            "failure_services_discovery",
            "Number of failed queries to the service registry",
            registry=self.registry,
        )

        self._lock = threading.Lock()
        # (cluster_name, socket) -> label values emitted for that node, per metric
        self._requests: dict[tuple[str, str], set[tuple[str, str]]] = defaultdict(set)
        self._response_times: dict[tuple[str, str], set[str]] = defaultdict(set)
        self._failures: set[tuple[str, str]] = set()
        # (cluster_name, socket) -> probe currently reporting for that node
        self._owners: dict[tuple[str, str], object] = {}

    def observe_request(
        self, cluster_name: str, socket: str, command_type: str, status: str, duration: float
    ) -> None:
        """Count one request and record its latency."""
        self.number_of_requests.labels(cluster_name, socket, status, command_type).inc()
        self.response_time.labels(cluster_name, socket, command_type).observe(duration)
        with self._lock:
            self._requests[(cluster_name, socket)].add((status, command_type))
            self._response_times[(cluster_name, socket)].add(command_type)

    def record_probe_failure(self, cluster_name: str, socket: str) -> None:
        self.failure_probe.labels(cluster_name, socket).inc()
        with self._lock:
            self._failures.add((cluster_name, socket))

    def record_discovery_failure(self) -> None:
        self.failure_services_discovery.inc()

    def remove_node(self, cluster_name: str, socket: str) -> None:
        """
        Remove every series labelled with ``cluster_name`` and ``socket``.

        Removing series that were never created, or already removed, is a no-op.
        """
        node = (cluster_name, socket)
        with self._lock:
            requests = self._requests.pop(node, set())
            response_times = self._response_times.pop(node, set())
            failed = node in self._failures
            self._failures.discard(node)

        for status, command_type in requests:
            self._remove(self.number_of_requests, cluster_name, socket, status, command_type)
        for command_type in response_times:
            self._remove(self.response_time, cluster_name, socket, command_type)
        if failed:
            self._remove(self.failure_probe, cluster_name, socket)

        logger.debug("Removed metrics of %s (%s)", socket, cluster_name)

    def claim_node(self, cluster_name: str, socket: str, owner: object) -> None:
        """Make ``owner`` the probe reporting for the node, replacing any previous one."""
        with self._lock:
            self._owners[(cluster_name, socket)] = owner

    def release_node(self, cluster_name: str, socket: str, owner: object) -> bool:
        """
        Remove the series of the node if ``owner`` still reports for it.

        A probe replaced by a newer one for the same node leaves the series in
        place.

        Returns:
            True when the series were removed
        """
        node = (cluster_name, socket)
        with self._lock:
            if self._owners.get(node) is not owner:
                logger.debug("Keep metrics of %s (%s), claimed by another probe", socket, cluster_name)
                return False
            del self._owners[node]

        self.remove_node(cluster_name, socket)
        return True

    @staticmethod
    def _remove(metric, *label_values: str) -> None:
        try:
            metric.remove(*label_values)
        except KeyError:
            logger.debug("Series %s already removed from %s", label_values, metric)

    def tracked_nodes(self) -> set[tuple[str, str]]:
        """Nodes that currently own at least one series."""
        with self._lock:
            return set(self._requests) | set(self._response_times) | set(self._failures)

    def get_metrics_text(self) -> str:
        """Get metrics in Prometheus text format."""
        return generate_latest(self.registry).decode("utf-8")
