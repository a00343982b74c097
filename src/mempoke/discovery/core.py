"""
Discovery data model.

A ``ServiceNodes`` snapshot is produced by each successful catalog poll and
fully replaces the previous one.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ServiceNode:
    """One instance of a service registered in the catalog."""

    service_name: str
    ip: str
    port: int

    @property
    def key(self) -> str:
        """Identity used to reconcile probes against snapshots."""
        return f"{self.service_name}:{self.ip}:{self.port}"

    @property
    def socket(self) -> str:
        return f"{self.ip}:{self.port}"

    def __str__(self) -> str:
        return self.key


@dataclass
class ServiceNodes:
    """Nodes of every matching service, with the catalog index they were read at."""

    index: int = 0
    nodes: dict[str, ServiceNode] = field(default_factory=dict)

    def add(self, node: ServiceNode) -> None:
        self.nodes[node.key] = node

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, key: object) -> bool:
        return key in self.nodes
