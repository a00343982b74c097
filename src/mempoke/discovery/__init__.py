"""Service discovery against the Consul catalog."""

from .consul import CONSUL_INDEX_HEADER, ConsulClient, parse_wait
from .core import ServiceNode, ServiceNodes

__all__ = [
    "CONSUL_INDEX_HEADER",
    "ConsulClient",
    "ServiceNode",
    "ServiceNodes",
    "parse_wait",
]
