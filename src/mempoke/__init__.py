"""
MemPoke: memcached fleet prober.

Discovers memcached nodes from the Consul catalog and keeps one probe task
per node tagged for probing, exporting latency and status as Prometheus
metrics.
"""

__version__ = "0.4.0"
