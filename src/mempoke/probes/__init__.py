"""Probe orchestration: one supervised task per discovered memcached node."""

from .orchestrator import ProbeHandle, ProbeOrchestrator
from .task import ProbeConfig, ProbeState, ProbeTask

__all__ = [
    "ProbeConfig",
    "ProbeHandle",
    "ProbeOrchestrator",
    "ProbeState",
    "ProbeTask",
]
