"""Cluster abstraction layer.

The release manager only talks to an ``OrchestrationClient``. Two backends
ship with relforge: an in-memory fake and a kr8s-based Kubernetes client.

Example:
    from relforge.cluster import InMemoryCluster
    from relforge.utils import run_sync

    cluster = InMemoryCluster()
    live = run_sync(cluster.read_live_state("webapp"))
"""

from .base import OrchestrationClient
from .kr8s_client import Kr8sOrchestrationClient
from .memory import InMemoryCluster

__all__ = [
    "OrchestrationClient",
    "InMemoryCluster",
    "Kr8sOrchestrationClient",
]
