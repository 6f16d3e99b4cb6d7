"""Abstract orchestration client interface.

Defines the contract the release manager needs from a cluster backend.
Implementations must give ``apply`` upsert semantics: re-applying a create,
image update, config update or scale that already took effect (for example
after a crash or a timeout) must not duplicate resources.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from relforge.core.models import LiveState
from relforge.core.operations import Operation


class OrchestrationClient(ABC):
    """Abstract base class for cluster backends.

    All methods are async; use ``run_sync()`` to call from synchronous code.
    """

    @abstractmethod
    async def apply(self, operation: Operation) -> None:
        """Apply one operation to the cluster.

        Args:
            operation: Operation to apply

        Raises:
            OrchestrationError: If the cluster rejected or failed the operation
        """
        ...

    @abstractmethod
    async def read_live_state(self, release: str) -> LiveState:
        """Read what currently exists in the cluster for a release.

        Args:
            release: Release name

        Returns:
            LiveState, empty when nothing exists for the release

        Raises:
            OrchestrationError: If the cluster could not be queried
        """
        ...
