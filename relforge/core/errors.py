"""Release management error taxonomy.

Every error carries a short ``message`` plus optional multi-line ``details``
shown by the CLI in a panel, and an ``exit_code`` the CLI exits with. Codes
start at 3 because click exits with 2 on a usage error.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .operations import Operation


class ReleaseError(Exception):
    """Base class for release management failures."""

    exit_code: int = 1

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(message)


class InvalidSpec(ReleaseError):
    """Raised when a desired state is malformed or contradictory.

    Always raised before any cluster mutation happens.
    """

    exit_code = 3


class NotFound(ReleaseError):
    """Raised for an unknown release or revision."""

    exit_code = 4


class ConflictError(ReleaseError):
    """Raised when a release was modified concurrently.

    The caller is expected to re-read the release and retry.
    """

    exit_code = 5


class OrchestrationError(ReleaseError):
    """Wraps a failure reported by the cluster while applying an operation.

    Attributes:
        operation: The operation that failed, once known
        applied: Operations that completed before the failure
    """

    exit_code = 6

    def __init__(
        self,
        message: str,
        details: str | None = None,
        *,
        operation: Operation | None = None,
        applied: list[Operation] | None = None,
    ):
        super().__init__(message, details)
        self.operation = operation
        self.applied = list(applied or [])

    @property
    def component(self) -> str | None:
        """Name of the component targeted by the failing operation."""
        return self.operation.component if self.operation else None


class OperationTimeout(OrchestrationError):
    """Raised when an operation did not finish within the caller's timeout.

    The operation may or may not have taken effect on the cluster.
    """
