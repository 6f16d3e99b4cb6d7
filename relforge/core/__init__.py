"""Release model, reconciliation and lifecycle management."""

from .errors import (
    ConflictError,
    InvalidSpec,
    NotFound,
    OperationTimeout,
    OrchestrationError,
    ReleaseError,
)
from .loader import load_release, parse_release
from .manager import ReleaseManager, ReleaseOverview, ReleaseResult, ReleaseState
from .models import (
    ComponentSpec,
    ComponentState,
    Exposure,
    LiveState,
    ReleaseRecord,
    ReleaseSpec,
    ReleaseStatus,
)
from .operations import Operation, OperationKind
from .reconciler import reconcile

__all__ = [
    "ReleaseManager",
    "ReleaseResult",
    "ReleaseOverview",
    "ReleaseState",
    "reconcile",
    "load_release",
    "parse_release",
    "Operation",
    "OperationKind",
    # Data model
    "ComponentSpec",
    "ComponentState",
    "Exposure",
    "LiveState",
    "ReleaseRecord",
    "ReleaseSpec",
    "ReleaseStatus",
    # Errors
    "ReleaseError",
    "InvalidSpec",
    "NotFound",
    "ConflictError",
    "OrchestrationError",
    "OperationTimeout",
]
