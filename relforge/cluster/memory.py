"""In-memory cluster used for tests, dry runs and embedding."""

from __future__ import annotations

import threading
from typing_extensions import override

from loguru import logger

from relforge.cluster.base import OrchestrationClient
from relforge.core.errors import OrchestrationError
from relforge.core.models import ComponentState, LiveState
from relforge.core.operations import Operation, OperationKind


class InMemoryCluster(OrchestrationClient):
    """Fake cluster with upsert semantics and failure injection.

    Components become ready immediately unless ``auto_ready`` is False, in
    which case ``mark_ready()`` flips them.

    Attributes:
        applied: Every successfully applied operation, in order
    """

    def __init__(self, *, auto_ready: bool = True) -> None:
        self.auto_ready = auto_ready
        self.applied: list[Operation] = []
        self._releases: dict[str, dict[str, ComponentState]] = {}
        self._failures: dict[tuple[OperationKind, str], Exception] = {}
        self._lock = threading.Lock()

    def fail_on(
        self,
        kind: OperationKind,
        component: str,
        error: Exception | None = None,
    ) -> None:
        """Make the next ``kind`` operation on ``component`` fail once."""
        with self._lock:
            self._failures[(kind, component)] = error or RuntimeError(
                f"injected failure for {kind.value} {component}"
            )

    def mark_ready(self, release: str) -> None:
        """Report every component of a release as fully ready."""
        with self._lock:
            components = self._releases.get(release, {})
            for name, state in components.items():
                components[name] = state.model_copy(update={"ready_replicas": state.replicas})

    def _ready(self, replicas: int) -> int:
        return replicas if self.auto_ready else 0

    @override
    async def apply(self, operation: Operation) -> None:
        """Apply the operation to the in-memory component table."""
        with self._lock:
            failure = self._failures.pop((operation.kind, operation.component), None)
        if failure is not None:
            raise OrchestrationError(
                f"Cluster rejected: {operation.describe()}",
                details=str(failure),
                operation=operation,
            ) from failure

        with self._lock:
            components = self._releases.setdefault(operation.release, {})
            current = components.get(operation.component)

            match operation.kind:
                case OperationKind.CREATE_COMPONENT | OperationKind.UPDATE_CONFIG:
                    assert operation.spec is not None
                    spec = operation.spec
                    if current is not None and operation.kind is OperationKind.UPDATE_CONFIG:
                        # Config updates leave image and scale alone
                        spec = spec.model_copy(
                            update={"image": current.image, "replicas": current.replicas}
                        )
                    components[operation.component] = ComponentState.from_spec(
                        spec, ready_replicas=self._ready(spec.replicas)
                    )
                case OperationKind.UPDATE_IMAGE | OperationKind.SCALE_REPLICAS:
                    if current is None:
                        raise OrchestrationError(
                            f"Component '{operation.component}' does not exist",
                            operation=operation,
                        )
                    if operation.kind is OperationKind.UPDATE_IMAGE:
                        update = {
                            "image": operation.image,
                            "ready_replicas": self._ready(current.replicas),
                        }
                    else:
                        assert operation.replicas is not None
                        update = {
                            "replicas": operation.replicas,
                            "ready_replicas": self._ready(operation.replicas),
                        }
                    components[operation.component] = current.model_copy(update=update)
                case OperationKind.DELETE_COMPONENT:
                    components.pop(operation.component, None)

            self.applied.append(operation)

        logger.debug(f"[memory cluster] {operation.release}: {operation.describe()}")

    @override
    async def read_live_state(self, release: str) -> LiveState:
        with self._lock:
            return LiveState(release=release, components=dict(self._releases.get(release, {})))
