"""Release lifecycle management.

``ReleaseManager`` installs, upgrades, rolls back and scales releases:

1. Validate the desired spec (no cluster mutation on invalid input)
2. Diff it against the cluster's live state
3. Apply the resulting operations strictly in order
4. Append the outcome to the release's history as a new revision

A failed operation aborts the remaining ones and records a Failed revision.
Partially applied changes are left in place; recovery is an explicit
rollback to a known-good revision.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from loguru import logger

from .errors import ConflictError, NotFound, OperationTimeout, OrchestrationError
from .models import LiveState, ReleaseRecord, ReleaseSpec, ReleaseStatus
from .operations import Operation
from .reconciler import reconcile

if TYPE_CHECKING:
    from relforge.cluster.base import OrchestrationClient
    from relforge.storage.base import StateStore

DEFAULT_APPLY_TIMEOUT = 120.0


class ReleaseState(Enum):
    """Lifecycle state of a release."""

    ABSENT = "absent"
    INSTALLING = "installing"
    ACTIVE = "active"
    UPGRADING = "upgrading"
    ROLLING_BACK = "rolling-back"
    FAILED = "failed"


@dataclass
class ReleaseResult:
    """Outcome of an install, upgrade, rollback or scale.

    Attributes:
        record: The persisted record, or the record that would be written
                (status PENDING) for a dry run
        operations: Operations applied, or planned for a dry run
        dry_run: Whether anything was actually applied
    """

    record: ReleaseRecord
    operations: list[Operation] = field(default_factory=list)
    dry_run: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.operations)


@dataclass
class ReleaseOverview:
    """Current record, lifecycle state and live state of a release."""

    record: ReleaseRecord
    state: ReleaseState
    live: LiveState


class ReleaseManager:
    """Coordinates reconciliation, cluster operations and release history.

    Operations on different releases are independent. For one release, a
    second call while another is in progress fails fast with
    ``ConflictError``; across processes the store's optimistic append is
    what serializes writers.
    """

    def __init__(
        self,
        store: StateStore,
        client: OrchestrationClient,
        *,
        apply_timeout: float | None = DEFAULT_APPLY_TIMEOUT,
    ) -> None:
        """Initialize the release manager.

        Args:
            store: Release history backend
            client: Cluster backend
            apply_timeout: Seconds allowed per operation, None for no limit
        """
        self.store = store
        self.client = client
        self.apply_timeout = apply_timeout
        self._in_flight: dict[str, ReleaseState] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # State Machine
    # =========================================================================

    @contextmanager
    def _transition(
        self, name: str, state: ReleaseState, dry_run: bool = False
    ) -> Iterator[None]:
        if dry_run:
            yield
            return

        with self._lock:
            busy = self._in_flight.get(name)
            if busy is not None:
                raise ConflictError(
                    f"Release '{name}' is busy ({busy.value})",
                    details="Another operation on this release is in progress. "
                    "Retry once it has finished.",
                )
            self._in_flight[name] = state

        logger.info(f"Release '{name}': {state.value}")
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.pop(name, None)

    async def state(self, name: str) -> ReleaseState:
        """Current lifecycle state of a release."""
        with self._lock:
            busy = self._in_flight.get(name)
        if busy is not None:
            return busy

        records = await self.store.history(name, limit=1)
        if not records:
            return ReleaseState.ABSENT
        if records[0].status is ReleaseStatus.FAILED:
            return ReleaseState.FAILED
        return ReleaseState.ACTIVE

    # =========================================================================
    # Lifecycle Operations
    # =========================================================================

    async def install(self, spec: ReleaseSpec, *, dry_run: bool = False) -> ReleaseResult:
        """Install a new release.

        Raises:
            InvalidSpec: If the spec is invalid
            ConflictError: If the release already exists or is busy
            OrchestrationError: If an operation fails; revision 1 is recorded Failed
        """
        spec.ensure_valid()
        with self._transition(spec.name, ReleaseState.INSTALLING, dry_run):
            if await self.store.latest_revision(spec.name):
                raise ConflictError(
                    f"Release '{spec.name}' already exists",
                    details=f"Use 'upgrade {spec.name}' to change it.",
                )
            operations = reconcile(spec, LiveState.empty(spec.name))
            return await self._execute(
                spec,
                operations,
                base_revision=0,
                status=ReleaseStatus.APPLIED,
                description="Install complete",
                dry_run=dry_run,
            )

    async def upgrade(
        self,
        spec: ReleaseSpec,
        *,
        dry_run: bool = False,
        description: str = "Upgrade complete",
    ) -> ReleaseResult:
        """Move an active release to a new desired spec.

        Raises:
            InvalidSpec: If the spec is invalid
            NotFound: If the release was never installed
            ConflictError: If the release is Failed, busy, or changed concurrently
            OrchestrationError: If an operation fails; a Failed revision is recorded
        """
        spec.ensure_valid()
        with self._transition(spec.name, ReleaseState.UPGRADING, dry_run):
            current = await self.store.get_current(spec.name)
            if current.status is ReleaseStatus.FAILED:
                raise ConflictError(
                    f"Release '{spec.name}' is in Failed state",
                    details=(
                        f"Revision {current.revision}: {current.description}\n"
                        f"Roll back to a known-good revision first: "
                        f"relforge rollback {spec.name} <revision>"
                    ),
                )
            return await self._reconcile(
                spec, current, ReleaseStatus.APPLIED, description, dry_run
            )

    async def rollback(
        self,
        name: str,
        revision: int | None = None,
        *,
        dry_run: bool = False,
    ) -> ReleaseResult:
        """Re-apply the spec recorded at an earlier revision.

        The rollback is appended as a new revision; history never rewinds.

        Args:
            name: Release name
            revision: Target revision, defaults to the one before the latest

        Raises:
            NotFound: If the release or target revision does not exist
        """
        with self._transition(name, ReleaseState.ROLLING_BACK, dry_run):
            current = await self.store.get_current(name)
            target_revision = revision if revision is not None else current.revision - 1
            if target_revision < 1:
                raise NotFound(
                    f"Release '{name}' has no previous revision to roll back to"
                )
            target = await self.store.get_revision(name, target_revision)
            spec = target.spec.model_copy(update={"revision": 0})
            spec.ensure_valid()
            return await self._reconcile(
                spec,
                current,
                ReleaseStatus.ROLLED_BACK,
                f"Rollback to {target_revision}",
                dry_run,
            )

    async def scale(
        self,
        name: str,
        component: str,
        replicas: int,
        *,
        dry_run: bool = False,
    ) -> ReleaseResult:
        """Change one component's replica count, leaving the rest untouched.

        Raises:
            NotFound: If the release or component does not exist
            InvalidSpec: If the replica count is negative
        """
        current = await self.store.get_current(name)
        spec = current.spec.with_replicas(component, replicas)
        return await self.upgrade(
            spec, dry_run=dry_run, description=f"Scale {component} to {replicas}"
        )

    async def plan(self, spec: ReleaseSpec) -> list[Operation]:
        """Operations an install or upgrade to ``spec`` would apply right now."""
        spec.ensure_valid()
        live = await self.client.read_live_state(spec.name)
        return reconcile(spec, live)

    # =========================================================================
    # Queries
    # =========================================================================

    async def history(self, name: str, limit: int | None = None) -> list[ReleaseRecord]:
        """Release history, most recent first.

        Raises:
            NotFound: If the release has no history
        """
        records = await self.store.history(name, limit)
        if not records:
            raise NotFound(f"Release '{name}' not found")
        return records

    async def status(self, name: str) -> ReleaseOverview:
        """Current record, lifecycle state and live state of a release."""
        record = await self.store.get_current(name)
        live = await self.client.read_live_state(name)
        return ReleaseOverview(record=record, state=await self.state(name), live=live)

    async def list_releases(self) -> list[ReleaseRecord]:
        """Current record of every known release."""
        return [await self.store.get_current(n) for n in await self.store.list_releases()]

    async def wait_until_ready(
        self,
        name: str,
        timeout: float = 300.0,
        interval: float = 2.0,
    ) -> LiveState:
        """Poll the cluster until every component of a release is ready.

        Raises:
            OperationTimeout: If the release is not ready within ``timeout``
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            live = await self.client.read_live_state(name)
            if live.ready:
                return live
            if loop.time() >= deadline:
                pending = [n for n, s in live.components.items() if not s.ready]
                raise OperationTimeout(
                    f"Release '{name}' not ready after {timeout:g}s",
                    details=f"Components not ready: {', '.join(pending)}",
                )
            await asyncio.sleep(interval)

    # =========================================================================
    # Execution
    # =========================================================================

    async def _reconcile(
        self,
        spec: ReleaseSpec,
        current: ReleaseRecord,
        status: ReleaseStatus,
        description: str,
        dry_run: bool,
    ) -> ReleaseResult:
        live = await self.client.read_live_state(spec.name)
        operations = reconcile(spec, live)
        if not operations:
            logger.info(f"Release '{spec.name}' already matches the desired state")
        return await self._execute(
            spec,
            operations,
            base_revision=current.revision,
            status=status,
            description=description,
            dry_run=dry_run,
        )

    async def _apply(self, operation: Operation) -> None:
        try:
            await asyncio.wait_for(self.client.apply(operation), timeout=self.apply_timeout)
        except TimeoutError as e:
            raise OperationTimeout(
                f"Timed out after {self.apply_timeout:g}s: {operation.describe()}",
                details="The operation may or may not have taken effect. "
                "Re-applying is safe.",
                operation=operation,
            ) from e
        except OrchestrationError:
            raise
        except Exception as e:
            raise OrchestrationError(
                f"Cluster failure: {operation.describe()}",
                details=str(e),
                operation=operation,
            ) from e

    async def _execute(
        self,
        spec: ReleaseSpec,
        operations: list[Operation],
        *,
        base_revision: int,
        status: ReleaseStatus,
        description: str,
        dry_run: bool,
    ) -> ReleaseResult:
        if dry_run:
            planned = ReleaseRecord(spec=spec, description=description)
            return ReleaseResult(
                planned.with_revision(base_revision + 1), operations, dry_run=True
            )

        applied: list[Operation] = []
        for operation in operations:
            try:
                await self._apply(operation)
            except OrchestrationError as e:
                raise await self._record_failure(
                    spec, operation, e, applied, base_revision
                ) from e
            applied.append(operation)
            logger.info(f"Release '{spec.name}': {operation.describe()}")

        record = ReleaseRecord(spec=spec, status=status, description=description)
        revision = await self.store.append(record, base_revision)
        logger.info(f"Release '{spec.name}' revision {revision}: {description}")
        return ReleaseResult(record.with_revision(revision), operations)

    async def _record_failure(
        self,
        spec: ReleaseSpec,
        operation: Operation,
        error: OrchestrationError,
        applied: list[Operation],
        base_revision: int,
    ) -> OrchestrationError:
        """Record a Failed revision and build the error reported to the caller."""
        cause = error.details or error.message
        record = ReleaseRecord(
            spec=spec,
            status=ReleaseStatus.FAILED,
            description=f"{operation.describe()} failed: {cause}"[:200],
        )

        lines = [
            f"Operation: {operation.describe()}",
            f"Component: {operation.component}",
            f"Cause: {cause}",
        ]
        if applied:
            lines.append(
                "Applied before the failure (not reverted): "
                + "; ".join(op.describe() for op in applied)
            )
        try:
            revision = await self.store.append(record, base_revision)
            lines.append(
                f"Recorded as Failed revision {revision}. Recover with: "
                f"relforge rollback {spec.name} <revision>"
            )
        except ConflictError as conflict:
            logger.warning(f"Could not record failure of '{spec.name}': {conflict.message}")
            lines.append("The failure could not be recorded: the release changed concurrently.")

        logger.warning(f"Release '{spec.name}' failed: {operation.describe()}: {cause}")
        return type(error)(
            f"Operation failed on component '{operation.component}'",
            details="\n".join(lines),
            operation=operation,
            applied=applied,
        )
