"""Orchestration operations.

An operation is the only unit an ``OrchestrationClient`` accepts. Each one
targets a single component and either succeeds or fails as a whole.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .models import ComponentSpec


class OperationKind(Enum):
    """Kinds of orchestration actions."""

    CREATE_COMPONENT = "create"
    UPDATE_IMAGE = "update-image"
    UPDATE_CONFIG = "update-config"
    SCALE_REPLICAS = "scale"
    DELETE_COMPONENT = "delete"


@dataclass(frozen=True)
class Operation:
    """A single orchestration action against one component.

    Attributes:
        kind: What to do
        release: Release the component belongs to
        component: Target component name
        spec: Full desired component (create and config updates)
        image: New image reference (image updates)
        replicas: New replica count (scaling)
    """

    kind: OperationKind
    release: str
    component: str
    spec: ComponentSpec | None = None
    image: str | None = None
    replicas: int | None = None

    @classmethod
    def create(cls, release: str, spec: ComponentSpec) -> Operation:
        return cls(OperationKind.CREATE_COMPONENT, release, spec.name, spec=spec)

    @classmethod
    def update_image(cls, release: str, component: str, image: str) -> Operation:
        return cls(OperationKind.UPDATE_IMAGE, release, component, image=image)

    @classmethod
    def update_config(cls, release: str, spec: ComponentSpec) -> Operation:
        return cls(OperationKind.UPDATE_CONFIG, release, spec.name, spec=spec)

    @classmethod
    def scale(cls, release: str, component: str, replicas: int) -> Operation:
        return cls(OperationKind.SCALE_REPLICAS, release, component, replicas=replicas)

    @classmethod
    def delete(cls, release: str, component: str) -> Operation:
        return cls(OperationKind.DELETE_COMPONENT, release, component)

    def describe(self) -> str:
        """One-line summary for logs, plans and error reports."""
        match self.kind:
            case OperationKind.CREATE_COMPONENT:
                assert self.spec is not None
                return (
                    f"create {self.component} "
                    f"({self.spec.image}, replicas={self.spec.replicas})"
                )
            case OperationKind.UPDATE_IMAGE:
                return f"update {self.component} image -> {self.image}"
            case OperationKind.UPDATE_CONFIG:
                return f"update {self.component} ports/env/exposure"
            case OperationKind.SCALE_REPLICAS:
                return f"scale {self.component} -> {self.replicas} replicas"
            case OperationKind.DELETE_COMPONENT:
                return f"delete {self.component}"
        return f"{self.kind.value} {self.component}"
