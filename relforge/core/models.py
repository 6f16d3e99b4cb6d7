"""Release data model.

Desired state (``ReleaseSpec``/``ComponentSpec``), persisted history entries
(``ReleaseRecord``) and the cluster's observed state (``LiveState``).

All models are frozen. A new ``ReleaseSpec`` is derived with
``model_copy(update=...)`` rather than mutated in place.
"""

from __future__ import annotations

import re
from collections import Counter
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import InvalidSpec, NotFound

# Kubernetes object names are DNS-1123 labels
NAME_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
MAX_NAME_LENGTH = 63

MIN_PORT = 1
MAX_PORT = 65535


class Exposure(Enum):
    """How a component's ports are exposed."""

    INTERNAL = "internal"  # ClusterIP service
    LOADBALANCED = "loadbalanced"  # LoadBalancer service

    @classmethod
    def parse(cls, value: Any) -> Exposure:
        """Parse user input, accepting Kubernetes service type spellings."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("_", "").replace("-", "")
        aliases = {
            "internal": cls.INTERNAL,
            "clusterip": cls.INTERNAL,
            "loadbalanced": cls.LOADBALANCED,
            "loadbalancer": cls.LOADBALANCED,
        }
        if normalized not in aliases:
            raise ValueError(
                f"unknown exposure '{value}' (expected one of: internal, loadbalanced)"
            )
        return aliases[normalized]


class ReleaseStatus(Enum):
    """Status of a persisted release revision."""

    PENDING = "pending"  # Built but not yet persisted
    APPLIED = "applied"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


class ComponentSpec(BaseModel):
    """Desired state of one workload in a release."""

    model_config = ConfigDict(frozen=True)

    name: str
    image: str
    replicas: int = 1
    ports: tuple[int, ...] = ()
    env: dict[str, str] = Field(default_factory=dict)
    exposure: Exposure = Exposure.INTERNAL

    @field_validator("exposure", mode="before")
    @classmethod
    def _parse_exposure(cls, value: Any) -> Exposure:
        return Exposure.parse(value)

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, value: Any) -> Any:
        # YAML turns `DEBUG: true` into a bool; container env is always text
        if isinstance(value, dict):
            return {str(k): _stringify(v) for k, v in value.items()}
        return value

    def problems(self) -> list[str]:
        """Return human-readable validation problems for this component."""
        problems = []
        if not NAME_PATTERN.match(self.name) or len(self.name) > MAX_NAME_LENGTH:
            problems.append(
                f"component name '{self.name}' must be a lowercase DNS label "
                f"(a-z, 0-9, '-', at most {MAX_NAME_LENGTH} characters)"
            )
        if not self.image.strip():
            problems.append(f"component '{self.name}' has an empty image reference")
        elif any(c.isspace() for c in self.image):
            problems.append(
                f"component '{self.name}' image '{self.image}' contains whitespace"
            )
        if self.replicas < 0:
            problems.append(
                f"component '{self.name}' has negative replica count {self.replicas}"
            )
        for port in self.ports:
            if not MIN_PORT <= port <= MAX_PORT:
                problems.append(
                    f"component '{self.name}' port {port} is outside "
                    f"{MIN_PORT}-{MAX_PORT}"
                )
        if self.exposure is Exposure.LOADBALANCED and not self.ports:
            problems.append(
                f"component '{self.name}' is loadbalanced but declares no ports to expose"
            )
        duplicate_ports = [p for p, n in Counter(self.ports).items() if n > 1]
        if duplicate_ports:
            problems.append(
                f"component '{self.name}' declares duplicate ports {duplicate_ports}"
            )
        if any(not key.strip() for key in self.env):
            problems.append(
                f"component '{self.name}' has an empty environment variable name"
            )
        return problems


class ReleaseSpec(BaseModel):
    """Desired state of a whole release.

    Component order is declaration order; the reconciler relies on it to
    create components predictably.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    components: tuple[ComponentSpec, ...] = ()
    revision: int = 0

    def component(self, name: str) -> ComponentSpec | None:
        """Look up a component by name."""
        return next((c for c in self.components if c.name == name), None)

    @property
    def component_names(self) -> list[str]:
        return [c.name for c in self.components]

    def ensure_valid(self) -> None:
        """Validate the whole release.

        Raises:
            InvalidSpec: Listing every problem found
        """
        problems = []
        if not NAME_PATTERN.match(self.name) or len(self.name) > MAX_NAME_LENGTH:
            problems.append(
                f"release name '{self.name}' must be a lowercase DNS label "
                f"(a-z, 0-9, '-', at most {MAX_NAME_LENGTH} characters)"
            )
        duplicates = [n for n, count in Counter(self.component_names).items() if count > 1]
        for name in duplicates:
            problems.append(f"component name '{name}' is declared more than once")
        for component in self.components:
            problems.extend(component.problems())

        if problems:
            raise InvalidSpec(
                f"Release '{self.name}' is invalid",
                details="\n".join(f"• {p}" for p in problems),
            )

    def with_replicas(self, component_name: str, replicas: int) -> ReleaseSpec:
        """Return a new spec with one component's replica count changed.

        Raises:
            NotFound: If the component is not part of this release
        """
        if self.component(component_name) is None:
            raise NotFound(
                f"Component '{component_name}' not found in release '{self.name}'",
                details=f"Known components: {', '.join(self.component_names) or '(none)'}",
            )
        components = tuple(
            c.model_copy(update={"replicas": replicas}) if c.name == component_name else c
            for c in self.components
        )
        return self.model_copy(update={"components": components})

    def same_state(self, other: ReleaseSpec) -> bool:
        """Check whether two specs describe the same desired state.

        Revision numbers are ignored.
        """
        return self.name == other.name and self.components == other.components


class ReleaseRecord(BaseModel):
    """One entry in a release's append-only history."""

    model_config = ConfigDict(frozen=True)

    spec: ReleaseSpec
    status: ReleaseStatus = ReleaseStatus.PENDING
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    description: str = ""

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def revision(self) -> int:
        return self.spec.revision

    def with_revision(self, revision: int) -> ReleaseRecord:
        """Return a copy stamped with the given revision."""
        return self.model_copy(
            update={"spec": self.spec.model_copy(update={"revision": revision})}
        )


class ComponentState(BaseModel):
    """What the cluster reports for one component."""

    model_config = ConfigDict(frozen=True)

    image: str
    replicas: int
    ready_replicas: int = 0
    ports: tuple[int, ...] = ()
    env: dict[str, str] = Field(default_factory=dict)
    exposure: Exposure = Exposure.INTERNAL

    @property
    def ready(self) -> bool:
        return self.ready_replicas >= self.replicas

    @classmethod
    def from_spec(cls, spec: ComponentSpec, ready_replicas: int | None = None) -> ComponentState:
        return cls(
            image=spec.image,
            replicas=spec.replicas,
            ready_replicas=spec.replicas if ready_replicas is None else ready_replicas,
            ports=spec.ports,
            env=dict(spec.env),
            exposure=spec.exposure,
        )


class LiveState(BaseModel):
    """Observed state of a release, keyed by component name in creation order."""

    model_config = ConfigDict(frozen=True)

    release: str
    components: dict[str, ComponentState] = Field(default_factory=dict)

    @property
    def ready(self) -> bool:
        return all(state.ready for state in self.components.values())

    @classmethod
    def empty(cls, release: str) -> LiveState:
        return cls(release=release)

    @classmethod
    def of(cls, spec: ReleaseSpec) -> LiveState:
        """Build the live state a fully-rolled-out spec would produce."""
        return cls(
            release=spec.name,
            components={c.name: ComponentState.from_spec(c) for c in spec.components},
        )
