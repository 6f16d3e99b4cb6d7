"""Desired-vs-live diffing.

``reconcile()`` turns a desired ``ReleaseSpec`` and the cluster's ``LiveState``
into the ordered operations that move the cluster to the desired state:

1. Create components missing from the cluster, in declaration order.
2. For components on both sides, in declaration order: image update,
   then config update (ports/env/exposure), then scaling. The image goes
   first so scaling never multiplies instances of a stale image.
3. Delete components no longer desired, last and in reverse creation
   order, so dependencies outlive their dependents.

Declaration order is trusted as the dependency order; no dependency graph
is inferred.
"""

from __future__ import annotations

from loguru import logger

from .models import ComponentSpec, ComponentState, LiveState, ReleaseSpec
from .operations import Operation


def _config_differs(desired: ComponentSpec, live: ComponentState) -> bool:
    return (
        tuple(desired.ports) != tuple(live.ports)
        or dict(desired.env) != dict(live.env)
        or desired.exposure != live.exposure
    )


def reconcile(desired: ReleaseSpec, live: LiveState) -> list[Operation]:
    """Compute the operations needed to reach ``desired`` from ``live``.

    Args:
        desired: Target release state
        live: Current observed state of the release

    Returns:
        Ordered operations; empty when nothing differs
    """
    release = desired.name
    desired_names = set(desired.component_names)

    creates: list[Operation] = []
    updates: list[Operation] = []

    for component in desired.components:
        current = live.components.get(component.name)
        if current is None:
            creates.append(Operation.create(release, component))
            continue

        if component.image != current.image:
            updates.append(Operation.update_image(release, component.name, component.image))
        if _config_differs(component, current):
            updates.append(Operation.update_config(release, component))
        if component.replicas != current.replicas:
            updates.append(Operation.scale(release, component.name, component.replicas))

    deletes = [
        Operation.delete(release, name)
        for name in reversed(list(live.components))
        if name not in desired_names
    ]

    operations = creates + updates + deletes
    logger.debug(
        f"Reconciled release '{release}': {len(creates)} create, "
        f"{len(updates)} update, {len(deletes)} delete"
    )
    return operations
