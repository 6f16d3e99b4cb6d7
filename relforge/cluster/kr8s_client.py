"""Kr8s-based implementation of OrchestrationClient.

Each component maps to a Deployment named ``<release>-<component>`` and,
when it exposes ports, a Service of the same name. Resources are labelled
with the release and component so the live state can be rebuilt from the
cluster alone.
"""

from __future__ import annotations

import time
from typing import Any

from typing_extensions import override

import kr8s
from kr8s.asyncio.objects import Deployment, Service
from loguru import logger

from relforge.cluster.base import OrchestrationClient
from relforge.core.errors import OrchestrationError
from relforge.core.models import ComponentSpec, ComponentState, Exposure, LiveState
from relforge.core.operations import Operation, OperationKind

INSTANCE_LABEL = "app.kubernetes.io/instance"
NAME_LABEL = "app.kubernetes.io/name"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "relforge"
ORDER_ANNOTATION = "relforge.io/order"

SERVICE_TYPES = {
    Exposure.INTERNAL: "ClusterIP",
    Exposure.LOADBALANCED: "LoadBalancer",
}


# =============================================================================
# Manifest Builders
# =============================================================================


def resource_name(release: str, component: str) -> str:
    """Kubernetes object name for a component."""
    return f"{release}-{component}"


def component_labels(release: str, component: str) -> dict[str, str]:
    return {
        INSTANCE_LABEL: release,
        NAME_LABEL: component,
        MANAGED_BY_LABEL: MANAGED_BY,
    }


def release_selector(release: str) -> str:
    """Label selector matching every resource of a release."""
    return f"{INSTANCE_LABEL}={release},{MANAGED_BY_LABEL}={MANAGED_BY}"


def build_container(spec: ComponentSpec, image: str | None = None) -> dict[str, Any]:
    container: dict[str, Any] = {"name": spec.name, "image": image or spec.image}
    if spec.ports:
        container["ports"] = [{"containerPort": port} for port in spec.ports]
    if spec.env:
        container["env"] = [{"name": k, "value": v} for k, v in spec.env.items()]
    return container


def build_deployment(
    release: str,
    spec: ComponentSpec,
    namespace: str,
    order: int,
) -> dict[str, Any]:
    """Build the Deployment manifest for a component."""
    labels = component_labels(release, spec.name)
    selector = {INSTANCE_LABEL: release, NAME_LABEL: spec.name}
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": resource_name(release, spec.name),
            "namespace": namespace,
            "labels": labels,
            "annotations": {ORDER_ANNOTATION: str(order)},
        },
        "spec": {
            "replicas": spec.replicas,
            "selector": {"matchLabels": selector},
            "template": {
                "metadata": {"labels": labels},
                "spec": {"containers": [build_container(spec)]},
            },
        },
    }


def build_service(release: str, spec: ComponentSpec, namespace: str) -> dict[str, Any] | None:
    """Build the Service manifest for a component, None if it has no ports."""
    if not spec.ports:
        return None
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": resource_name(release, spec.name),
            "namespace": namespace,
            "labels": component_labels(release, spec.name),
        },
        "spec": {
            "type": SERVICE_TYPES[spec.exposure],
            "selector": {INSTANCE_LABEL: release, NAME_LABEL: spec.name},
            "ports": [
                {"name": f"port-{port}", "port": port, "targetPort": port}
                for port in spec.ports
            ],
        },
    }


def component_state(
    deployment: dict[str, Any],
    service: dict[str, Any] | None = None,
) -> ComponentState:
    """Rebuild a ComponentState from raw Deployment and Service objects.

    Ports and exposure are what the Service actually serves: a component
    whose Service is missing reports no ports, so the difference shows up
    as a config update.
    """
    spec = deployment.get("spec", {})
    status = deployment.get("status", {}) or {}
    containers = spec.get("template", {}).get("spec", {}).get("containers", [])
    container = containers[0] if containers else {}

    ports: tuple[int, ...] = ()
    exposure = Exposure.INTERNAL
    if service:
        service_spec = service.get("spec", {})
        ports = tuple(p["port"] for p in service_spec.get("ports", []) or [])
        if service_spec.get("type") == "LoadBalancer":
            exposure = Exposure.LOADBALANCED

    return ComponentState(
        image=container.get("image", ""),
        replicas=spec.get("replicas", 0),
        ready_replicas=status.get("readyReplicas", 0) or 0,
        ports=ports,
        env={e["name"]: e.get("value", "") for e in container.get("env", [])},
        exposure=exposure,
    )


# =============================================================================
# Client
# =============================================================================


class Kr8sOrchestrationClient(OrchestrationClient):
    """Orchestration client backed by the kr8s async API.

    Note: The kr8s API client is NOT cached because it's tied to the event loop
    that was running when created. When using run_sync() which calls asyncio.run(),
    each call creates a new event loop, making the cached API unusable.
    """

    def __init__(self, namespace: str = "default") -> None:
        self.namespace = namespace

    async def _get_api(self) -> Any:  # Returns kr8s._api.Api
        return await kr8s.asyncio.api()

    @override
    async def apply(self, operation: Operation) -> None:
        """Apply one operation, wrapping any cluster failure."""
        logger.info(f"Applying to {self.namespace}: {operation.describe()}")
        try:
            api = await self._get_api()
            match operation.kind:
                case OperationKind.CREATE_COMPONENT:
                    await self._create(api, operation)
                case OperationKind.UPDATE_IMAGE:
                    await self._update_image(api, operation)
                case OperationKind.UPDATE_CONFIG:
                    await self._update_config(api, operation)
                case OperationKind.SCALE_REPLICAS:
                    deployment = await self._get_deployment(api, operation)
                    await deployment.scale(operation.replicas)
                case OperationKind.DELETE_COMPONENT:
                    await self._delete(api, operation)
        except OrchestrationError:
            raise
        except Exception as e:
            raise OrchestrationError(
                f"Cluster rejected: {operation.describe()}",
                details=str(e),
                operation=operation,
            ) from e

    async def _get_deployment(self, api: Any, operation: Operation) -> Any:
        name = resource_name(operation.release, operation.component)
        try:
            return await Deployment.get(name, namespace=self.namespace, api=api)
        except kr8s.NotFoundError as e:
            raise OrchestrationError(
                f"Deployment '{name}' not found in namespace '{self.namespace}'",
                operation=operation,
            ) from e

    async def _upsert_service(self, api: Any, release: str, spec: ComponentSpec) -> None:
        manifest = build_service(release, spec, self.namespace)
        metadata = {"name": resource_name(release, spec.name), "namespace": self.namespace}
        service = Service(manifest or {"metadata": metadata}, api=api)
        exists = await service.exists()
        if manifest is None:
            if exists:
                await service.delete()
        elif exists:
            await service.patch({"spec": manifest["spec"]})
        else:
            await service.create()

    async def _create(self, api: Any, operation: Operation) -> None:
        assert operation.spec is not None
        manifest = build_deployment(
            operation.release, operation.spec, self.namespace, order=time.time_ns()
        )
        deployment = Deployment(manifest, api=api)
        if await deployment.exists():
            # Keep the original creation order on re-apply
            await deployment.patch({"spec": manifest["spec"]})
        else:
            await deployment.create()
        await self._upsert_service(api, operation.release, operation.spec)

    async def _update_image(self, api: Any, operation: Operation) -> None:
        deployment = await self._get_deployment(api, operation)
        containers = [
            {**c, "image": operation.image} if c.get("name") == operation.component else c
            for c in deployment.raw["spec"]["template"]["spec"]["containers"]
        ]
        await deployment.patch({"spec": {"template": {"spec": {"containers": containers}}}})

    async def _update_config(self, api: Any, operation: Operation) -> None:
        assert operation.spec is not None
        deployment = await self._get_deployment(api, operation)
        current = component_state(deployment.raw)
        container = build_container(operation.spec, image=current.image)
        # Merge patches replace lists, so absent ports/env must be sent explicitly
        container.setdefault("ports", [])
        container.setdefault("env", [])
        await deployment.patch({"spec": {"template": {"spec": {"containers": [container]}}}})
        await self._upsert_service(api, operation.release, operation.spec)

    async def _delete(self, api: Any, operation: Operation) -> None:
        name = resource_name(operation.release, operation.component)
        for kind in (Deployment, Service):
            try:
                resource = await kind.get(name, namespace=self.namespace, api=api)
                await resource.delete()
            except kr8s.NotFoundError:
                logger.debug(f"{kind.__name__} '{name}' already absent")

    @override
    async def read_live_state(self, release: str) -> LiveState:
        """Rebuild the release's live state from labelled resources."""
        selector = release_selector(release)
        try:
            api = await self._get_api()
            deployments = [
                d.raw
                async for d in Deployment.list(
                    namespace=self.namespace, label_selector=selector, api=api
                )
            ]
            services = {
                s.raw["metadata"]["labels"].get(NAME_LABEL): s.raw
                async for s in Service.list(
                    namespace=self.namespace, label_selector=selector, api=api
                )
            }
        except Exception as e:
            raise OrchestrationError(
                f"Could not read live state of '{release}' in namespace '{self.namespace}'",
                details=str(e),
            ) from e

        def order(raw: dict[str, Any]) -> int:
            annotations = raw["metadata"].get("annotations") or {}
            value = annotations.get(ORDER_ANNOTATION, "0")
            return int(value) if value.isdigit() else 0

        components = {}
        for raw in sorted(deployments, key=order):
            name = raw["metadata"]["labels"].get(NAME_LABEL)
            components[name] = component_state(raw, services.get(name))
        return LiveState(release=release, components=components)
