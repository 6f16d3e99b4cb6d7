"""Tests for the kr8s-backed orchestration client."""

from unittest.mock import AsyncMock, MagicMock, patch

import kr8s
import pytest

from relforge.cluster.kr8s_client import (
    INSTANCE_LABEL,
    NAME_LABEL,
    ORDER_ANNOTATION,
    Kr8sOrchestrationClient,
    build_deployment,
    build_service,
    component_state,
    release_selector,
)
from relforge.core.errors import OrchestrationError
from relforge.core.models import ComponentSpec, Exposure, LiveState, ReleaseSpec
from relforge.core.operations import Operation, OperationKind
from relforge.core.reconciler import reconcile

MODULE = "relforge.cluster.kr8s_client"


@pytest.fixture
def frontend() -> ComponentSpec:
    return ComponentSpec(
        name="frontend",
        image="web:1",
        replicas=2,
        ports=(80,),
        env={"MODE": "prod"},
        exposure=Exposure.LOADBALANCED,
    )


def _resource(raw: dict) -> MagicMock:
    resource = MagicMock()
    resource.raw = raw
    for method in ("create", "patch", "delete", "scale", "exists"):
        setattr(resource, method, AsyncMock())
    return resource


def _listing(*raws: dict):
    async def _list(**kwargs):
        for raw in raws:
            yield _resource(raw)

    return _list


class TestManifestBuilders:
    """Tests for Deployment and Service manifest construction."""

    def test_deployment_manifest(self, frontend: ComponentSpec) -> None:
        manifest = build_deployment("webapp", frontend, "prod", order=7)

        assert manifest["metadata"]["name"] == "webapp-frontend"
        assert manifest["metadata"]["namespace"] == "prod"
        assert manifest["metadata"]["labels"][INSTANCE_LABEL] == "webapp"
        assert manifest["metadata"]["annotations"][ORDER_ANNOTATION] == "7"
        assert manifest["spec"]["replicas"] == 2

        container = manifest["spec"]["template"]["spec"]["containers"][0]
        assert container["image"] == "web:1"
        assert container["ports"] == [{"containerPort": 80}]
        assert container["env"] == [{"name": "MODE", "value": "prod"}]

    def test_service_type_follows_exposure(self, frontend: ComponentSpec) -> None:
        public = build_service("webapp", frontend, "prod")
        internal = build_service(
            "webapp", frontend.model_copy(update={"exposure": Exposure.INTERNAL}), "prod"
        )

        assert public["spec"]["type"] == "LoadBalancer"
        assert internal["spec"]["type"] == "ClusterIP"
        assert public["spec"]["ports"][0]["port"] == 80

    def test_no_service_without_ports(self) -> None:
        worker = ComponentSpec(name="worker", image="worker:1")
        assert build_service("webapp", worker, "prod") is None

    def test_selector(self) -> None:
        assert release_selector("webapp") == (
            "app.kubernetes.io/instance=webapp,app.kubernetes.io/managed-by=relforge"
        )

    def test_component_state_round_trip(self, frontend: ComponentSpec) -> None:
        """A built Deployment reads back as the spec it was built from."""
        deployment = build_deployment("webapp", frontend, "prod", order=1)
        deployment["status"] = {"readyReplicas": 1}

        state = component_state(deployment, build_service("webapp", frontend, "prod"))

        assert state.image == "web:1"
        assert state.replicas == 2
        assert state.ready_replicas == 1
        assert state.ports == (80,)
        assert state.env == {"MODE": "prod"}
        assert state.exposure is Exposure.LOADBALANCED
        assert not state.ready

    def test_reconcile_against_rebuilt_state_is_empty(self, webapp) -> None:
        """Reading back what was built yields no further operations."""
        live = LiveState(
            release="webapp",
            components={
                c.name: component_state(
                    {
                        **build_deployment("webapp", c, "prod", order=i),
                        "status": {"readyReplicas": c.replicas},
                    },
                    build_service("webapp", c, "prod"),
                )
                for i, c in enumerate(webapp.components)
            },
        )

        assert reconcile(webapp, live) == []

    def test_missing_service_yields_config_update(self) -> None:
        """A Deployment without its Service is reported as not serving its ports."""
        backend = ComponentSpec(name="backend", image="api:1", ports=(8080,))
        spec = ReleaseSpec(name="webapp", components=(backend,))
        state = component_state(build_deployment("webapp", backend, "prod", order=1))

        operations = reconcile(spec, LiveState(release="webapp", components={"backend": state}))

        assert state.ports == ()
        assert [op.kind for op in operations] == [OperationKind.UPDATE_CONFIG]

    def test_component_state_without_status(self) -> None:
        deployment = build_deployment(
            "webapp", ComponentSpec(name="worker", image="worker:1"), "prod", order=1
        )

        state = component_state(deployment)

        assert state.ready_replicas == 0
        assert state.exposure is Exposure.INTERNAL


class TestKr8sOrchestrationClient:
    """Tests for apply() and read_live_state() with mocked kr8s objects."""

    @pytest.fixture
    def client(self) -> Kr8sOrchestrationClient:
        client = Kr8sOrchestrationClient(namespace="prod")
        client._get_api = AsyncMock(return_value=MagicMock())
        return client

    @pytest.mark.asyncio
    async def test_create_new_component(self, client, frontend) -> None:
        deployment = _resource({})
        deployment.exists.return_value = False
        service = _resource({})
        service.exists.return_value = False

        with (
            patch(f"{MODULE}.Deployment", return_value=deployment) as mock_deployment,
            patch(f"{MODULE}.Service", return_value=service),
        ):
            await client.apply(Operation.create("webapp", frontend))

        manifest = mock_deployment.call_args[0][0]
        assert manifest["metadata"]["name"] == "webapp-frontend"
        deployment.create.assert_awaited_once()
        deployment.patch.assert_not_awaited()
        service.create.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_create_existing_component_patches(self, client, frontend) -> None:
        deployment = _resource({})
        deployment.exists.return_value = True
        service = _resource({})
        service.exists.return_value = True

        with (
            patch(f"{MODULE}.Deployment", return_value=deployment),
            patch(f"{MODULE}.Service", return_value=service),
        ):
            await client.apply(Operation.create("webapp", frontend))

        deployment.create.assert_not_awaited()
        patch_body = deployment.patch.call_args[0][0]
        assert "metadata" not in patch_body
        assert patch_body["spec"]["replicas"] == 2
        service.patch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_image_patches_container(self, client, frontend) -> None:
        existing = _resource(build_deployment("webapp", frontend, "prod", order=1))

        with patch(f"{MODULE}.Deployment") as mock_deployment:
            mock_deployment.get = AsyncMock(return_value=existing)
            await client.apply(Operation.update_image("webapp", "frontend", "web:2"))

        mock_deployment.get.assert_awaited_once()
        assert mock_deployment.get.call_args[0][0] == "webapp-frontend"
        containers = existing.patch.call_args[0][0]["spec"]["template"]["spec"]["containers"]
        assert containers[0]["image"] == "web:2"
        assert containers[0]["env"] == [{"name": "MODE", "value": "prod"}]

    @pytest.mark.asyncio
    async def test_scale(self, client, frontend) -> None:
        existing = _resource(build_deployment("webapp", frontend, "prod", order=1))

        with patch(f"{MODULE}.Deployment") as mock_deployment:
            mock_deployment.get = AsyncMock(return_value=existing)
            await client.apply(Operation.scale("webapp", "frontend", 5))

        existing.scale.assert_awaited_once_with(5)

    @pytest.mark.asyncio
    async def test_update_missing_deployment(self, client) -> None:
        with patch(f"{MODULE}.Deployment") as mock_deployment:
            mock_deployment.get = AsyncMock(side_effect=kr8s.NotFoundError("gone"))
            with pytest.raises(OrchestrationError, match="not found") as excinfo:
                await client.apply(Operation.scale("webapp", "frontend", 5))

        assert excinfo.value.component == "frontend"

    @pytest.mark.asyncio
    async def test_api_failure_is_wrapped(self, client, frontend) -> None:
        client._get_api.side_effect = ConnectionError("cluster unreachable")

        with pytest.raises(OrchestrationError) as excinfo:
            await client.apply(Operation.create("webapp", frontend))

        assert excinfo.value.details == "cluster unreachable"
        assert excinfo.value.operation.kind.value == "create"

    @pytest.mark.asyncio
    async def test_delete_tolerates_missing_resources(self, client) -> None:
        deployment = _resource({})
        with (
            patch(f"{MODULE}.Deployment") as mock_deployment,
            patch(f"{MODULE}.Service") as mock_service,
        ):
            mock_deployment.__name__ = "Deployment"
            mock_service.__name__ = "Service"
            mock_deployment.get = AsyncMock(return_value=deployment)
            mock_service.get = AsyncMock(side_effect=kr8s.NotFoundError("no service"))

            await client.apply(Operation.delete("webapp", "worker"))

        deployment.delete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_read_live_state_in_creation_order(self, client, frontend) -> None:
        backend = ComponentSpec(name="backend", image="api:1", replicas=3)
        later = build_deployment("webapp", frontend, "prod", order=20)
        earlier = build_deployment("webapp", backend, "prod", order=10)
        service = build_service("webapp", frontend, "prod")

        with (
            patch(f"{MODULE}.Deployment") as mock_deployment,
            patch(f"{MODULE}.Service") as mock_service,
        ):
            mock_deployment.list = MagicMock(side_effect=_listing(later, earlier))
            mock_service.list = MagicMock(side_effect=_listing(service))

            live = await client.read_live_state("webapp")

        assert list(live.components) == ["backend", "frontend"]
        assert live.components["frontend"].exposure is Exposure.LOADBALANCED
        assert live.components["backend"].replicas == 3
        kwargs = mock_deployment.list.call_args.kwargs
        assert kwargs["namespace"] == "prod"
        assert kwargs["label_selector"] == release_selector("webapp")
        assert service["metadata"]["labels"][NAME_LABEL] == "frontend"

    @pytest.mark.asyncio
    async def test_read_live_state_failure(self, client) -> None:
        with patch(f"{MODULE}.Deployment") as mock_deployment:
            mock_deployment.list = MagicMock(side_effect=ConnectionError("timeout"))
            with pytest.raises(OrchestrationError, match="Could not read live state"):
                await client.read_live_state("webapp")
