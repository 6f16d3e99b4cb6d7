"""Unit tests for release description loading."""

from pathlib import Path

import pytest

from relforge.core.errors import InvalidSpec
from relforge.core.loader import apply_overrides, load_release, parse_release
from relforge.core.models import Exposure

WEBAPP_YAML = """
name: webapp
chart: ignored-field
components:
  - name: frontend
    image: registry.example.com/webapp-frontend:1.0.0
    replicas: 2
    ports: [80]
    exposure: LoadBalanced
  - name: backend
    image: registry.example.com/webapp-backend:1.0.0
    replicas: 2
    ports:
      - containerPort: 8080
    env:
      DATABASE_HOST: webapp-database
      DEBUG: false
  - name: database
    image: registry.example.com/webapp-db:1.0.0
    ports: [5432]
"""


@pytest.fixture
def webapp_file(tmp_path: Path) -> Path:
    path = tmp_path / "webapp.yaml"
    path.write_text(WEBAPP_YAML)
    return path


class TestLoadRelease:
    """Tests for load_release()."""

    def test_loads_components_in_declaration_order(self, webapp_file: Path) -> None:
        spec = load_release(webapp_file)

        assert spec.name == "webapp"
        assert spec.component_names == ["frontend", "backend", "database"]
        assert spec.revision == 0

    def test_parses_fields(self, webapp_file: Path) -> None:
        spec = load_release(webapp_file)

        frontend = spec.component("frontend")
        backend = spec.component("backend")
        database = spec.component("database")
        assert frontend.exposure is Exposure.LOADBALANCED
        assert backend.ports == (8080,)
        assert backend.env == {"DATABASE_HOST": "webapp-database", "DEBUG": "false"}
        assert database.replicas == 1
        assert database.exposure is Exposure.INTERNAL

    def test_name_override(self, webapp_file: Path) -> None:
        spec = load_release(webapp_file, name="webapp-staging")
        assert spec.name == "webapp-staging"

    def test_set_overrides(self, webapp_file: Path) -> None:
        spec = load_release(
            webapp_file,
            overrides=["frontend.image=web:2.0", "backend.replicas=5"],
        )

        assert spec.component("frontend").image == "web:2.0"
        assert spec.component("backend").replicas == 5

    def test_env_substitution(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WEBAPP_TAG", "1.2.3")
        path = tmp_path / "release.yaml"
        path.write_text(
            "name: webapp\n"
            "components:\n"
            "  - name: api\n"
            "    image: api:${WEBAPP_TAG}\n"
            "    replicas: ${API_REPLICAS:-3}\n"
        )

        spec = load_release(path)

        assert spec.component("api").image == "api:1.2.3"
        assert spec.component("api").replicas == 3

    def test_missing_env_var(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("WEBAPP_TAG", raising=False)
        path = tmp_path / "release.yaml"
        path.write_text("name: webapp\ncomponents:\n  - name: api\n    image: api:${WEBAPP_TAG}\n")

        with pytest.raises(InvalidSpec):
            load_release(path)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("name: [unclosed\n")

        with pytest.raises(InvalidSpec):
            load_release(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(InvalidSpec):
            load_release(tmp_path / "missing.yaml")

    def test_semantic_validation_runs(self, tmp_path: Path) -> None:
        path = tmp_path / "release.yaml"
        path.write_text(
            "name: webapp\ncomponents:\n  - name: api\n    image: api:1\n    ports: [99999]\n"
        )

        with pytest.raises(InvalidSpec):
            load_release(path)


class TestParseRelease:
    """Tests for parse_release() on already-parsed documents."""

    def test_missing_release_name(self) -> None:
        with pytest.raises(InvalidSpec, match="name"):
            parse_release({"components": []})

    def test_missing_component_image(self) -> None:
        with pytest.raises(InvalidSpec, match="image"):
            parse_release({"name": "webapp", "components": [{"name": "api"}]})

    def test_missing_component_name(self) -> None:
        with pytest.raises(InvalidSpec, match="name"):
            parse_release({"name": "webapp", "components": [{"image": "api:1"}]})

    def test_nested_release_key(self) -> None:
        spec = parse_release(
            {"release": {"name": "webapp", "components": [{"name": "api", "image": "api:1"}]}}
        )
        assert spec.component_names == ["api"]

    def test_unknown_component_fields_ignored(self) -> None:
        spec = parse_release(
            {
                "name": "webapp",
                "components": [{"name": "api", "image": "api:1", "resources": {"cpu": 1}}],
            }
        )
        assert spec.component("api").replicas == 1

    def test_non_numeric_port(self) -> None:
        with pytest.raises(InvalidSpec, match="port"):
            parse_release(
                {"name": "webapp", "components": [{"name": "api", "image": "a:1", "ports": ["http"]}]}
            )

    def test_non_integer_replicas(self) -> None:
        with pytest.raises(InvalidSpec):
            parse_release(
                {"name": "webapp", "components": [{"name": "api", "image": "a:1", "replicas": "many"}]}
            )

    def test_unknown_exposure(self) -> None:
        with pytest.raises(InvalidSpec):
            parse_release(
                {"name": "webapp", "components": [{"name": "api", "image": "a:1", "exposure": "public"}]}
            )


class TestApplyOverrides:
    """Tests for --set style overrides."""

    @pytest.mark.parametrize(
        "override",
        ["frontend", "frontend.image", "image=web:2", "frontend.ports=80", "cache.image=x:1"],
    )
    def test_rejects_bad_overrides(self, webapp, override: str) -> None:
        with pytest.raises(InvalidSpec):
            apply_overrides(webapp, [override])

    def test_rejects_non_integer_replicas(self, webapp) -> None:
        with pytest.raises(InvalidSpec):
            apply_overrides(webapp, ["backend.replicas=lots"])
