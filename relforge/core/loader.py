"""Release description loading.

A release description is a YAML (or JSON) document shaped like::

    name: webapp
    components:
      - name: backend
        image: registry.example.com/backend:1.0.0
        replicas: 2
        ports: [8080]
        env:
          DATABASE_HOST: webapp-database
        exposure: internal

The document may also be nested under a top-level ``release:`` key.
Unrecognized fields are ignored. ``${VAR}`` placeholders are substituted
from the environment before parsing.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import ValidationError

from relforge.utils.env import substitute_env_vars

from .errors import InvalidSpec
from .models import ComponentSpec, ReleaseSpec

COMPONENT_FIELDS = ("name", "image", "replicas", "ports", "env", "exposure")
OVERRIDABLE_FIELDS = ("image", "replicas")


def _parse_port(raw: Any, component: str) -> int:
    if isinstance(raw, dict):
        raw = raw.get("containerPort", raw.get("port"))
    if isinstance(raw, bool) or raw is None:
        raise InvalidSpec(f"Component '{component}' has an invalid port entry: {raw!r}")
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise InvalidSpec(
            f"Component '{component}' has a non-numeric port: {raw!r}"
        ) from e


def _parse_component(raw: Any, index: int) -> ComponentSpec:
    if not isinstance(raw, dict):
        raise InvalidSpec(f"components[{index}] must be a mapping, got {type(raw).__name__}")

    missing = [key for key in ("name", "image") if not raw.get(key)]
    if missing:
        label = raw.get("name") or f"components[{index}]"
        raise InvalidSpec(
            f"Component '{label}' is missing required field(s): {', '.join(missing)}"
        )

    name = str(raw["name"])
    fields: dict[str, Any] = {k: raw[k] for k in COMPONENT_FIELDS if raw.get(k) is not None}
    fields["name"] = name
    fields["image"] = str(raw["image"])
    if "ports" in fields:
        if not isinstance(fields["ports"], list):
            raise InvalidSpec(f"Component '{name}' ports must be a list")
        fields["ports"] = tuple(_parse_port(p, name) for p in fields["ports"])
    if "env" in fields and not isinstance(fields["env"], dict):
        raise InvalidSpec(f"Component '{name}' env must be a mapping")

    try:
        return ComponentSpec.model_validate(fields)
    except ValidationError as e:
        raise InvalidSpec(
            f"Component '{name}' is invalid",
            details=str(e),
        ) from e


def parse_release(document: Any, *, name: str | None = None) -> ReleaseSpec:
    """Build a ``ReleaseSpec`` from a parsed description document.

    Args:
        document: Parsed YAML/JSON content
        name: Release name overriding the document's ``name`` field

    Raises:
        InvalidSpec: If required fields are missing or malformed
    """
    if not isinstance(document, dict):
        raise InvalidSpec("Release description must be a mapping")
    if isinstance(document.get("release"), dict):
        document = document["release"]

    release_name = name or document.get("name")
    if not release_name:
        raise InvalidSpec("Release description is missing required field: name")

    raw_components = document.get("components") or []
    if not isinstance(raw_components, list):
        raise InvalidSpec("'components' must be a list")

    components = tuple(_parse_component(raw, i) for i, raw in enumerate(raw_components))
    return ReleaseSpec(name=str(release_name), components=components)


def apply_overrides(spec: ReleaseSpec, overrides: Iterable[str]) -> ReleaseSpec:
    """Apply ``component.field=value`` overrides to a spec.

    Only ``image`` and ``replicas`` may be overridden.

    Raises:
        InvalidSpec: If an override is malformed or targets an unknown component
    """
    for override in overrides:
        path, sep, value = override.partition("=")
        component_name, dot, field_name = path.partition(".")
        if not sep or not dot or not component_name:
            raise InvalidSpec(
                f"Invalid override '{override}'",
                details="Expected the form component.field=value, e.g. frontend.image=web:2",
            )
        if field_name not in OVERRIDABLE_FIELDS:
            raise InvalidSpec(
                f"Field '{field_name}' cannot be overridden",
                details=f"Overridable fields: {', '.join(OVERRIDABLE_FIELDS)}",
            )
        component = spec.component(component_name)
        if component is None:
            raise InvalidSpec(f"Override targets unknown component '{component_name}'")

        new_value: Any = value
        if field_name == "replicas":
            try:
                new_value = int(value)
            except ValueError as e:
                raise InvalidSpec(f"Replica override '{value}' is not an integer") from e

        updated = component.model_copy(update={field_name: new_value})
        spec = spec.model_copy(
            update={
                "components": tuple(
                    updated if c.name == component_name else c for c in spec.components
                )
            }
        )
        logger.debug(f"Applied override {override}")
    return spec


def load_release(
    file_path: Path,
    *,
    name: str | None = None,
    overrides: Iterable[str] = (),
) -> ReleaseSpec:
    """Load and validate a release description file.

    Args:
        file_path: Path to the YAML/JSON description
        name: Optional release name overriding the file's
        overrides: ``component.field=value`` overrides

    Raises:
        InvalidSpec: If the file cannot be read, parsed or validated
    """
    try:
        content = file_path.read_text()
    except OSError as e:
        raise InvalidSpec(f"Cannot read release description {file_path}: {e}") from e

    try:
        content = substitute_env_vars(content)
    except ValueError as e:
        raise InvalidSpec(f"Cannot render {file_path}", details=str(e)) from e

    try:
        document = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise InvalidSpec(f"Error parsing {file_path}", details=str(e)) from e

    spec = apply_overrides(parse_release(document, name=name), overrides)
    spec.ensure_valid()
    logger.debug(
        f"Loaded release '{spec.name}' from {file_path} "
        f"with components {spec.component_names}"
    )
    return spec
