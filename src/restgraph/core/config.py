"""
YAML resource configuration.

Alternative to writing Resource subclasses by hand:

    resources:
      PostResource:
        model: Post
        fields: [id, title, views]
        scopes: [popular]
        limits: [10, 25, 50]
        default_order_by: {id: asc}
        soft_deletes: true
        relations:
          comments: {kind: has_many, target: CommentResource, foreign_key: post_id}
          commentable: {kind: morph_to, targets: [PostResource, VideoResource]}

Models and scope callables are looked up by name in the mappings passed to
``load_resources``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import yaml
from sqlalchemy.orm import DeclarativeBase

from .errors import ResourceConfigError
from .relations import FACTORIES, Relation, RelationKind
from .resource import Resource, Scope

# YAML key -> Resource attribute
_ATTRIBUTES = {
    "key": "key",
    "fields": "exposed_fields",
    "limits": "exposed_limits",
    "default_limit": "default_limit",
    "default_order_by": "default_order_by",
    "fillable": "fillable_fields",
    "soft_deletes": "soft_deletes",
    "deleted_at_field": "deleted_at_field",
    "morph_alias": "morph_alias",
    "gates": "gates",
}


def relation_from_dict(name: str, data: dict[str, Any]) -> Relation:
    """Build a Relation from its YAML form (``kind`` plus factory arguments)."""
    options = dict(data)
    try:
        kind = RelationKind(options.pop("kind"))
    except (KeyError, ValueError):
        raise ResourceConfigError([f"{name}: missing or unknown relation kind {data.get('kind')!r}"]) from None

    if kind == RelationKind.MORPH_TO:
        options["targets"] = tuple(options.pop("targets", ()))
    for key in ("pivot_fields",):
        if key in options:
            options[key] = tuple(options[key])

    try:
        return FACTORIES[kind](name, **options)
    except TypeError as e:
        raise ResourceConfigError([f"{name}: invalid {kind.value} options: {e}"]) from None


def resources_from_dict(
    data: dict[str, Any],
    models: dict[str, type[DeclarativeBase]],
    scopes: Optional[dict[str, Scope]] = None,
) -> list[type[Resource]]:
    """Turn a ``resources:`` mapping into Resource subclasses."""
    scopes = scopes or {}
    issues: list[str] = []
    resources: list[type[Resource]] = []

    for name, spec in (data.get("resources") or {}).items():
        spec = spec or {}
        model = models.get(spec.get("model", ""))
        if model is None:
            issues.append(f"{name}: unknown model {spec.get('model')!r}")
            continue

        attrs: dict[str, Any] = {"model": model, "name": name}
        for key, attribute in _ATTRIBUTES.items():
            if key in spec:
                value = spec[key]
                attrs[attribute] = tuple(value) if isinstance(value, list) else value

        exposed_scopes = {}
        for scope in spec.get("scopes", []):
            if scope not in scopes:
                issues.append(f"{name}: unknown scope {scope!r}")
                continue
            exposed_scopes[scope] = scopes[scope]
        attrs["exposed_scopes"] = exposed_scopes

        relations = []
        for relation_name, relation_data in (spec.get("relations") or {}).items():
            try:
                relations.append(relation_from_dict(relation_name, relation_data or {}))
            except ResourceConfigError as e:
                issues.extend(f"{name}.{issue}" for issue in e.issues)
        attrs["relations"] = tuple(relations)

        resources.append(type(name, (Resource,), attrs))

    if issues:
        raise ResourceConfigError(issues)
    return resources


def load_resources(
    path: Path | str,
    models: dict[str, type[DeclarativeBase]],
    scopes: Optional[dict[str, Scope]] = None,
) -> list[type[Resource]]:
    """Load Resource subclasses from a YAML file."""
    path = Path(path)
    data = yaml.safe_load(path.read_text()) or {}
    return resources_from_dict(data, models, scopes)
