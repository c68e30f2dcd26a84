"""
Resource registry - collects resource declarations.

Reads Resource configurations once and resolves them into an immutable
ResourceGraph keyed by resource name.

Usage:
    from restgraph.core.registry import ResourceRegistry
    from myapp.resources import PostResource, CommentResource

    registry = ResourceRegistry()
    registry.register(PostResource)
    registry.register(CommentResource)

    graph = registry.build()  # Raises ResourceConfigError on bad declarations
    graph["PostResource"].exposed_fields()
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Iterator, Optional

from sqlalchemy import Table

from .errors import ExecutionError, ResourceConfigError
from .relations import Relation, RelationKind
from .resource import Resource, ResourceDef

logger = logging.getLogger(__name__)


# Maximum number of segments in an include path ("a.b")
MAX_INCLUDE_DEPTH = 2


class ResourceGraph:
    """Immutable mapping of resource name -> ResourceDef."""

    def __init__(self, resources: dict[str, ResourceDef]):
        self._resources = MappingProxyType(dict(resources))

    def __getitem__(self, name: str) -> ResourceDef:
        return self._resources[name]

    def __contains__(self, name: object) -> bool:
        return name in self._resources

    def __iter__(self) -> Iterator[str]:
        return iter(self._resources)

    def __len__(self) -> int:
        return len(self._resources)

    def get(self, name: str) -> Optional[ResourceDef]:
        return self._resources.get(name)

    def target(self, relation: Relation, tag: Optional[str] = None) -> ResourceDef:
        """Resolve the target resource of a relation (``tag`` picks a morph_to target)."""
        name = relation.resolve_target(tag) if tag is not None else relation.target
        return self._resources[name]

    def targets(self, relation: Relation) -> list[ResourceDef]:
        return [self._resources[name] for name in relation.targets]

    def nested_relations(
        self,
        resource: ResourceDef,
        depth: int = MAX_INCLUDE_DEPTH,
        prefix: str = "",
    ) -> dict[str, Relation]:
        """
        Dotted relation paths reachable through includes.

        Example (depth 2):
            {"comments": <has_many>, "comments.author": <belongs_to>, ...}

        Non-nestable relations (morph_to) are listed but not traversed.
        """
        result: dict[str, Relation] = {}
        if depth <= 0:
            return result
        for name, relation in resource.relations.items():
            path = f"{prefix}{name}"
            result[path] = relation
            if depth > 1 and relation.is_nestable():
                result.update(
                    self.nested_relations(self.target(relation), depth - 1, f"{path}.")
                )
        return result

    def nested_exposed_fields(self, resource: ResourceDef) -> list[str]:
        """Own exposed fields plus ``relation.field`` for every nestable relation."""
        fields = list(resource.exposed_fields())
        for name, relation in resource.relations.items():
            if not relation.is_nestable():
                continue
            target = self.target(relation)
            fields.extend(f"{name}.{f}" for f in target.exposed_fields())
        return fields

    def resolve_path(self, resource: ResourceDef, path: str) -> list[tuple[ResourceDef, Relation]]:
        """
        Walk a dotted relation path.

        Returns a list of (owner resource, relation) hops.
        """
        hops: list[tuple[ResourceDef, Relation]] = []
        current = resource
        for name in path.split("."):
            relation = current.relation(name)
            if relation is None:
                raise ExecutionError(f"Unknown relation '{name}' on {current.name}")
            hops.append((current, relation))
            if relation.is_nestable():
                current = self.target(relation)
        return hops


class ResourceRegistry:
    """
    Collects resource declarations.

    Example:
        registry = ResourceRegistry()
        registry.register(PostResource)

        @registry.register
        class CommentResource(Resource):
            model = Comment
            exposed_fields = ("id", "body")

        graph = registry.build()
    """

    def __init__(self):
        self.resources: list[type[Resource]] = []

    def register(self, resource: type[Resource]) -> type[Resource]:
        """Register a resource declaration. Usable as a class decorator."""
        self.resources.append(resource)
        return resource

    def build(self) -> ResourceGraph:
        """
        Resolve every declaration into a ResourceGraph.

        Raises:
            ResourceConfigError: listing every invalid declaration
        """
        issues: list[str] = []
        definitions: dict[str, ResourceDef] = {}

        for resource in self.resources:
            definition = resource.to_definition()
            if definition.name in definitions:
                issues.append(f"{definition.name}: registered more than once")
                continue
            definitions[definition.name] = definition

        for definition in definitions.values():
            issues.extend(self._check_resource(definition))
            for relation in definition.relations.values():
                issues.extend(self._check_relation(definition, relation, definitions))

        if issues:
            raise ResourceConfigError(issues)

        logger.debug(f"Built resource graph with {len(definitions)} resources")
        return ResourceGraph(definitions)

    def _check_resource(self, resource: ResourceDef) -> list[str]:
        issues = []
        columns = set(resource.table.c.keys())

        for name in resource.fields:
            if name not in columns:
                issues.append(f"{resource.name}: exposed field '{name}' is not a column of {resource.table.name}")
        for name in resource.fillable:
            if name not in columns:
                issues.append(f"{resource.name}: fillable field '{name}' is not a column of {resource.table.name}")
        for name, direction in resource.default_order_by.items():
            if name not in columns:
                issues.append(f"{resource.name}: default order field '{name}' is not a column")
            if direction not in ("asc", "desc"):
                issues.append(f"{resource.name}: default order direction '{direction}' must be asc or desc")
        for name, scope in resource.scopes.items():
            if not callable(scope):
                issues.append(f"{resource.name}: scope '{name}' is not callable")
        if not resource.limits:
            issues.append(f"{resource.name}: at least one exposed limit is required")
        if resource.soft_deletes and resource.deleted_at_field not in columns:
            issues.append(f"{resource.name}: soft delete column '{resource.deleted_at_field}' is missing")
        return issues

    def _check_relation(
        self,
        resource: ResourceDef,
        relation: Relation,
        definitions: dict[str, ResourceDef],
    ) -> list[str]:
        prefix = f"{resource.name}.{relation.name}"
        missing = [name for name in relation.targets if name not in definitions]
        if missing:
            return [f"{prefix}: unknown target resource(s) {', '.join(missing)}"]

        issues = []
        tables = resource.table.metadata.tables

        def require(table: Table, *names: Optional[str]) -> None:
            for name in names:
                if name is None or name not in table.c:
                    issues.append(f"{prefix}: column '{name}' is missing on {table.name}")

        link = relation.link
        if link == "parent":
            require(resource.table, relation.foreign_key)
            if relation.kind == RelationKind.MORPH_TO:
                require(resource.table, relation.morph_type)
            for name in relation.targets:
                require(definitions[name].table, relation.owner_key)
        elif link == "child":
            target = definitions[relation.target]
            require(resource.table, relation.local_key)
            require(target.table, relation.foreign_key)
            if relation.is_morph:
                require(target.table, relation.morph_type)
            if relation.of_many is not None:
                require(target.table, relation.of_many[0])
                if relation.of_many[1] not in ("max", "min"):
                    issues.append(f"{prefix}: one-of-many aggregate must be max or min")
        elif link == "pivot":
            pivot = tables.get(relation.pivot_table or "")
            if pivot is None:
                issues.append(f"{prefix}: pivot table '{relation.pivot_table}' is not in the metadata")
            else:
                require(pivot, relation.foreign_pivot_key, relation.related_pivot_key, *relation.pivot_fields)
                if relation.is_morph:
                    require(pivot, relation.morph_type)
            require(resource.table, relation.local_key)
            require(definitions[relation.target].table, relation.related_key)
        elif link == "through":
            through = tables.get(relation.through_table or "")
            if through is None:
                issues.append(f"{prefix}: through table '{relation.through_table}' is not in the metadata")
            else:
                require(through, relation.first_key, relation.second_local_key)
            require(resource.table, relation.local_key)
            require(definitions[relation.target].table, relation.second_key)
        return issues
