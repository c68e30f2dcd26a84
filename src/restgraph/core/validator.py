"""
Validation rule builder.

Derives the flat rule set for a search or mutate body from the resource
graph, then executes it. Resource, prefix and depth are threaded
explicitly through every builder call. Nested mutation nodes are
validated lazily against their own resource, so mutation depth follows
the payload.

Usage:
    spec = validate_search(graph, graph["PostResource"], payload)
    nodes = validate_mutation(graph, graph["PostResource"], payload)
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .query_types import MutationNode, SearchSpecification
from .registry import ResourceGraph
from .relations import Relation, RelationKind
from .resource import ResourceDef
from .rules import (
    CustomRule,
    In,
    IsDict,
    IsInteger,
    IsList,
    IsString,
    Min,
    Prohibited,
    ProhibitedIf,
    Prohibits,
    Required,
    RequiredIf,
    RequiredWithout,
    RuleSet,
    RuleValidator,
    Sometimes,
    merge_rules,
    nested_errors,
)


# Supported filter operators
OPERATORS = ("=", "!=", ">", ">=", "<", "<=", "like", "not like", "in", "not in")
AGGREGATE_TYPES = ("count", "min", "max", "avg", "sum", "exists")
FIELD_AGGREGATES = ("min", "max", "avg", "sum")

# Root level + one nested level
MAX_FILTER_DEPTH = 2

RESERVED_NODE_KEYS = ("relations", "pivot", "resource")

# Keys of an include body that imply a nested search
_NESTED_SEARCH_KEYS = ("filters", "scopes", "sorts", "selects", "aggregates")


def _p(prefix: str, key: str) -> str:
    return f"{prefix}.{key}" if prefix else key


# =============================================================================
# Custom rules
# =============================================================================


class Includable(CustomRule):
    """Validates an include body against the included resource's own rules."""

    def __init__(self, builder: RuleBuilder, resource: ResourceDef):
        self.builder = builder
        self.resource = resource

    def validate(self, value: Any, path: str) -> list[str]:
        if not isinstance(value, dict):
            return []
        resolved = self.builder.resolve_relation(self.resource, value.get("relation"))
        if resolved is None:
            return []
        relation, target = resolved

        if not relation.is_nestable():
            nested = [key for key in _NESTED_SEARCH_KEYS if value.get(key)]
            if nested:
                return [
                    f"{_p(path, key)}: relation '{value['relation']}' does not support nested search"
                    for key in nested
                ]
            return []

        return nested_errors(self.builder.search_rules(target, is_root=False), value, path)


class AggregateField(CustomRule):
    """The aggregated field must be exposed by the related resource."""

    def __init__(self, builder: RuleBuilder, resource: ResourceDef):
        self.builder = builder
        self.resource = resource

    def validate(self, value: Any, path: str) -> list[str]:
        if not isinstance(value, dict) or value.get("type") not in FIELD_AGGREGATES:
            return []
        resolved = self.builder.resolve_relation(self.resource, value.get("relation"))
        field = value.get("field")
        if resolved is None or not isinstance(field, str):
            return []
        _, target = resolved
        if field not in target.exposed_fields():
            return [f"{_p(path, 'field')}: value '{field}' is not an exposed field of {target.name}"]
        return []


class AggregateFilterable(CustomRule):
    """Aggregate filters are validated against the related resource."""

    def __init__(self, builder: RuleBuilder, resource: ResourceDef):
        self.builder = builder
        self.resource = resource

    def validate(self, value: Any, path: str) -> list[str]:
        if not isinstance(value, dict) or "filters" not in value:
            return []
        resolved = self.builder.resolve_relation(self.resource, value.get("relation"))
        if resolved is None:
            return []
        _, target = resolved
        return nested_errors(self.builder.filters_rules(target, "filters", 1), value, path)


class FilterValue(CustomRule):
    """``in`` / ``not in`` filters take an array value."""

    def validate(self, value: Any, path: str) -> list[str]:
        if not isinstance(value, dict):
            return []
        if value.get("operator") in ("in", "not in") and "value" in value:
            if not isinstance(value["value"], list):
                return [f"{_p(path, 'value')}: must be an array for operator '{value['operator']}'"]
        return []


class Fillable(CustomRule):
    """Node keys are restricted to fillable fields, the key and reserved keys."""

    def __init__(self, resource: ResourceDef):
        self.resource = resource

    def validate(self, value: Any, path: str) -> list[str]:
        if not isinstance(value, dict):
            return []
        allowed = set(self.resource.fillable) | {self.resource.key} | set(RESERVED_NODE_KEYS)
        return [
            f"{_p(path, key)}: field is not fillable on {self.resource.name}"
            for key in value
            if key not in allowed
        ]


class KnownRelations(CustomRule):
    def __init__(self, resource: ResourceDef):
        self.resource = resource

    def validate(self, value: Any, path: str) -> list[str]:
        if not isinstance(value, dict):
            return []
        return [
            f"{_p(path, name)}: relation is not declared on {self.resource.name}"
            for name in value
            if self.resource.relation(name) is None
        ]


class OperationKeys(CustomRule):
    """``attach``, ``detach`` and ``sync`` nodes must name an existing record."""

    def __init__(self, graph: ResourceGraph, relation: Relation):
        self.graph = graph
        self.relation = relation

    def validate(self, value: Any, path: str) -> list[str]:
        if not isinstance(value, dict):
            return []
        operation = value.get("operation", "create")
        nodes = value.get("operations")
        if operation not in ("attach", "detach", "sync") or not isinstance(nodes, list):
            return []

        errors = []
        for i, node in enumerate(nodes):
            if not isinstance(node, dict):
                continue
            if self.relation.kind == RelationKind.MORPH_TO:
                if node.get("resource") not in self.relation.targets:
                    continue
                target = self.graph[node["resource"]]
            else:
                target = self.graph.target(self.relation)
            if node.get(target.key) is None:
                errors.append(f"{path}.operations.{i}.{target.key}: is required to {operation}")
        return errors


class RelatedNode(CustomRule):
    """
    Validates a nested mutation node against the node rules of its target.

    The target's rules are built only when a node is present, so cyclic
    relation graphs (post -> comments -> post) never recurse past the
    payload. morph_to nodes resolve their target from the ``resource`` key.
    """

    def __init__(self, builder: RuleBuilder, relation: Relation):
        self.builder = builder
        self.relation = relation

    def validate(self, value: Any, path: str) -> list[str]:
        if not isinstance(value, dict):
            return []
        if self.relation.kind == RelationKind.MORPH_TO:
            if value.get("resource") not in self.relation.targets:
                return []
            target = self.builder.graph[value["resource"]]
        else:
            target = self.builder.graph.target(self.relation)
        return nested_errors(self.builder.node_rules(target, ""), value, path)


# =============================================================================
# Rule builder
# =============================================================================


class RuleBuilder:
    """
    Builds rule sets from the resource graph.

    Usage:
        builder = RuleBuilder(graph)
        rules = builder.search_rules(graph["PostResource"])
        errors = RuleValidator(rules).errors(payload)
    """

    def __init__(self, graph: ResourceGraph):
        self.graph = graph

    def resolve_relation(
        self, resource: ResourceDef, path: Any
    ) -> Optional[tuple[Relation, ResourceDef]]:
        """Resolve an include/aggregate relation path to (last relation, target)."""
        if not isinstance(path, str) or path not in self.graph.nested_relations(resource):
            return None
        hops = self.graph.resolve_path(resource, path)
        relation = hops[-1][1]
        return relation, self.graph.target(relation)

    def aggregate_paths(self, resource: ResourceDef) -> list[str]:
        """Relation paths whose every hop supports nested queries."""
        return [
            path
            for path in self.graph.nested_relations(resource)
            if all(r.is_nestable() for _, r in self.graph.resolve_path(resource, path))
        ]

    # --- Search ---

    def search_rules(self, resource: ResourceDef, prefix: str = "", is_root: bool = True) -> RuleSet:
        rules: RuleSet = {}
        merge_rules(rules, self.filters_rules(resource, _p(prefix, "filters"), 1))
        merge_rules(rules, self.scopes_rules(resource, _p(prefix, "scopes")))
        merge_rules(rules, self.sorts_rules(resource, _p(prefix, "sorts")))
        merge_rules(rules, self.selects_rules(resource, _p(prefix, "selects")))
        merge_rules(rules, self.aggregates_rules(resource, _p(prefix, "aggregates")))
        if is_root:
            merge_rules(rules, self.includes_rules(resource, _p(prefix, "includes")))
            rules[_p(prefix, "page")] = [Sometimes(), IsInteger(), Min(0)]
        rules[_p(prefix, "limit")] = [Sometimes(), IsInteger(), In(resource.exposed_limits())]
        return rules

    def filters_rules(self, resource: ResourceDef, prefix: str, depth: int) -> RuleSet:
        """
        Filter rules, recursing into ``nested`` groups.

        At MAX_FILTER_DEPTH the ``nested`` key itself is prohibited.
        """
        fields = tuple(self.graph.nested_exposed_fields(resource))
        rules: RuleSet = {
            prefix: [Sometimes(), IsList()],
            f"{prefix}.*": [IsDict(), FilterValue()],
            f"{prefix}.*.field": [RequiredWithout("nested"), IsString(), In(fields)],
            f"{prefix}.*.operator": [Sometimes(), IsString(), In(OPERATORS)],
            f"{prefix}.*.value": [RequiredWithout("nested")],
            f"{prefix}.*.type": [Sometimes(), IsString(), In(("and", "or"))],
        }
        if depth < MAX_FILTER_DEPTH:
            rules[f"{prefix}.*.nested"] = [
                Sometimes(),
                IsList(),
                Prohibits(("field", "operator", "value")),
            ]
            merge_rules(rules, self.filters_rules(resource, f"{prefix}.*.nested", depth + 1))
        else:
            rules[f"{prefix}.*.nested"] = [Prohibited()]
        return rules

    def scopes_rules(self, resource: ResourceDef, prefix: str) -> RuleSet:
        return {
            prefix: [Sometimes(), IsList()],
            f"{prefix}.*": [IsDict()],
            f"{prefix}.*.name": [Required(), IsString(), In(resource.exposed_scopes())],
            f"{prefix}.*.parameters": [Sometimes(), IsList()],
        }

    def sorts_rules(self, resource: ResourceDef, prefix: str) -> RuleSet:
        return {
            prefix: [Sometimes(), IsList()],
            f"{prefix}.*": [IsDict()],
            f"{prefix}.*.field": [Required(), IsString(), In(resource.exposed_fields())],
            f"{prefix}.*.direction": [Sometimes(), IsString(), In(("asc", "desc"))],
        }

    def selects_rules(self, resource: ResourceDef, prefix: str) -> RuleSet:
        return {
            prefix: [Sometimes(), IsList()],
            f"{prefix}.*": [IsDict()],
            f"{prefix}.*.field": [Required(), IsString(), In(resource.exposed_fields())],
        }

    def aggregates_rules(self, resource: ResourceDef, prefix: str) -> RuleSet:
        return {
            prefix: [Sometimes(), IsList()],
            f"{prefix}.*": [
                IsDict(),
                AggregateField(self, resource),
                AggregateFilterable(self, resource),
            ],
            f"{prefix}.*.relation": [Required(), IsString(), In(tuple(self.aggregate_paths(resource)))],
            f"{prefix}.*.type": [Required(), IsString(), In(AGGREGATE_TYPES)],
            f"{prefix}.*.field": [
                RequiredIf("type", FIELD_AGGREGATES),
                ProhibitedIf("type", ("count", "exists")),
                IsString(),
            ],
            f"{prefix}.*.filters": [Sometimes(), IsList()],
        }

    def includes_rules(self, resource: ResourceDef, prefix: str) -> RuleSet:
        return {
            prefix: [Sometimes(), IsList()],
            f"{prefix}.*": [IsDict(), Includable(self, resource)],
            f"{prefix}.*.relation": [
                Required(),
                IsString(),
                In(tuple(self.graph.nested_relations(resource))),
            ],
            f"{prefix}.*.includes": [Prohibited()],
        }

    # --- Mutate ---

    def mutate_rules(self, resource: ResourceDef, prefix: str = "mutate") -> RuleSet:
        rules: RuleSet = {
            prefix: [Required(), IsList()],
            f"{prefix}.*": [IsDict()],
            f"{prefix}.*.pivot": [Prohibited()],
            f"{prefix}.*.resource": [Prohibited()],
        }
        return merge_rules(rules, self.node_rules(resource, f"{prefix}.*"))

    def node_rules(self, resource: ResourceDef, prefix: str) -> RuleSet:
        """Rules of one mutation node; nested nodes are checked by RelatedNode."""
        rules: RuleSet = {
            prefix: [Fillable(resource)],
            _p(prefix, "relations"): [Sometimes(), IsDict(), KnownRelations(resource)],
        }
        for name, relation in resource.relations.items():
            relation_prefix = _p(prefix, f"relations.{name}")
            merge_rules(rules, relation.rules(resource, relation_prefix))
            if not relation.is_mutable():
                continue

            merge_rules(rules, {
                relation_prefix: [OperationKeys(self.graph, relation)],
                f"{relation_prefix}.operations.*": [RelatedNode(self, relation)],
            })
        return rules


# =============================================================================
# Entry points
# =============================================================================


def _pydantic_errors(error: PydanticValidationError, prefix: str = "") -> list[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        messages.append(f"{_p(prefix, location)}: {item['msg']}")
    return messages


def validate_search(graph: ResourceGraph, resource: ResourceDef, payload: Any) -> SearchSpecification:
    """
    Validate a search body and parse it.

    Raises:
        ValidationError: with every rule violation
    """
    if not isinstance(payload, dict):
        raise ValidationError(["search: body must be an object"])

    errors = RuleValidator(RuleBuilder(graph).search_rules(resource)).errors(payload)
    if errors:
        raise ValidationError(errors)

    try:
        return SearchSpecification.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(_pydantic_errors(e)) from e


def normalize_mutation(payload: Any) -> Any:
    """
    Accept ``{"mutate": [...]}``, a list of nodes or a single node.

    Returns the list of root nodes (unvalidated).
    """
    if isinstance(payload, dict) and "mutate" in payload:
        return payload["mutate"]
    if isinstance(payload, dict):
        return [payload]
    return payload


def validate_mutation(graph: ResourceGraph, resource: ResourceDef, payload: Any) -> list[MutationNode]:
    """
    Validate a mutate body and parse it into root nodes.

    Raises:
        ValidationError: with every rule violation
        UnsupportedOperationError: when a payload targets a read-only relation
    """
    data = {"mutate": normalize_mutation(payload)}

    errors = RuleValidator(RuleBuilder(graph).mutate_rules(resource)).errors(data)
    if errors:
        raise ValidationError(errors)

    try:
        return [MutationNode.model_validate(node) for node in data["mutate"]]
    except PydanticValidationError as e:
        raise ValidationError(_pydantic_errors(e, "mutate")) from e
