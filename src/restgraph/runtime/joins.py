"""
Relation join sources.

Translates a relation descriptor into the FROM clause and join conditions
needed to reach the related rows from a parent table. Used for relation
filters (EXISTS), aggregates (correlated sub-selects) and includes
(separate statements bound to the parent keys).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import ColumnElement, FromClause, Label, and_, func, select

from ..core.errors import ExecutionError
from ..core.registry import ResourceGraph
from ..core.relations import Relation, RelationKind
from ..core.resource import ResourceDef

PIVOT_PREFIX = "__pivot_"
PARENT_KEY = "__parent_key"


@dataclass
class RelatedSource:
    """
    Where the related rows of one relation live.

    ``match`` is compared with ``parent_column`` of the parent table.
    ``conditions`` only reference the related side; ``parent_type`` adds a
    condition on the parent table (morph_to).
    """
    relation: Relation
    target: ResourceDef
    table: FromClause
    from_clause: FromClause
    parent_column: str
    match: ColumnElement
    conditions: list[ColumnElement] = field(default_factory=list)
    pivot_columns: list[Label] = field(default_factory=list)
    parent_type: Optional[tuple[str, str]] = None

    def correlated(self, parent: FromClause) -> list[ColumnElement]:
        """Conditions linking the related rows to the rows of ``parent``."""
        conditions = [self.match == parent.c[self.parent_column], *self.conditions]
        if self.parent_type is not None:
            column, alias = self.parent_type
            conditions.append(parent.c[column] == alias)
        return conditions


def _alive(resource: ResourceDef, table: FromClause) -> list[ColumnElement]:
    if not resource.soft_deletes:
        return []
    return [table.c[resource.deleted_at_field].is_(None)]


def _metadata_table(resource: ResourceDef, name: Optional[str]) -> FromClause:
    table = resource.table.metadata.tables.get(name or "")
    if table is None:
        raise ExecutionError(f"Unknown table '{name}'")
    return table.alias()


def _child_source(graph: ResourceGraph, resource: ResourceDef, relation: Relation) -> RelatedSource:
    target = graph.target(relation)
    table = target.table.alias()
    conditions = _alive(target, table)
    if relation.is_morph:
        conditions.append(table.c[relation.morph_type] == resource.morph_alias)

    if relation.of_many is not None:
        column, aggregate = relation.of_many
        inner = target.table.alias()
        inner_conditions = [inner.c[relation.foreign_key] == table.c[relation.foreign_key]]
        inner_conditions.extend(_alive(target, inner))
        if relation.is_morph:
            inner_conditions.append(inner.c[relation.morph_type] == resource.morph_alias)
        picked = (
            select(getattr(func, aggregate)(inner.c[column]))
            .where(*inner_conditions)
            .scalar_subquery()
        )
        conditions.append(table.c[column] == picked)

    return RelatedSource(
        relation=relation,
        target=target,
        table=table,
        from_clause=table,
        parent_column=relation.local_key,
        match=table.c[relation.foreign_key],
        conditions=conditions,
    )


def _parent_source(
    graph: ResourceGraph,
    resource: ResourceDef,
    relation: Relation,
    target_name: Optional[str] = None,
) -> RelatedSource:
    target = graph[target_name] if target_name else graph.target(relation)
    table = target.table.alias()
    parent_type = None
    if relation.kind == RelationKind.MORPH_TO:
        parent_type = (relation.morph_type, target.morph_alias)
    return RelatedSource(
        relation=relation,
        target=target,
        table=table,
        from_clause=table,
        parent_column=relation.foreign_key,
        match=table.c[relation.owner_key],
        conditions=_alive(target, table),
        parent_type=parent_type,
    )


def _pivot_source(graph: ResourceGraph, resource: ResourceDef, relation: Relation) -> RelatedSource:
    target = graph.target(relation)
    table = target.table.alias()
    pivot = _metadata_table(resource, relation.pivot_table)
    conditions = _alive(target, table)
    if relation.kind == RelationKind.MORPH_TO_MANY:
        conditions.append(pivot.c[relation.morph_type] == resource.morph_alias)
    elif relation.kind == RelationKind.MORPHED_BY_MANY:
        conditions.append(pivot.c[relation.morph_type] == target.morph_alias)
    return RelatedSource(
        relation=relation,
        target=target,
        table=table,
        from_clause=table.join(pivot, pivot.c[relation.related_pivot_key] == table.c[relation.related_key]),
        parent_column=relation.local_key,
        match=pivot.c[relation.foreign_pivot_key],
        conditions=conditions,
        pivot_columns=[pivot.c[name].label(f"{PIVOT_PREFIX}{name}") for name in relation.pivot_fields],
    )


def _through_source(graph: ResourceGraph, resource: ResourceDef, relation: Relation) -> RelatedSource:
    target = graph.target(relation)
    table = target.table.alias()
    through = _metadata_table(resource, relation.through_table)
    return RelatedSource(
        relation=relation,
        target=target,
        table=table,
        from_clause=table.join(through, table.c[relation.second_key] == through.c[relation.second_local_key]),
        parent_column=relation.local_key,
        match=through.c[relation.first_key],
        conditions=_alive(target, table),
    )


_BUILDERS = {
    "child": _child_source,
    "parent": _parent_source,
    "pivot": _pivot_source,
    "through": _through_source,
}


def related_sources(graph: ResourceGraph, resource: ResourceDef, relation: Relation) -> list[RelatedSource]:
    """One source per possible target (several for morph_to)."""
    if relation.kind == RelationKind.MORPH_TO:
        return [_parent_source(graph, resource, relation, name) for name in relation.targets]
    return [_BUILDERS[relation.link](graph, resource, relation)]


def related_source(graph: ResourceGraph, resource: ResourceDef, relation: Relation) -> RelatedSource:
    """Single-target source; morph_to has no single target."""
    if relation.kind == RelationKind.MORPH_TO:
        raise ExecutionError(f"Relation '{relation.name}' has several possible targets")
    return _BUILDERS[relation.link](graph, resource, relation)


def relation_path(
    graph: ResourceGraph,
    resource: ResourceDef,
    parent: FromClause,
    path: str,
) -> tuple[RelatedSource, FromClause, list[ColumnElement]]:
    """
    Join every hop of a dotted relation path into one FROM clause.

    Returns the last hop's source, the joined FROM clause and the conditions
    correlating it to ``parent``.
    """
    hops = graph.resolve_path(resource, path)
    owner, relation = hops[0]
    source = related_source(graph, owner, relation)
    from_clause: Any = source.from_clause
    conditions = source.correlated(parent)

    for owner, relation in hops[1:]:
        previous = source
        source = related_source(graph, owner, relation)
        from_clause = from_clause.join(
            source.from_clause,
            and_(source.match == previous.table.c[source.parent_column], *source.conditions),
        )
    return source, from_clause, conditions
