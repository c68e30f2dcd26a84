"""
Query compiler - builds an executable plan from a validated search body.

Steps are applied in a fixed order; changing it changes result semantics:

    soft-delete guard -> scopes -> filters -> selects -> sorts
    -> aggregates -> includes -> pagination

Includes become separate IncludeSteps bound to the parent keys and
executed by the PlanExecutor in depth order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from sqlalchemy import (
    ColumnElement,
    FromClause,
    Select,
    and_,
    bindparam,
    func,
    or_,
    select,
)

from ..core.errors import ExecutionError
from ..core.query_types import Aggregate, Filter, Include, Scope, SearchSpecification, Select as SelectItem, Sort
from ..core.registry import ResourceGraph
from ..core.relations import Relation, RelationKind
from ..core.resource import ResourceDef
from ..core.utils import aggregate_label
from .joins import PARENT_KEY, RelatedSource, related_sources, relation_path

logger = logging.getLogger(__name__)


@dataclass
class IncludeQuery:
    """
    One statement of an include step.

    ``parent_type`` restricts the parents it applies to (morph_to targets).
    """
    statement: Select
    parent_column: str
    parent_type: Optional[tuple[str, str]] = None


@dataclass
class IncludeStep:
    """
    Eager load of one relation path.

    Child rows are attached under ``name`` to the rows of ``parent_path``
    (None = root rows).
    """
    path: str
    parent_path: Optional[str]
    name: str
    relation: Relation
    cardinality: Literal["one", "many"]
    queries: list[IncludeQuery] = field(default_factory=list)
    limit: Optional[int] = None

    @property
    def depth(self) -> int:
        return self.path.count(".") + 1


@dataclass
class QueryPlan:
    """Compiled search: page statement, count statement and include steps."""
    resource: ResourceDef
    statement: Select
    count_statement: Select
    limit: int
    page: int
    offset: int
    includes: list[IncludeStep] = field(default_factory=list)


_COMPARISONS = {
    "=": lambda column, value: column.is_(None) if value is None else column == value,
    "!=": lambda column, value: column.is_not(None) if value is None else column != value,
    ">": lambda column, value: column > value,
    ">=": lambda column, value: column >= value,
    "<": lambda column, value: column < value,
    "<=": lambda column, value: column <= value,
    "like": lambda column, value: column.like(value),
    "not like": lambda column, value: column.not_like(value),
    "in": lambda column, value: column.in_(value),
    "not in": lambda column, value: column.not_in(value),
}


class QueryCompiler:
    """
    Compiles a SearchSpecification into a QueryPlan.

    Usage:
        compiler = QueryCompiler(graph)
        plan = compiler.compile(graph["PostResource"], spec)
        result = await PlanExecutor(session).execute(plan)
    """

    def __init__(self, graph: ResourceGraph):
        self.graph = graph

    def compile(
        self,
        resource: ResourceDef,
        spec: SearchSpecification,
        query: Optional[Select] = None,
    ) -> QueryPlan:
        """
        Build the plan.

        Args:
            resource: Root resource
            spec: Validated search body
            query: Optional base statement selecting from the resource table

        Returns:
            QueryPlan ready for the PlanExecutor
        """
        table = resource.table
        stmt = query if query is not None else select(table)

        # Soft-delete guard
        if resource.soft_deletes:
            stmt = stmt.where(resource.deleted_at_column.is_(None))

        # 1. Scopes
        stmt = self.apply_scopes(stmt, resource, table, spec.scopes)

        # 2. Filters
        stmt = self.apply_filters(stmt, resource, table, spec.filters)

        count_statement = select(func.count()).select_from(
            stmt.with_only_columns(resource.key_column).order_by(None).subquery()
        )

        includes = self.plan_includes(resource, spec.includes)
        required = [
            column
            for step in includes if step.parent_path is None
            for column in self._parent_columns(step)
        ]

        # 3. Selects
        stmt = self.apply_selects(stmt, resource, table, spec.selects, required)

        # 4. Sorts
        stmt = self.apply_sorts(stmt, resource, table, spec.sorts)

        # 5. Aggregates
        stmt = self.apply_aggregates(stmt, resource, table, spec.aggregates)

        # Pagination
        limit = spec.limit or resource.default_limit
        page = max(spec.page, 1)
        offset = (page - 1) * limit
        stmt = stmt.limit(limit).offset(offset)

        logger.debug(
            f"Compiled search on {resource.name}: limit={limit} page={page} "
            f"includes={[step.path for step in includes]}"
        )

        return QueryPlan(
            resource=resource,
            statement=stmt,
            count_statement=count_statement,
            limit=limit,
            page=page,
            offset=offset,
            includes=includes,
        )

    # --- Steps ---

    def apply_scopes(self, stmt: Select, resource: ResourceDef, table: FromClause, scopes: list[Scope]) -> Select:
        for scope in scopes:
            fn = resource.scopes.get(scope.name)
            if fn is None:
                raise ExecutionError(f"Unknown scope '{scope.name}' on {resource.name}", step="scopes")
            stmt = fn(stmt, table, *scope.parameters)
        return stmt

    def apply_filters(self, stmt: Select, resource: ResourceDef, table: FromClause, filters: list[Filter]) -> Select:
        clause = self.filters_clause(resource, table, filters)
        if clause is not None:
            stmt = stmt.where(clause)
        return stmt

    def filters_clause(
        self, resource: ResourceDef, table: FromClause, filters: list[Filter]
    ) -> Optional[ColumnElement]:
        """
        Combine filters the way chained where / or-where calls do.

        Consecutive filters are AND-ed; a filter tagged ``or`` starts a new
        conjunction which is OR-ed with the previous ones.
        """
        groups: list[list[ColumnElement]] = []
        for item in filters:
            condition = self._filter_condition(resource, table, item)
            if condition is None:
                continue
            if item.type == "or" and groups:
                groups.append([condition])
            else:
                if not groups:
                    groups.append([])
                groups[-1].append(condition)

        if not groups:
            return None
        clauses = [group[0] if len(group) == 1 else and_(*group) for group in groups]
        return clauses[0] if len(clauses) == 1 else or_(*clauses)

    def _filter_condition(self, resource: ResourceDef, table: FromClause, item: Filter) -> Optional[ColumnElement]:
        if item.nested is not None:
            return self.filters_clause(resource, table, item.nested)

        compare = _COMPARISONS.get(item.operator)
        if compare is None or item.field is None:
            raise ExecutionError(f"Invalid filter {item.field!r} {item.operator!r}", step="filters")

        if "." not in item.field:
            return compare(self._column(resource, table, item.field), item.value)

        # relation.field -> EXISTS through the relation
        path, _, field_name = item.field.rpartition(".")
        source, from_clause, conditions = relation_path(self.graph, resource, table, path)
        column = self._column(source.target, source.table, field_name)
        return (
            select(source.match)
            .select_from(from_clause)
            .where(*conditions, compare(column, item.value))
            .correlate(table)
            .exists()
        )

    def apply_selects(
        self,
        stmt: Select,
        resource: ResourceDef,
        table: FromClause,
        selects: list[SelectItem],
        required: list[str],
    ) -> Select:
        names = [item.field for item in selects] or list(resource.exposed_fields())
        for name in required:
            if name not in names:
                names.append(name)
        return stmt.with_only_columns(*[self._column(resource, table, name) for name in names])

    def apply_sorts(self, stmt: Select, resource: ResourceDef, table: FromClause, sorts: list[Sort]) -> Select:
        ordering = [(item.field, item.direction) for item in sorts] or list(resource.default_order_by.items())
        clauses = []
        for name, direction in ordering:
            column = self._column(resource, table, name)
            clauses.append(column.desc() if direction == "desc" else column.asc())
        # Stable ordering across identical requests
        if resource.key not in [name for name, _ in ordering]:
            clauses.append(table.c[resource.key].asc())
        return stmt.order_by(*clauses)

    def apply_aggregates(
        self, stmt: Select, resource: ResourceDef, table: FromClause, aggregates: list[Aggregate]
    ) -> Select:
        columns = [self.aggregate_column(resource, table, item) for item in aggregates]
        if columns:
            stmt = stmt.add_columns(*columns)
        return stmt

    def aggregate_column(self, resource: ResourceDef, table: FromClause, item: Aggregate) -> ColumnElement:
        """Correlated sub-select labelled ``snake(relation_type_field)``."""
        source, from_clause, conditions = relation_path(self.graph, resource, table, item.relation)
        filtered = self.filters_clause(source.target, source.table, item.filters)
        if filtered is not None:
            conditions = [*conditions, filtered]

        label = aggregate_label(item.relation, item.type, item.field)
        if item.type == "exists":
            return (
                select(source.match)
                .select_from(from_clause)
                .where(*conditions)
                .correlate(table)
                .exists()
                .label(label)
            )

        if item.type == "count":
            value = func.count()
        else:
            if item.field is None:
                raise ExecutionError(f"Aggregate '{item.type}' needs a field", step="aggregates")
            value = getattr(func, item.type)(self._column(source.target, source.table, item.field))
        return (
            select(value)
            .select_from(from_clause)
            .where(*conditions)
            .correlate(table)
            .scalar_subquery()
            .label(label)
        )

    # --- Includes ---

    def plan_includes(self, resource: ResourceDef, includes: list[Include]) -> list[IncludeStep]:
        """
        Build include steps, adding implicit steps for intermediate paths.

        ``a.b`` without ``a`` also loads ``a`` with its default selection.
        """
        requested = {item.relation: item for item in includes}
        paths: list[str] = []
        for item in includes:
            segments = item.relation.split(".")
            for i in range(1, len(segments) + 1):
                path = ".".join(segments[:i])
                if path not in paths:
                    paths.append(path)

        steps: dict[str, IncludeStep] = {}
        owners: dict[str, ResourceDef] = {}
        for path in sorted(paths, key=lambda p: p.count(".")):
            parent_path, _, name = path.rpartition(".")
            owner = owners[parent_path] if parent_path else resource
            relation = owner.relation(name)
            if relation is None:
                raise ExecutionError(f"Unknown relation '{name}' on {owner.name}", step="includes")
            steps[path] = IncludeStep(
                path=path,
                parent_path=parent_path or None,
                name=name,
                relation=relation,
                cardinality=relation.cardinality,
            )
            owners[path] = self.graph.target(relation)

        for path, step in steps.items():
            parent_path = step.parent_path or ""
            owner = owners[parent_path] if parent_path else resource
            required = [
                column
                for child in steps.values() if child.parent_path == path
                for column in self._parent_columns(child)
            ]
            item = requested.get(path) or Include(relation=path)
            step.limit = item.limit
            step.queries = self._include_queries(owner, step.relation, item, required)

        return sorted(steps.values(), key=lambda s: s.depth)

    def _include_queries(
        self,
        owner: ResourceDef,
        relation: Relation,
        item: Include,
        required: list[str],
    ) -> list[IncludeQuery]:
        queries = []
        for source in related_sources(self.graph, owner, relation):
            queries.append(IncludeQuery(
                statement=self._include_statement(source, item, required),
                parent_column=source.parent_column,
                parent_type=source.parent_type,
            ))
        return queries

    def _include_statement(self, source: RelatedSource, item: Include, required: list[str]) -> Select:
        target, table = source.target, source.table
        stmt = (
            select(table)
            .select_from(source.from_clause)
            .where(source.match.in_(bindparam("parent_keys", expanding=True)), *source.conditions)
        )
        if source.relation.kind != RelationKind.MORPH_TO:
            stmt = self.apply_scopes(stmt, target, table, item.scopes)
            stmt = self.apply_filters(stmt, target, table, item.filters)
            stmt = self.apply_selects(stmt, target, table, item.selects, required)
            stmt = self.apply_sorts(stmt, target, table, item.sorts)
            stmt = self.apply_aggregates(stmt, target, table, item.aggregates)
        else:
            stmt = self.apply_selects(stmt, target, table, [], required)
            stmt = self.apply_sorts(stmt, target, table, [])
        return stmt.add_columns(source.match.label(PARENT_KEY), *source.pivot_columns)

    def _parent_columns(self, step: IncludeStep) -> list[str]:
        """Columns the parent rows must carry for ``step`` to bind to them."""
        relation = step.relation
        if relation.link == "parent":
            columns = [relation.foreign_key]
            if relation.kind == RelationKind.MORPH_TO:
                columns.append(relation.morph_type)
            return columns
        return [relation.local_key]

    def _column(self, resource: ResourceDef, table: FromClause, name: str) -> ColumnElement:
        try:
            return table.c[name]
        except KeyError:
            raise ExecutionError(f"Unknown field '{name}' on {resource.name}") from None
