"""
Plan executor - runs a QueryPlan and assembles plain result rows.

Handles:
- Count and page statements
- Include steps in depth order, bound to the parent keys
- Attaching children (list for many, object or None for one) and pivot values
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import StorageError
from ..core.query_types import PaginationInfo, SearchResult
from .joins import PARENT_KEY, PIVOT_PREFIX
from .planner import IncludeQuery, IncludeStep, QueryPlan

logger = logging.getLogger(__name__)


class PlanExecutor:
    """
    Executes a QueryPlan against the database.

    Usage:
        executor = PlanExecutor(session)
        result = await executor.execute(plan)
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def execute(self, plan: QueryPlan) -> SearchResult:
        """
        Execute the plan.

        Returns:
            SearchResult with rows as dicts and pagination metadata
        """
        try:
            total = (await self.session.execute(plan.count_statement)).scalar_one()
            rows = [dict(row._mapping) for row in await self.session.execute(plan.statement)]

            loaded: dict[str, list[dict[str, Any]]] = {"": rows}
            for step in plan.includes:
                parents = loaded.get(step.parent_path or "", [])
                loaded[step.path] = await self._load(step, parents)
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e

        return SearchResult(
            data=rows,
            meta=PaginationInfo(
                total=total,
                limit=plan.limit,
                page=plan.page,
                offset=plan.offset,
                has_next=plan.offset + len(rows) < total,
            ),
        )

    async def _load(self, step: IncludeStep, parents: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Load one include step and attach its rows to ``parents``."""
        children: dict[int, list[dict[str, Any]]] = defaultdict(list)
        loaded: list[dict[str, Any]] = []

        for query in step.queries:
            targets = self._parents_for(query, parents)
            keys = self._extract_field_values(targets, query.parent_column)
            if not keys:
                continue

            logger.debug(f"Loading include '{step.path}' for {len(keys)} parent key(s)")
            result = await self.session.execute(query.statement, {"parent_keys": keys})

            by_key: dict[Any, list[dict[str, Any]]] = defaultdict(list)
            for row in result:
                item = self._row(row._mapping)
                by_key[item.pop(PARENT_KEY)].append(item)

            for parent in targets:
                matched = by_key.get(parent.get(query.parent_column), [])
                if step.limit is not None:
                    matched = matched[:step.limit]
                # Copies keep one dict per attachment point
                matched = [dict(item) for item in matched]
                children[id(parent)].extend(matched)
                loaded.extend(matched)

        for parent in parents:
            items = children.get(id(parent), [])
            if step.cardinality == "one":
                parent[step.name] = items[0] if items else None
            else:
                parent[step.name] = items

        return loaded

    def _parents_for(self, query: IncludeQuery, parents: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if query.parent_type is None:
            return parents
        column, alias = query.parent_type
        return [parent for parent in parents if parent.get(column) == alias]

    def _row(self, mapping: Any) -> dict[str, Any]:
        item: dict[str, Any] = {}
        pivot: dict[str, Any] = {}
        for key, value in mapping.items():
            if key.startswith(PIVOT_PREFIX):
                pivot[key[len(PIVOT_PREFIX):]] = value
            else:
                item[key] = value
        if pivot:
            item["pivot"] = pivot
        return item

    def _extract_field_values(self, items: list[dict], field: str) -> list[Any]:
        """Extract unique values of a field from items."""
        values = []
        seen = set()
        for item in items:
            value = item.get(field)
            if value is not None and value not in seen:
                values.append(value)
                seen.add(value)
        return values
