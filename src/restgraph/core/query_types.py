"""
Pydantic models for the search and mutate bodies.

These define the structure of incoming requests (after rule validation)
and the plain results handed back to the caller.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Search input ---

class Filter(BaseModel):
    """
    Filter leaf or nested group.

    Leaf:   {"field": "number", "operator": ">", "value": 100}
    Group:  {"nested": [{...}, {...}], "type": "or"}

    ``type`` is the combinator joining this filter to its preceding sibling.
    """
    field: Optional[str] = None
    operator: str = "="
    value: Any = None
    type: Literal["and", "or"] = "and"
    nested: Optional[list[Filter]] = None


class Scope(BaseModel):
    name: str
    parameters: list[Any] = Field(default_factory=list)


class Sort(BaseModel):
    field: str
    direction: Literal["asc", "desc"] = "asc"


class Select(BaseModel):
    field: str


class Aggregate(BaseModel):
    """
    Aggregate over a relation, attached as a computed column.

    {"relation": "comments", "type": "max", "field": "views", "filters": [...]}
    """
    relation: str
    type: Literal["count", "min", "max", "avg", "sum", "exists"]
    field: Optional[str] = None
    filters: list[Filter] = Field(default_factory=list)


class Include(BaseModel):
    """Eager-loaded relation with its own (non-include) search body."""
    relation: str
    filters: list[Filter] = Field(default_factory=list)
    scopes: list[Scope] = Field(default_factory=list)
    sorts: list[Sort] = Field(default_factory=list)
    selects: list[Select] = Field(default_factory=list)
    aggregates: list[Aggregate] = Field(default_factory=list)
    limit: Optional[int] = None


class SearchSpecification(BaseModel):
    """
    Main search body.

    Example:
    {
        "filters": [{"field": "number", "operator": ">", "value": 100}],
        "sorts": [{"field": "id", "direction": "desc"}],
        "includes": [{"relation": "comments", "limit": 5}],
        "limit": 10,
        "page": 1
    }
    """
    filters: list[Filter] = Field(default_factory=list)
    scopes: list[Scope] = Field(default_factory=list)
    sorts: list[Sort] = Field(default_factory=list)
    selects: list[Select] = Field(default_factory=list)
    aggregates: list[Aggregate] = Field(default_factory=list)
    includes: list[Include] = Field(default_factory=list)
    limit: Optional[int] = None
    page: int = 1


# --- Mutation input ---

class MutationNode(BaseModel):
    """
    One record to create or update.

    Field values are extra keys; the primary key (when present) selects an
    existing record.

    {"id": 3, "name": "A", "relations": {"comments": {"operations": [{...}]}}}
    """
    model_config = ConfigDict(extra="allow")

    relations: dict[str, RelationMutation] = Field(default_factory=dict)
    pivot: dict[str, Any] = Field(default_factory=dict)
    resource: Optional[str] = None

    @property
    def attributes(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class RelationMutation(BaseModel):
    operation: Literal["create", "attach", "detach", "sync"] = "create"
    operations: list[MutationNode] = Field(default_factory=list)


MutationNode.model_rebuild()


# --- Results ---

class PaginationInfo(BaseModel):
    """Pagination metadata in response."""
    total: int
    limit: int
    page: int
    offset: int
    has_next: bool


class SearchResult(BaseModel):
    data: list[dict[str, Any]] = Field(default_factory=list)
    meta: PaginationInfo


class MutationResult(BaseModel):
    """Result of a single node write, with nested relation results."""
    resource: str
    operation: Literal["create", "update", "attach", "detach", "sync", "delete", "restore", "force_delete"]
    key: Any = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    relations: dict[str, list[MutationResult]] = Field(default_factory=dict)


class MutationResponse(BaseModel):
    created: list[Any] = Field(default_factory=list)
    updated: list[Any] = Field(default_factory=list)
    results: list[MutationResult] = Field(default_factory=list)
