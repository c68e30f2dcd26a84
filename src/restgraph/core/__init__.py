"""
Core module - declarations, types, and validation.
"""

from __future__ import annotations

from .config import load_resources, relation_from_dict, resources_from_dict
from .errors import (
    AuthorizationError,
    ExecutionError,
    NotFoundError,
    ResourceConfigError,
    RestGraphError,
    StorageError,
    UnsupportedOperationError,
    ValidationError,
)
from .query_types import (
    Aggregate,
    Filter,
    Include,
    MutationNode,
    MutationResponse,
    MutationResult,
    PaginationInfo,
    RelationMutation,
    Scope,
    SearchResult,
    SearchSpecification,
    Select,
    Sort,
)
from .registry import ResourceGraph, ResourceRegistry
from .relations import (
    POLICIES,
    Relation,
    RelationKind,
    RelationPolicy,
    belongs_to,
    belongs_to_many,
    has_many,
    has_many_through,
    has_one,
    has_one_through,
    morph_many,
    morph_one,
    morph_one_of_many,
    morph_to,
    morph_to_many,
    morphed_by_many,
)
from .resource import Resource, ResourceDef
from .rules import RuleValidator
from .utils import aggregate_label, to_snake_case
from .validator import RuleBuilder, validate_mutation, validate_search

__all__ = [
    # Errors
    "RestGraphError",
    "ValidationError",
    "AuthorizationError",
    "UnsupportedOperationError",
    "NotFoundError",
    "StorageError",
    "ExecutionError",
    "ResourceConfigError",
    # Query types
    "Filter",
    "Scope",
    "Sort",
    "Select",
    "Aggregate",
    "Include",
    "SearchSpecification",
    "MutationNode",
    "RelationMutation",
    "PaginationInfo",
    "SearchResult",
    "MutationResult",
    "MutationResponse",
    # Declarations
    "Resource",
    "ResourceDef",
    "ResourceRegistry",
    "ResourceGraph",
    "load_resources",
    "resources_from_dict",
    "relation_from_dict",
    # Relations
    "Relation",
    "RelationKind",
    "RelationPolicy",
    "POLICIES",
    "has_one",
    "belongs_to",
    "has_many",
    "belongs_to_many",
    "morph_to",
    "morph_one",
    "morph_one_of_many",
    "morph_many",
    "morph_to_many",
    "morphed_by_many",
    "has_one_through",
    "has_many_through",
    # Validation
    "RuleBuilder",
    "RuleValidator",
    "validate_search",
    "validate_mutation",
    # Utils
    "to_snake_case",
    "aggregate_label",
]
