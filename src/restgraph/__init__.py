"""
restgraph - declarative REST search and mutation for SQLAlchemy models.

Exposes database-backed resources over HTTP with a uniform protocol:
- search: filters, scopes, sorts, selects, aggregates, includes, pagination
- mutate: create/update/attach/detach/sync graphs of related records

Usage:
    from restgraph import Resource, ResourceRegistry, create_app, has_many

    class PostResource(Resource):
        model = Post
        exposed_fields = ("id", "title")
        relations = (has_many("comments", "CommentResource", foreign_key="post_id"),)

    registry = ResourceRegistry()
    registry.register(PostResource)
    registry.register(CommentResource)
    app = create_app(registry.build())
"""

from __future__ import annotations

from .core import (
    Aggregate,
    AuthorizationError,
    ExecutionError,
    Filter,
    Include,
    MutationNode,
    MutationResponse,
    MutationResult,
    NotFoundError,
    PaginationInfo,
    Relation,
    RelationKind,
    RelationMutation,
    Resource,
    ResourceConfigError,
    ResourceDef,
    ResourceGraph,
    ResourceRegistry,
    RestGraphError,
    RuleBuilder,
    SearchResult,
    SearchSpecification,
    StorageError,
    UnsupportedOperationError,
    ValidationError,
    belongs_to,
    belongs_to_many,
    has_many,
    has_many_through,
    has_one,
    has_one_through,
    load_resources,
    morph_many,
    morph_one,
    morph_one_of_many,
    morph_to,
    morph_to_many,
    morphed_by_many,
    validate_mutation,
    validate_search,
)
from .iam import Authorizer, authorizer
from .runtime import (
    MutationCompiler,
    PlanExecutor,
    Principal,
    QueryCompiler,
    QueryPlan,
    RequestContext,
    RestOperations,
)
from .api import create_rest_router
from .service import Base, close_db, get_engine, get_session, init_db, transaction
from .service.app import create_app

__version__ = "0.1.0"

__all__ = [
    # Declarations
    "Resource",
    "ResourceDef",
    "ResourceRegistry",
    "ResourceGraph",
    "load_resources",
    # Relations
    "Relation",
    "RelationKind",
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
    "Aggregate",
    "Include",
    "SearchSpecification",
    "MutationNode",
    "RelationMutation",
    "PaginationInfo",
    "SearchResult",
    "MutationResult",
    "MutationResponse",
    # Validation
    "RuleBuilder",
    "validate_search",
    "validate_mutation",
    # Runtime
    "Principal",
    "RequestContext",
    "QueryCompiler",
    "QueryPlan",
    "PlanExecutor",
    "MutationCompiler",
    "RestOperations",
    # Authorization
    "Authorizer",
    "authorizer",
    # HTTP
    "create_rest_router",
    "create_app",
    # Service utilities
    "Base",
    "get_session",
    "init_db",
    "close_db",
    "get_engine",
    "transaction",
]
