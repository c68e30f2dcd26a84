"""
Runtime module - search and mutation pipeline.
"""

from __future__ import annotations

from .context import Principal, RequestContext
from .executor import PlanExecutor
from .joins import RelatedSource, related_source, related_sources
from .mutation_executor import MutationCompiler, find_record
from .operations import RestOperations
from .planner import IncludeQuery, IncludeStep, QueryCompiler, QueryPlan

__all__ = [
    "Principal",
    "RequestContext",
    "RelatedSource",
    "related_source",
    "related_sources",
    "IncludeQuery",
    "IncludeStep",
    "QueryPlan",
    "QueryCompiler",
    "PlanExecutor",
    "MutationCompiler",
    "find_record",
    "RestOperations",
]
