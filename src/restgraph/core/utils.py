"""
Utility functions for restgraph.

Includes:
- Case conversion (camelCase -> snake_case)
- Aggregate label naming
"""

from __future__ import annotations

import re
from typing import Optional


# =============================================================================
# Case conversion utilities
# =============================================================================

# Pre-compiled regex patterns for better performance
_CAMEL_TO_SNAKE_PATTERN = re.compile(r'(?<!^)(?=[A-Z])')


def to_snake_case(name: str) -> str:
    """
    Convert camelCase to snake_case.

    Examples:
        hasManyRelation -> has_many_relation
        firstName -> first_name
        HTTPResponse -> http_response
        getHTTPResponseCode -> get_http_response_code
    """
    # Handle consecutive uppercase (HTTP -> http)
    result = re.sub(r'([A-Z]+)([A-Z][a-z])', r'\1_\2', name)
    # Handle standard camelCase
    result = _CAMEL_TO_SNAKE_PATTERN.sub('_', result)
    return result.lower()


# =============================================================================
# Naming helpers
# =============================================================================


def aggregate_label(relation: str, type_: str, field: Optional[str] = None) -> str:
    """
    Build the result column name of an aggregate.

    Examples:
        ("hasManyRelation", "count", None) -> has_many_relation_count
        ("hasManyRelation", "max", "number") -> has_many_relation_max_number
        ("hasManyRelation.belongsToRelation", "exists", None)
            -> has_many_relation_belongs_to_relation_exists
    """
    parts = [relation.replace(".", "_"), type_]
    if field:
        parts.append(field)
    return "_".join(to_snake_case(part) for part in parts)
