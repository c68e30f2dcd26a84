"""
Custom exceptions for the restgraph system.
"""

from __future__ import annotations

from typing import Any, Optional


class RestGraphError(Exception):
    """Base exception for all restgraph errors."""
    pass


class ValidationError(RestGraphError):
    """Raised when a search or mutate payload violates the rule set."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Validation failed: {errors}")


class AuthorizationError(RestGraphError):
    """Raised when an authorization policy denies an action."""

    def __init__(self, action: str, resource: str, message: str = "Access denied"):
        self.action = action
        self.resource = resource
        super().__init__(f"{message}: '{action}' on {resource}")


class UnsupportedOperationError(RestGraphError):
    """Raised when a mutation targets a relation that cannot be mutated."""

    def __init__(self, relation: str, kind: Optional[str] = None, message: Optional[str] = None):
        self.relation = relation
        self.kind = kind
        if message is None:
            label = kind or "read-only"
            message = f"You can't mutate a '{label}' relation ('{relation}')."
        super().__init__(message)


class NotFoundError(RestGraphError):
    """Raised when a primary key does not resolve to a record."""

    def __init__(self, resource: str, key: Any):
        self.resource = resource
        self.key = key
        super().__init__(f"No {resource} record found for key {key!r}")


class StorageError(RestGraphError):
    """Raised when the storage backend reports a failure."""

    def __init__(self, message: str):
        super().__init__(f"Storage failure: {message}")


class ExecutionError(RestGraphError):
    """Raised when compiled input does not match the registry (internal consistency)."""

    def __init__(self, message: str, step: Optional[str] = None):
        self.step = step
        super().__init__(f"Execution failed{f' at {step}' if step else ''}: {message}")


class ResourceConfigError(RestGraphError):
    """Raised when resource declarations are invalid."""

    def __init__(self, issues: list[str]):
        self.issues = issues
        joined = "\n".join(issues)
        super().__init__(f"Resource configuration is invalid:\n{joined}")
