"""
Request context for search and mutate processing.

Carries the caller identity through the compilers to the authorization hook.
"""

from __future__ import annotations


from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class Principal:
    """
    Represents the authenticated user/service making the request.

    Used by authorization policies for access decisions.
    """
    id: int | str | None = None
    roles: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def has_role(self, role: str) -> bool:
        return role in self.roles


@dataclass
class RequestContext:
    """
    Context passed through one search or mutate request.

    Contains:
    - principal: Authenticated user info for policies
    - request_id: Optional correlation id prefixed to log lines
    """
    principal: Principal = field(default_factory=Principal)
    request_id: Optional[str] = None

    def log_prefix(self) -> str:
        return f"[{self.request_id}] " if self.request_id else ""
