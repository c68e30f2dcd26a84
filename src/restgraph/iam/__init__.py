"""
Authorization module.
"""

from __future__ import annotations

from .service import ACTIONS, Authorizer, Policy, authorizer

__all__ = [
    "ACTIONS",
    "Authorizer",
    "Policy",
    "authorizer",
]
