"""
API module - FastAPI endpoints.
"""

from __future__ import annotations

from .router import coerce_key, create_rest_router, get_principal

__all__ = [
    "create_rest_router",
    "get_principal",
    "coerce_key",
]
