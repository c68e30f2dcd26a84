"""
Service module - storage utilities for restgraph services.

Provides:
- Database utilities (Base, get_session, init_db, transaction)

The app factory lives in ``restgraph.service.app`` (it depends on the
runtime, which depends on this module).
"""

from __future__ import annotations

from .database import Base, close_db, get_engine, get_session, get_session_maker, init_db, transaction

__all__ = [
    # Database
    "Base",
    "get_session",
    "get_session_maker",
    "init_db",
    "close_db",
    "get_engine",
    "transaction",
]
