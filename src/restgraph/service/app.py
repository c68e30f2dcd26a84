"""
App factory for restgraph services.

Creates a FastAPI application with:
- CORS middleware (origins from RESTGRAPH_CORS_ORIGINS)
- Per-request access logging, health probes excluded
- Health check endpoint listing the served resources
- Database lifecycle hooks
- The resource router
"""

from __future__ import annotations


import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from ..api.router import create_rest_router, get_principal as default_get_principal
from ..core.registry import ResourceGraph
from ..iam.service import Authorizer
from .database import close_db, get_session as default_get_session, init_db

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("restgraph.access")

QUIET_PATHS = ("/health",)


def get_cors_origins() -> list[str]:
    """Comma-separated allowed origins from environment ("*" by default)."""
    raw = os.getenv("RESTGRAPH_CORS_ORIGINS", "*")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


async def _call_hook(hook: Callable | None) -> None:
    if hook is None:
        return
    if asyncio.iscoroutinefunction(hook):
        await hook()
    else:
        hook()


def create_app(
    graph: ResourceGraph,
    *,
    title: str = "restgraph",
    prefix: str = "/api",
    get_session: Callable = default_get_session,
    authorizer: Optional[Authorizer] = None,
    get_principal: Callable = default_get_principal,
    on_startup: Callable | None = None,
    on_shutdown: Callable | None = None,
    init_database: bool = True,
) -> FastAPI:
    """
    Create a FastAPI app exposing the resources of ``graph``.

    Args:
        graph: Built ResourceGraph
        title: Application title
        prefix: Mount point of the resource router
        get_session: Session dependency (defaults to the DATABASE_URL engine)
        authorizer: Authorization hook
        get_principal: Principal dependency
        on_startup: Additional startup hook
        on_shutdown: Additional shutdown hook
        init_database: Whether to create tables on startup

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if init_database:
            await init_db()
        await _call_hook(on_startup)
        logger.info(f"{title} serving {len(graph)} resources under {prefix or '/'}")

        yield

        await _call_hook(on_shutdown)
        if init_database:
            await close_db()

    app = FastAPI(title=title, version="1.0.0", lifespan=lifespan)

    origins = get_cors_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        if request.url.path not in QUIET_PATHS:
            elapsed = (time.perf_counter() - started) * 1000
            access_logger.info(
                f"{request.method} {request.url.path} -> {response.status_code} ({elapsed:.1f}ms)"
            )
        return response

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "resources": sorted(graph)}

    app.include_router(
        create_rest_router(graph, get_session, authorizer, get_principal),
        prefix=prefix,
    )

    return app
