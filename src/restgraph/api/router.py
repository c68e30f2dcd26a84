"""
FastAPI router for restgraph resources.

Endpoints (per registered resource):
- POST   /{resource}/search        - Search with filters/scopes/sorts/selects/aggregates/includes
- POST   /{resource}/mutate        - Create/update/attach/detach/sync graphs of records
- DELETE /{resource}/{key}         - Delete (soft delete when enabled)
- POST   /{resource}/{key}/restore - Restore a soft-deleted record
- DELETE /{resource}/{key}/force   - Permanently delete

Error mapping:
    ValidationError, UnsupportedOperationError -> 422
    AuthorizationError                         -> 403
    NotFoundError                              -> 404
    StorageError, ExecutionError               -> 500

An X-Request-ID header is carried in the RequestContext and prefixed to
the operation log lines.
"""

from __future__ import annotations


import json
import logging
from typing import Any, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import (
    AuthorizationError,
    ExecutionError,
    NotFoundError,
    StorageError,
    UnsupportedOperationError,
    ValidationError,
)
from ..core.registry import ResourceGraph
from ..core.resource import ResourceDef
from ..iam.service import Authorizer, authorizer as default_authorizer
from ..runtime.context import Principal, RequestContext
from ..runtime.operations import RestOperations
from ..service.database import get_session as default_get_session

logger = logging.getLogger(__name__)


async def get_principal() -> Principal:
    """
    Get the authenticated principal from request.

    MVP: Returns an anonymous principal.
    Production: Extract from JWT token or session.
    """
    return Principal()


def coerce_key(resource: ResourceDef, raw: str) -> Any:
    """Convert a path segment to the python type of the key column."""
    try:
        python_type = resource.key_column.type.python_type
    except NotImplementedError:
        return raw
    try:
        return python_type(raw)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=404,
            detail={"error": f"No {resource.name} record found for key {raw!r}"},
        ) from None


async def _run(call: Awaitable[Any]) -> Any:
    """Await an operation, mapping restgraph errors to HTTP errors."""
    try:
        return await call
    except ValidationError as e:
        raise HTTPException(status_code=422, detail={"errors": e.errors})
    except UnsupportedOperationError as e:
        raise HTTPException(status_code=422, detail={"error": str(e)})
    except AuthorizationError as e:
        raise HTTPException(status_code=403, detail={"error": str(e)})
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail={"error": str(e)})
    except (StorageError, ExecutionError) as e:
        logger.error(f"Request failed: {e}")
        raise HTTPException(status_code=500, detail={"error": str(e)})


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=422, detail={"errors": ["body: invalid JSON"]})


def create_rest_router(
    graph: ResourceGraph,
    get_session: Callable = default_get_session,
    authorizer: Optional[Authorizer] = None,
    get_principal: Callable = get_principal,
) -> APIRouter:
    """
    Create the router exposing every resource of ``graph``.

    Args:
        graph: Built ResourceGraph
        get_session: FastAPI dependency yielding an AsyncSession
        authorizer: Authorization hook (allow-all by default)
        get_principal: FastAPI dependency returning the caller's Principal
    """
    router = APIRouter()
    authorizer = authorizer or default_authorizer

    def operations(
        request: Request,
        session: AsyncSession = Depends(get_session),
        principal: Principal = Depends(get_principal),
    ) -> RestOperations:
        context = RequestContext(principal=principal, request_id=request.headers.get("x-request-id"))
        return RestOperations(graph, session, authorizer, context)

    def resolve(name: str) -> ResourceDef:
        resource = graph.get(name)
        if resource is None:
            raise HTTPException(status_code=404, detail={"error": f"Resource '{name}' not found"})
        return resource

    @router.post("/{resource}/search")
    async def search(resource: str, request: Request, ops: RestOperations = Depends(operations)) -> dict:
        resolve(resource)
        payload = await _json_body(request)
        result = await _run(ops.search(resource, payload))
        return result.model_dump()

    @router.post("/{resource}/mutate")
    async def mutate(resource: str, request: Request, ops: RestOperations = Depends(operations)) -> dict:
        resolve(resource)
        payload = await _json_body(request)
        response = await _run(ops.mutate(resource, payload))
        return response.model_dump()

    @router.delete("/{resource}/{key}")
    async def destroy(resource: str, key: str, ops: RestOperations = Depends(operations)) -> dict:
        result = await _run(ops.destroy(resource, coerce_key(resolve(resource), key)))
        return result.model_dump()

    @router.post("/{resource}/{key}/restore")
    async def restore(resource: str, key: str, ops: RestOperations = Depends(operations)) -> dict:
        result = await _run(ops.restore(resource, coerce_key(resolve(resource), key)))
        return result.model_dump()

    @router.delete("/{resource}/{key}/force")
    async def force_delete(resource: str, key: str, ops: RestOperations = Depends(operations)) -> dict:
        result = await _run(ops.force_delete(resource, coerce_key(resolve(resource), key)))
        return result.model_dump()

    return router
