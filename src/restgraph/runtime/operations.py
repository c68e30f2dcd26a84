"""
REST operations over registered resources.

Ties validation, compilation, authorization and execution together:

    ops = RestOperations(graph, session, authorizer, context)
    result = await ops.search("PostResource", {"filters": [...]})
    response = await ops.mutate("PostResource", {"mutate": [...]})
    await ops.destroy("PostResource", 3)
    await ops.restore("PostResource", 3)
    await ops.force_delete("PostResource", 3)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import NotFoundError, UnsupportedOperationError
from ..core.query_types import MutationResponse, MutationResult, SearchResult
from ..core.registry import ResourceGraph
from ..core.resource import ResourceDef
from ..core.validator import validate_mutation, validate_search
from ..service.database import transaction
from .context import RequestContext
from .executor import PlanExecutor
from .mutation_executor import MutationCompiler, find_record
from .planner import QueryCompiler

if TYPE_CHECKING:
    from ..iam.service import Authorizer

logger = logging.getLogger(__name__)


class RestOperations:
    """
    Search, mutate, destroy, restore and force-delete for one request.

    Validation errors are raised before any storage access.
    """

    def __init__(
        self,
        graph: ResourceGraph,
        session: AsyncSession,
        authorizer: "Authorizer",
        context: Optional[RequestContext] = None,
    ):
        self.graph = graph
        self.session = session
        self.authorizer = authorizer
        self.context = context or RequestContext()

    def resource(self, name: str) -> ResourceDef:
        resource = self.graph.get(name)
        if resource is None:
            raise NotFoundError("resource", name)
        return resource

    async def search(self, name: str, payload: Any) -> SearchResult:
        resource = self.resource(name)
        spec = validate_search(self.graph, resource, payload)
        await self.authorizer.authorize("view_any", resource, None, self.context)

        plan = QueryCompiler(self.graph).compile(resource, spec)
        result = await PlanExecutor(self.session).execute(plan)
        logger.info(
            f"{self.context.log_prefix()}Search on {resource.name} "
            f"returned {len(result.data)} of {result.meta.total}"
        )
        return result

    async def mutate(self, name: str, payload: Any) -> MutationResponse:
        resource = self.resource(name)
        nodes = validate_mutation(self.graph, resource, payload)
        compiler = MutationCompiler(self.graph, self.session, self.authorizer, self.context)
        return await compiler.mutate(resource, nodes)

    async def destroy(self, name: str, key: Any) -> MutationResult:
        """Soft delete when the resource supports it, delete otherwise."""
        resource = self.resource(name)
        async with transaction(self.session):
            instance = await find_record(self.session, resource, key)
            await self.authorizer.authorize("delete", resource, instance, self.context)
            if resource.soft_deletes:
                setattr(instance, resource.deleted_at_field, datetime.now(timezone.utc))
                await self.session.flush()
            else:
                await self.session.delete(instance)
                await self.session.flush()
            result = self._result(resource, instance, key, "delete")

        logger.info(f"{self.context.log_prefix()}Deleted {resource.name} {key!r} (soft={resource.soft_deletes})")
        return result

    async def restore(self, name: str, key: Any) -> MutationResult:
        """Clear the soft-delete marker; the lookup includes soft-deleted records."""
        resource = self.resource(name)
        if not resource.soft_deletes:
            raise UnsupportedOperationError(
                resource.name,
                message=f"{resource.name} does not support soft deletes",
            )
        async with transaction(self.session):
            instance = await find_record(self.session, resource, key, with_trashed=True)
            await self.authorizer.authorize("restore", resource, instance, self.context)
            setattr(instance, resource.deleted_at_field, None)
            await self.session.flush()
            result = self._result(resource, instance, key, "restore")

        logger.info(f"{self.context.log_prefix()}Restored {resource.name} {key!r}")
        return result

    async def force_delete(self, name: str, key: Any) -> MutationResult:
        """Permanently delete, soft-deleted records included."""
        resource = self.resource(name)
        async with transaction(self.session):
            instance = await find_record(self.session, resource, key, with_trashed=True)
            await self.authorizer.authorize("force_delete", resource, instance, self.context)
            result = self._result(resource, instance, key, "force_delete")
            await self.session.delete(instance)
            await self.session.flush()

        logger.info(f"{self.context.log_prefix()}Force deleted {resource.name} {key!r}")
        return result

    def _result(self, resource: ResourceDef, instance: Any, key: Any, operation: str) -> MutationResult:
        state = inspect(instance).dict
        return MutationResult(
            resource=resource.name,
            operation=operation,
            key=key,
            attributes={name: state[name] for name in resource.exposed_fields() if name in state},
        )
