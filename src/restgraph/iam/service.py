"""
Authorization service.

Policies decide whether a principal may perform an action on a resource
(and, when known, on a specific record).

Usage:
    def post_policy(action, record, principal):
        if action in ("delete", "force_delete"):
            return principal.has_role("admin")
        return True

    authorizer = Authorizer({"PostResource": post_policy})
    await authorizer.authorize("delete", graph["PostResource"], post, context)
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from ..core.errors import AuthorizationError
from ..core.resource import ResourceDef
from ..runtime.context import RequestContext

logger = logging.getLogger(__name__)

# (action, record, principal) -> bool
Policy = Callable[..., Union[bool, Awaitable[bool]]]

ACTIONS = (
    "view_any",
    "create",
    "update",
    "attach",
    "detach",
    "delete",
    "restore",
    "force_delete",
)


class Authorizer:
    """
    Authorization hook invoked before every load/create/update/delete/attach/detach.

    MVP Implementation:
    - Resources without a policy fall back to ``default``
    - Resources declared with ``gates = False`` are never checked
    """

    def __init__(self, policies: Optional[dict[str, Policy]] = None, default: bool = True):
        self.policies: dict[str, Policy] = dict(policies or {})
        self.default = default

    def register(self, resource: str, policy: Policy) -> None:
        self.policies[resource] = policy

    async def allows(
        self,
        action: str,
        resource: ResourceDef,
        record: Any = None,
        context: Optional[RequestContext] = None,
    ) -> bool:
        if not resource.gates:
            return True
        policy = self.policies.get(resource.name)
        if policy is None:
            return self.default

        principal = context.principal if context is not None else None
        allowed = policy(action, record, principal)
        if inspect.isawaitable(allowed):
            allowed = await allowed
        return bool(allowed)

    async def authorize(
        self,
        action: str,
        resource: ResourceDef,
        record: Any = None,
        context: Optional[RequestContext] = None,
    ) -> None:
        """
        Raise AuthorizationError when the action is denied.

        Args:
            action: One of ACTIONS
            resource: The resource being accessed
            record: The record (None for view_any / create)
            context: Request context carrying the principal
        """
        if not await self.allows(action, resource, record, context):
            logger.info(f"Denied '{action}' on {resource.name}")
            raise AuthorizationError(action, resource.name)


# Global authorizer instance (allows everything)
authorizer = Authorizer()
