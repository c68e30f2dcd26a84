"""
Mutation compiler for restgraph.

Walks a validated forest of MutationNodes depth-first and writes it inside
one transaction:

1. load (update) or instantiate (create) the record, authorizing first
2. parent-link relations (belongs_to, morph_to) so their key can be stored
3. fillable values and link columns, flush to obtain the key
4. child-link relations (has_one, has_many, morph_one, morph_many, ...)
5. pivot relations (belongs_to_many, morph_to_many, morphed_by_many)

Any failure at any depth rolls back the whole forest.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import and_, delete, insert, inspect, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import NotFoundError, UnsupportedOperationError
from ..core.query_types import MutationNode, MutationResponse, MutationResult, RelationMutation
from ..core.registry import ResourceGraph
from ..core.relations import Relation, RelationKind
from ..core.resource import ResourceDef
from ..service.database import transaction
from .context import RequestContext

if TYPE_CHECKING:
    from ..iam.service import Authorizer

logger = logging.getLogger(__name__)


async def find_record(
    session: AsyncSession,
    resource: ResourceDef,
    key: Any,
    with_trashed: bool = False,
) -> Any:
    """
    Load one record by primary key.

    Soft-deleted records are excluded unless ``with_trashed`` is set.

    Raises:
        NotFoundError: when no record matches
    """
    stmt = select(resource.model).where(resource.key_column == key)
    if resource.soft_deletes and not with_trashed:
        stmt = stmt.where(resource.deleted_at_column.is_(None))
    instance = (await session.execute(stmt)).scalar_one_or_none()
    if instance is None:
        raise NotFoundError(resource.name, key)
    return instance


def loaded_value(instance: Any, name: str) -> Any:
    """Read an already-loaded attribute without triggering a lazy load."""
    return inspect(instance).dict.get(name)


class MutationCompiler:
    """
    Executes a mutation forest against the database.

    Usage:
        compiler = MutationCompiler(graph, session, authorizer, context)
        response = await compiler.mutate(graph["PostResource"], nodes)
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

    async def mutate(self, resource: ResourceDef, nodes: list[MutationNode]) -> MutationResponse:
        """
        Write every root node (and its nested relations) atomically.

        Returns:
            MutationResponse with created/updated root keys and per-node results
        """
        response = MutationResponse()
        async with transaction(self.session):
            for node in nodes:
                result = await self.compile_node(resource, node)
                response.results.append(result)
                if result.operation == "create":
                    response.created.append(result.key)
                else:
                    response.updated.append(result.key)

        logger.info(
            f"{self.context.log_prefix()}Mutated {resource.name}: "
            f"created={response.created} updated={response.updated}"
        )
        return response

    async def compile_node(
        self,
        resource: ResourceDef,
        node: MutationNode,
        link: Optional[dict[str, Any]] = None,
    ) -> MutationResult:
        """
        Create or update one record, then its relations.

        Args:
            resource: Resource of the record
            node: Validated node
            link: Column values set by the parent (child-link relations)
        """
        attributes = node.attributes
        relations = self._relations(resource, node)

        key = attributes.get(resource.key)
        if key is not None:
            instance = await find_record(self.session, resource, key)
            await self.authorizer.authorize("update", resource, instance, self.context)
            operation = "update"
        else:
            await self.authorizer.authorize("create", resource, None, self.context)
            instance = resource.model()
            operation = "create"

        results: dict[str, list[MutationResult]] = {}

        # Parent-link relations store their key on this record
        for relation, entry in relations:
            if relation.link == "parent":
                results[relation.name] = await self._mutate_relation(resource, instance, relation, entry)

        for name in resource.fillable:
            if name in attributes:
                setattr(instance, name, attributes[name])
        for name, value in (link or {}).items():
            setattr(instance, name, value)

        self.session.add(instance)
        await self.session.flush()

        for relation, entry in relations:
            if relation.link in ("child", "pivot"):
                results[relation.name] = await self._mutate_relation(resource, instance, relation, entry)

        return self._result(resource, instance, operation, results)

    def _relations(self, resource: ResourceDef, node: MutationNode) -> list[tuple[Relation, RelationMutation]]:
        """Resolve the node's relation entries, rejecting read-only relations up front."""
        resolved = []
        for name, entry in node.relations.items():
            relation = resource.relation(name)
            if relation is None:
                raise UnsupportedOperationError(name, message=f"Unknown relation '{name}' on {resource.name}")
            if not relation.is_mutable():
                raise UnsupportedOperationError(name, relation.kind.value)
            resolved.append((relation, entry))
        return resolved

    async def _mutate_relation(
        self,
        resource: ResourceDef,
        instance: Any,
        relation: Relation,
        entry: RelationMutation,
    ) -> list[MutationResult]:
        if not relation.allows(entry.operation):
            raise UnsupportedOperationError(
                relation.name,
                relation.kind.value,
                f"Operation '{entry.operation}' is not supported by '{relation.name}'",
            )

        relation.before_mutating(instance, entry)
        if relation.link == "parent":
            results = await self._mutate_parent_link(instance, relation, entry)
        elif relation.link == "child":
            results = await self._mutate_child_link(resource, instance, relation, entry)
        else:
            results = await self._mutate_pivot(resource, instance, relation, entry)
        relation.after_mutating(instance, entry, results)
        return results

    # --- Link strategies ---

    async def _mutate_parent_link(
        self,
        instance: Any,
        relation: Relation,
        entry: RelationMutation,
    ) -> list[MutationResult]:
        """belongs_to / morph_to: the parent row stores the related key."""
        results = []
        for node in entry.operations:
            target = self._target(relation, node)
            if entry.operation == "create":
                result = await self.compile_node(target, node)
                related_key = result.attributes.get(relation.owner_key, result.key)
            else:
                related = await self._linkable(target, node, entry.operation)
                related_key = loaded_value(related, relation.owner_key)
                result = self._result(target, related, entry.operation)

            if entry.operation == "detach":
                setattr(instance, relation.foreign_key, None)
                if relation.kind == RelationKind.MORPH_TO:
                    setattr(instance, relation.morph_type, None)
            else:
                setattr(instance, relation.foreign_key, related_key)
                if relation.kind == RelationKind.MORPH_TO:
                    setattr(instance, relation.morph_type, target.morph_alias)
            results.append(result)
        return results

    async def _mutate_child_link(
        self,
        resource: ResourceDef,
        instance: Any,
        relation: Relation,
        entry: RelationMutation,
    ) -> list[MutationResult]:
        """has_one / has_many / morph_*: the related rows store the parent key."""
        target = self.graph.target(relation)
        link: dict[str, Any] = {relation.foreign_key: loaded_value(instance, relation.local_key)}
        if relation.is_morph:
            link[relation.morph_type] = resource.morph_alias

        results = []
        for node in entry.operations:
            if entry.operation == "create":
                results.append(await self.compile_node(target, node, link))
                continue

            related = await self._linkable(target, node, entry.operation)
            values = link if entry.operation == "attach" else {name: None for name in link}
            for name, value in values.items():
                setattr(related, name, value)
            await self.session.flush()
            results.append(self._result(target, related, entry.operation))
        return results

    async def _mutate_pivot(
        self,
        resource: ResourceDef,
        instance: Any,
        relation: Relation,
        entry: RelationMutation,
    ) -> list[MutationResult]:
        """belongs_to_many / morph_to_many / morphed_by_many: join records."""
        target = self.graph.target(relation)
        pivot = resource.table.metadata.tables[relation.pivot_table]
        owner = self._pivot_owner(resource, target, relation, instance)

        if entry.operation == "sync":
            return await self._sync_pivot(target, relation, pivot, owner, entry)

        results = []
        for node in entry.operations:
            if entry.operation == "create":
                result = await self.compile_node(target, node)
                related_key = result.attributes.get(relation.related_key, result.key)
            else:
                related = await self._linkable(target, node, entry.operation)
                related_key = loaded_value(related, relation.related_key)
                result = self._result(target, related, entry.operation)

            if entry.operation == "detach":
                await self.session.execute(
                    delete(pivot).where(*self._pivot_match(pivot, relation, owner, [related_key]))
                )
            else:
                await self.session.execute(
                    insert(pivot).values(**owner, **{relation.related_pivot_key: related_key}, **node.pivot)
                )
            results.append(result)
        return results

    async def _sync_pivot(
        self,
        target: ResourceDef,
        relation: Relation,
        pivot: Any,
        owner: dict[str, Any],
        entry: RelationMutation,
    ) -> list[MutationResult]:
        """Insert missing join records, update kept ones, delete the rest."""
        related_column = pivot.c[relation.related_pivot_key]
        existing = set(
            (await self.session.execute(
                select(related_column).where(*[pivot.c[name] == value for name, value in owner.items()])
            )).scalars()
        )

        results = []
        desired: list[Any] = []
        for node in entry.operations:
            related = await self._linkable(target, node, "sync")
            related_key = loaded_value(related, relation.related_key)
            desired.append(related_key)

            if related_key in existing:
                if node.pivot:
                    await self.session.execute(
                        update(pivot)
                        .where(*self._pivot_match(pivot, relation, owner, [related_key]))
                        .values(**node.pivot)
                    )
            else:
                await self.session.execute(
                    insert(pivot).values(**owner, **{relation.related_pivot_key: related_key}, **node.pivot)
                )
                # Repeated keys in one sync update the record inserted here
                existing.add(related_key)
            results.append(self._result(target, related, "sync"))

        stale = [key for key in existing if key not in desired]
        if stale:
            for key in stale:
                record = await find_record(self.session, target, key, with_trashed=True)
                await self.authorizer.authorize("detach", target, record, self.context)
            await self.session.execute(delete(pivot).where(*self._pivot_match(pivot, relation, owner, stale)))
        return results

    # --- Helpers ---

    def _target(self, relation: Relation, node: MutationNode) -> ResourceDef:
        if relation.kind == RelationKind.MORPH_TO:
            return self.graph[relation.resolve_target(node.resource)]
        return self.graph.target(relation)

    async def _linkable(self, target: ResourceDef, node: MutationNode, operation: str) -> Any:
        """Load the record named by an attach/detach/sync node and authorize the action."""
        key = node.attributes.get(target.key)
        record = await find_record(self.session, target, key)
        action = "detach" if operation == "detach" else "attach"
        await self.authorizer.authorize(action, target, record, self.context)
        return record

    def _pivot_owner(
        self,
        resource: ResourceDef,
        target: ResourceDef,
        relation: Relation,
        instance: Any,
    ) -> dict[str, Any]:
        """Pivot columns identifying the parent side of the join records."""
        owner = {relation.foreign_pivot_key: loaded_value(instance, relation.local_key)}
        if relation.kind == RelationKind.MORPH_TO_MANY:
            owner[relation.morph_type] = resource.morph_alias
        elif relation.kind == RelationKind.MORPHED_BY_MANY:
            owner[relation.morph_type] = target.morph_alias
        return owner

    def _pivot_match(self, pivot: Any, relation: Relation, owner: dict[str, Any], keys: list[Any]) -> list:
        return [
            and_(*[pivot.c[name] == value for name, value in owner.items()]),
            pivot.c[relation.related_pivot_key].in_(keys),
        ]

    def _result(
        self,
        resource: ResourceDef,
        instance: Any,
        operation: str,
        relations: Optional[dict[str, list[MutationResult]]] = None,
    ) -> MutationResult:
        state = inspect(instance).dict
        return MutationResult(
            resource=resource.name,
            operation=operation,
            key=state.get(resource.key),
            attributes={name: state[name] for name in resource.table.c.keys() if name in state},
            relations=relations or {},
        )
