"""
Relation descriptors.

A relation is a tagged value: ``Relation(kind=RelationKind.HAS_MANY, ...)``.
Kind-specific behaviour (cardinality, how the link is stored, mutability,
allowed mutation operations) lives in the ``POLICIES`` dispatch table.

Usage:
    class PostResource(Resource):
        model = Post
        relations = (
            belongs_to("author", "UserResource", foreign_key="author_id"),
            has_many("comments", "CommentResource", foreign_key="post_id"),
            belongs_to_many(
                "tags", "TagResource",
                pivot_table="post_tag",
                foreign_pivot_key="post_id",
                related_pivot_key="tag_id",
                pivot_fields=("position",),
            ),
            morph_to("commentable", ("PostResource", "VideoResource")),
        )
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal, Optional

from .errors import UnsupportedOperationError, ValidationError
from .rules import (
    CustomRule,
    In,
    IsDict,
    IsList,
    IsString,
    MaxItems,
    Prohibited,
    Required,
    RuleSet,
    Sometimes,
)
from .utils import to_snake_case

if TYPE_CHECKING:
    from .resource import ResourceDef


class RelationKind(str, Enum):
    HAS_ONE = "has_one"
    BELONGS_TO = "belongs_to"
    HAS_MANY = "has_many"
    BELONGS_TO_MANY = "belongs_to_many"
    MORPH_TO = "morph_to"
    MORPH_ONE = "morph_one"
    MORPH_ONE_OF_MANY = "morph_one_of_many"
    MORPH_MANY = "morph_many"
    MORPH_TO_MANY = "morph_to_many"
    MORPHED_BY_MANY = "morphed_by_many"
    HAS_ONE_THROUGH = "has_one_through"
    HAS_MANY_THROUGH = "has_many_through"


# Mutation operations accepted under ``relations.<name>.operation``
OPERATIONS = ("create", "attach", "detach", "sync")


@dataclass(frozen=True)
class RelationPolicy:
    """
    Per-kind behaviour.

    link:
        child   - the related row stores the parent's key (has_*, morph_one/many)
        parent  - the parent row stores the related key (belongs_to, morph_to)
        pivot   - a join table stores both keys (belongs_to_many, morph_*_many)
        through - derived through an intermediate table, read only
    """
    cardinality: Literal["one", "many"]
    link: Literal["child", "parent", "pivot", "through"]
    mutable: bool = True
    operations: frozenset = frozenset()
    nestable: bool = True


_LINKING = frozenset({"create", "attach", "detach"})
_PIVOTING = frozenset(OPERATIONS)

POLICIES: dict[RelationKind, RelationPolicy] = {
    RelationKind.HAS_ONE: RelationPolicy("one", "child", operations=_LINKING),
    RelationKind.HAS_MANY: RelationPolicy("many", "child", operations=_LINKING),
    RelationKind.MORPH_ONE: RelationPolicy("one", "child", operations=_LINKING),
    RelationKind.MORPH_ONE_OF_MANY: RelationPolicy("one", "child", operations=_LINKING),
    RelationKind.MORPH_MANY: RelationPolicy("many", "child", operations=_LINKING),
    RelationKind.BELONGS_TO: RelationPolicy("one", "parent", operations=_LINKING),
    RelationKind.MORPH_TO: RelationPolicy("one", "parent", operations=_LINKING, nestable=False),
    RelationKind.BELONGS_TO_MANY: RelationPolicy("many", "pivot", operations=_PIVOTING),
    RelationKind.MORPH_TO_MANY: RelationPolicy("many", "pivot", operations=_PIVOTING),
    RelationKind.MORPHED_BY_MANY: RelationPolicy("many", "pivot", operations=_PIVOTING),
    RelationKind.HAS_ONE_THROUGH: RelationPolicy("one", "through", mutable=False),
    RelationKind.HAS_MANY_THROUGH: RelationPolicy("many", "through", mutable=False),
}


# =============================================================================
# Relation-specific constraints
# =============================================================================


class ImmutableRelation(CustomRule):
    """Rejects any payload under a read-only relation."""

    def __init__(self, relation: "Relation"):
        self.relation = relation

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ImmutableRelation) and other.relation == self.relation

    def __hash__(self) -> int:
        return hash(("immutable", self.relation.name))

    def validate(self, value: Any, path: str) -> list[str]:
        raise UnsupportedOperationError(self.relation.name, self.relation.kind.value)


class PivotFields(CustomRule):
    """Restricts join-record values to the relation's pivot allow-list."""

    def __init__(self, allowed: tuple[str, ...]):
        self.allowed = allowed

    def __eq__(self, other: object) -> bool:
        return isinstance(other, PivotFields) and other.allowed == self.allowed

    def __hash__(self) -> int:
        return hash(("pivot", self.allowed))

    def validate(self, value: Any, path: str) -> list[str]:
        if not isinstance(value, dict):
            return []
        return [
            f"{path}.{key}: pivot field is not allowed"
            for key in value
            if key not in self.allowed
        ]


# =============================================================================
# Relation descriptor
# =============================================================================


@dataclass(frozen=True)
class Relation:
    """
    Declarative description of how two resources associate.

    Key attributes by kind:
        has_one / has_many:          foreign_key on target, local_key on parent
        belongs_to:                  foreign_key on parent, owner_key on target
        morph_to:                    foreign_key + morph_type on parent
        morph_one / morph_many:      foreign_key + morph_type on target
        morph_one_of_many:           same, plus of_many=(column, "max"|"min")
        belongs_to_many:             pivot_table with foreign_pivot_key -> parent,
                                     related_pivot_key -> target
        morph_to_many:               same, pivot morph_type holds the parent alias
        morphed_by_many:             same, pivot morph_type holds the target alias
        has_one_through / many:      through_table.first_key -> parent.local_key,
                                     target.second_key -> through.second_local_key
    """
    name: str
    kind: RelationKind
    targets: tuple[str, ...]
    foreign_key: Optional[str] = None
    local_key: str = "id"
    owner_key: str = "id"
    morph_type: Optional[str] = None
    pivot_table: Optional[str] = None
    foreign_pivot_key: Optional[str] = None
    related_pivot_key: Optional[str] = None
    related_key: str = "id"
    pivot_fields: tuple[str, ...] = ()
    through_table: Optional[str] = None
    first_key: Optional[str] = None
    second_key: Optional[str] = None
    second_local_key: str = "id"
    of_many: Optional[tuple[str, str]] = None

    @property
    def policy(self) -> RelationPolicy:
        return POLICIES[self.kind]

    @property
    def target(self) -> str:
        """Target resource name (first one for morph_to)."""
        return self.targets[0]

    @property
    def cardinality(self) -> str:
        return self.policy.cardinality

    @property
    def link(self) -> str:
        return self.policy.link

    @property
    def is_morph(self) -> bool:
        return self.morph_type is not None

    def is_mutable(self) -> bool:
        return self.policy.mutable

    def is_nestable(self) -> bool:
        return self.policy.nestable

    def allows(self, operation: str) -> bool:
        return operation in self.policy.operations

    def resolve_target(self, tag: Any) -> str:
        """Resolve a morph_to discriminator to one of the declared targets."""
        if tag not in self.targets:
            raise ValidationError([
                f"{self.name}: resource type {tag!r} is not one of {', '.join(self.targets)}"
            ])
        return tag

    def rules(self, resource: "ResourceDef", prefix: str) -> RuleSet:
        """
        Constraints contributed under ``prefix`` (``...relations.<name>``).

        Read-only kinds contribute a single constraint on their own key that
        rejects any payload.
        """
        if not self.is_mutable():
            return {prefix: [ImmutableRelation(self)]}

        operations_rules: list = [Required(), IsList()]
        if self.cardinality == "one":
            operations_rules.append(MaxItems(1))

        rules: RuleSet = {
            prefix: [Sometimes(), IsDict()],
            f"{prefix}.operation": [Sometimes(), IsString(), In(tuple(sorted(self.policy.operations)))],
            f"{prefix}.operations": operations_rules,
            f"{prefix}.operations.*": [IsDict()],
        }

        if self.link == "pivot":
            rules[f"{prefix}.operations.*.pivot"] = [Sometimes(), IsDict(), PivotFields(self.pivot_fields)]
        else:
            rules[f"{prefix}.operations.*.pivot"] = [Prohibited()]

        if self.kind == RelationKind.MORPH_TO:
            rules[f"{prefix}.operations.*.resource"] = [Required(), IsString(), In(self.targets)]
        else:
            rules[f"{prefix}.operations.*.resource"] = [Prohibited()]

        return rules

    def before_mutating(self, model: Any, entry: Any) -> None:
        """Hook invoked before the nested write of this relation."""
        if not self.is_mutable():
            raise UnsupportedOperationError(self.name, self.kind.value)

    def after_mutating(self, model: Any, entry: Any, results: list) -> None:
        """Hook invoked after the nested write of this relation."""
        if not self.is_mutable():
            raise UnsupportedOperationError(self.name, self.kind.value)


# =============================================================================
# Factories
# =============================================================================


def has_one(name: str, target: str, foreign_key: str, local_key: str = "id") -> Relation:
    return Relation(name, RelationKind.HAS_ONE, (target,), foreign_key=foreign_key, local_key=local_key)


def has_many(name: str, target: str, foreign_key: str, local_key: str = "id") -> Relation:
    return Relation(name, RelationKind.HAS_MANY, (target,), foreign_key=foreign_key, local_key=local_key)


def belongs_to(name: str, target: str, foreign_key: str, owner_key: str = "id") -> Relation:
    return Relation(name, RelationKind.BELONGS_TO, (target,), foreign_key=foreign_key, owner_key=owner_key)


def morph_to(name: str, targets: tuple[str, ...] | list[str], morph_name: Optional[str] = None) -> Relation:
    """Polymorphic inverse; the parent stores ``{morph_name}_id`` and ``{morph_name}_type``."""
    morph_name = morph_name or to_snake_case(name)
    return Relation(
        name,
        RelationKind.MORPH_TO,
        tuple(targets),
        foreign_key=f"{morph_name}_id",
        morph_type=f"{morph_name}_type",
    )


def morph_one(name: str, target: str, morph_name: str, local_key: str = "id") -> Relation:
    return Relation(
        name,
        RelationKind.MORPH_ONE,
        (target,),
        foreign_key=f"{morph_name}_id",
        morph_type=f"{morph_name}_type",
        local_key=local_key,
    )


def morph_one_of_many(
    name: str,
    target: str,
    morph_name: str,
    column: str = "id",
    aggregate: Literal["max", "min"] = "max",
    local_key: str = "id",
) -> Relation:
    """One row picked out of a morph_many, e.g. the latest by ``id``."""
    return Relation(
        name,
        RelationKind.MORPH_ONE_OF_MANY,
        (target,),
        foreign_key=f"{morph_name}_id",
        morph_type=f"{morph_name}_type",
        local_key=local_key,
        of_many=(column, aggregate),
    )


def morph_many(name: str, target: str, morph_name: str, local_key: str = "id") -> Relation:
    return Relation(
        name,
        RelationKind.MORPH_MANY,
        (target,),
        foreign_key=f"{morph_name}_id",
        morph_type=f"{morph_name}_type",
        local_key=local_key,
    )


def belongs_to_many(
    name: str,
    target: str,
    pivot_table: str,
    foreign_pivot_key: str,
    related_pivot_key: str,
    local_key: str = "id",
    related_key: str = "id",
    pivot_fields: tuple[str, ...] = (),
) -> Relation:
    return Relation(
        name,
        RelationKind.BELONGS_TO_MANY,
        (target,),
        pivot_table=pivot_table,
        foreign_pivot_key=foreign_pivot_key,
        related_pivot_key=related_pivot_key,
        local_key=local_key,
        related_key=related_key,
        pivot_fields=tuple(pivot_fields),
    )


def morph_to_many(
    name: str,
    target: str,
    morph_name: str,
    pivot_table: str,
    related_pivot_key: str,
    local_key: str = "id",
    related_key: str = "id",
    pivot_fields: tuple[str, ...] = (),
) -> Relation:
    return Relation(
        name,
        RelationKind.MORPH_TO_MANY,
        (target,),
        pivot_table=pivot_table,
        foreign_pivot_key=f"{morph_name}_id",
        morph_type=f"{morph_name}_type",
        related_pivot_key=related_pivot_key,
        local_key=local_key,
        related_key=related_key,
        pivot_fields=tuple(pivot_fields),
    )


def morphed_by_many(
    name: str,
    target: str,
    morph_name: str,
    pivot_table: str,
    foreign_pivot_key: str,
    local_key: str = "id",
    related_key: str = "id",
    pivot_fields: tuple[str, ...] = (),
) -> Relation:
    return Relation(
        name,
        RelationKind.MORPHED_BY_MANY,
        (target,),
        pivot_table=pivot_table,
        foreign_pivot_key=foreign_pivot_key,
        related_pivot_key=f"{morph_name}_id",
        morph_type=f"{morph_name}_type",
        local_key=local_key,
        related_key=related_key,
        pivot_fields=tuple(pivot_fields),
    )


def has_one_through(
    name: str,
    target: str,
    through_table: str,
    first_key: str,
    second_key: str,
    local_key: str = "id",
    second_local_key: str = "id",
) -> Relation:
    return Relation(
        name,
        RelationKind.HAS_ONE_THROUGH,
        (target,),
        through_table=through_table,
        first_key=first_key,
        second_key=second_key,
        local_key=local_key,
        second_local_key=second_local_key,
    )


def has_many_through(
    name: str,
    target: str,
    through_table: str,
    first_key: str,
    second_key: str,
    local_key: str = "id",
    second_local_key: str = "id",
) -> Relation:
    return Relation(
        name,
        RelationKind.HAS_MANY_THROUGH,
        (target,),
        through_table=through_table,
        first_key=first_key,
        second_key=second_key,
        local_key=local_key,
        second_local_key=second_local_key,
    )


FACTORIES = {
    RelationKind.HAS_ONE: has_one,
    RelationKind.BELONGS_TO: belongs_to,
    RelationKind.HAS_MANY: has_many,
    RelationKind.BELONGS_TO_MANY: belongs_to_many,
    RelationKind.MORPH_TO: morph_to,
    RelationKind.MORPH_ONE: morph_one,
    RelationKind.MORPH_ONE_OF_MANY: morph_one_of_many,
    RelationKind.MORPH_MANY: morph_many,
    RelationKind.MORPH_TO_MANY: morph_to_many,
    RelationKind.MORPHED_BY_MANY: morphed_by_many,
    RelationKind.HAS_ONE_THROUGH: has_one_through,
    RelationKind.HAS_MANY_THROUGH: has_many_through,
}
