"""
Resource declarations - DRF-style configuration.

Models stay pure ORM. Everything exposed over the API is declared here.

Usage:
    class PostResource(Resource):
        model = Post
        exposed_fields = ("id", "title", "views")
        exposed_scopes = {"popular": lambda stmt, table, minimum=100: stmt.where(table.c.views >= minimum)}
        exposed_limits = (10, 25, 50)
        default_order_by = {"id": "asc"}
        relations = (
            has_many("comments", "CommentResource", foreign_key="post_id"),
        )
        soft_deletes = True
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

from sqlalchemy import Column, Table, inspect
from sqlalchemy.orm import DeclarativeBase

from .relations import Relation

# (stmt, table, *parameters) -> stmt
Scope = Callable[..., Any]


@dataclass(frozen=True, eq=False)
class ResourceDef:
    """Immutable, resolved resource definition."""
    name: str
    model: type[DeclarativeBase]
    table: Table
    key: str
    fields: tuple[str, ...]
    scopes: Mapping[str, Scope] = field(default_factory=dict)
    limits: tuple[int, ...] = (10, 25, 50)
    default_limit: int = 50
    default_order_by: Mapping[str, str] = field(default_factory=dict)
    relations: Mapping[str, Relation] = field(default_factory=dict)
    fillable: tuple[str, ...] = ()
    soft_deletes: bool = False
    deleted_at_field: str = "deleted_at"
    morph_alias: str = ""
    gates: bool = True

    def exposed_fields(self) -> tuple[str, ...]:
        return self.fields

    def exposed_scopes(self) -> tuple[str, ...]:
        return tuple(self.scopes)

    def exposed_limits(self) -> tuple[int, ...]:
        return self.limits

    def relation(self, name: str) -> Optional[Relation]:
        return self.relations.get(name)

    @property
    def key_column(self) -> Column:
        return self.table.c[self.key]

    @property
    def deleted_at_column(self) -> Optional[Column]:
        if not self.soft_deletes:
            return None
        return self.table.c[self.deleted_at_field]


class Resource:
    """
    Base class for resource declarations.

    Override attributes to customize behavior. Resolved once by
    ``ResourceRegistry.build()`` into a ``ResourceDef``.
    """

    # Required
    model: type[DeclarativeBase]

    # Optional - defaults to the class name
    name: Optional[str] = None
    # Optional - defaults to the model primary key
    key: Optional[str] = None

    exposed_fields: tuple[str, ...] = ()
    exposed_scopes: dict[str, Scope] = {}
    exposed_limits: tuple[int, ...] = (10, 25, 50)
    default_limit: int = 50
    default_order_by: Optional[dict[str, str]] = None  # None = {key: "desc"}

    relations: tuple[Relation, ...] = ()

    fillable_fields: Optional[tuple[str, ...]] = None  # None = exposed fields minus key

    soft_deletes: bool = False
    deleted_at_field: str = "deleted_at"

    # Value stored in polymorphic type columns, defaults to the table name
    morph_alias: Optional[str] = None

    # Authorization hooks are skipped when False
    gates: bool = True

    @classmethod
    def get_name(cls) -> str:
        return cls.name or cls.__name__

    @classmethod
    def get_table(cls) -> Table:
        return cls.model.__table__

    @classmethod
    def get_key(cls) -> str:
        if cls.key is not None:
            return cls.key
        return inspect(cls.model).primary_key[0].key

    @classmethod
    def get_fillable(cls) -> tuple[str, ...]:
        if cls.fillable_fields is not None:
            return tuple(cls.fillable_fields)
        key = cls.get_key()
        return tuple(f for f in cls.exposed_fields if f != key)

    @classmethod
    def to_definition(cls) -> ResourceDef:
        key = cls.get_key()
        table = cls.get_table()
        return ResourceDef(
            name=cls.get_name(),
            model=cls.model,
            table=table,
            key=key,
            fields=tuple(cls.exposed_fields),
            scopes=MappingProxyType(dict(cls.exposed_scopes)),
            limits=tuple(cls.exposed_limits),
            default_limit=cls.default_limit,
            default_order_by=MappingProxyType(dict(cls.default_order_by or {key: "desc"})),
            relations=MappingProxyType({r.name: r for r in cls.relations}),
            fillable=cls.get_fillable(),
            soft_deletes=cls.soft_deletes,
            deleted_at_field=cls.deleted_at_field,
            morph_alias=cls.morph_alias or table.name,
            gates=cls.gates,
        )
