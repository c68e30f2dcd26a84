"""Tests for resource declarations and the registry that resolves them.

Covers exposed capabilities, nested relation paths and the checks
``ResourceRegistry.build()`` runs over every declaration.
"""

import pytest

from restgraph.core.errors import ResourceConfigError
from restgraph.core.registry import ResourceRegistry
from restgraph.core.relations import RelationKind, has_many
from restgraph.core.resource import Resource
from tests.support.models import HasManyRelation, Model
from tests.support.resources import RESOURCES, build_graph


# ============================================================================
# Capabilities
# ============================================================================


class TestCapabilities:
    """Verify the capability lookups of a resolved resource."""

    def test_exposed_fields_scopes_limits(self) -> None:
        """Exposed sets mirror the declaration."""
        resource = build_graph()["ModelResource"]
        assert resource.exposed_fields() == ("id", "name", "number")
        assert resource.exposed_scopes() == ("numbered",)
        assert resource.exposed_limits() == (1, 10, 25, 50)

    def test_key_defaults_to_primary_key(self) -> None:
        """The key column is taken from the model when not declared."""
        resource = build_graph()["BelongsToResource"]
        assert resource.key == "id"
        assert resource.key_column is resource.table.c.id

    def test_default_order_falls_back_to_key_desc(self) -> None:
        """Resources without a default ordering sort by key descending."""
        graph = build_graph()
        assert dict(graph["BelongsToResource"].default_order_by) == {"id": "desc"}
        assert dict(graph["ModelResource"].default_order_by) == {"id": "asc"}

    def test_fillable_defaults_to_exposed_fields_without_key(self) -> None:
        """Fillable fields exclude the primary key."""
        assert build_graph()["ModelResource"].fillable == ("name", "number")

    def test_morph_alias_defaults_to_table_name(self) -> None:
        """Polymorphic type columns store the table name by default."""
        assert build_graph()["ModelResource"].morph_alias == "models"

    def test_definition_is_immutable(self) -> None:
        """Resolved definitions reject attribute assignment."""
        resource = build_graph()["ModelResource"]
        with pytest.raises(Exception):
            resource.name = "Other"
        with pytest.raises(TypeError):
            resource.relations["extra"] = None


# ============================================================================
# Nested relations
# ============================================================================


class TestNestedRelations:
    """Verify dotted relation paths reachable through includes."""

    def test_direct_relations_listed(self) -> None:
        """Every declared relation appears at the first level."""
        graph = build_graph()
        paths = graph.nested_relations(graph["ModelResource"])
        for name in graph["ModelResource"].relations:
            assert name in paths

    def test_second_level_paths(self) -> None:
        """Relations of related resources appear as dotted paths."""
        graph = build_graph()
        paths = graph.nested_relations(graph["ModelResource"])
        assert "hasManyRelation.model" in paths
        assert paths["hasManyRelation.model"].kind == RelationKind.BELONGS_TO

    def test_depth_is_capped(self) -> None:
        """Paths stop after two segments."""
        graph = build_graph()
        paths = graph.nested_relations(graph["ModelResource"])
        assert not any(path.count(".") > 1 for path in paths)

    def test_morph_to_is_not_traversed(self) -> None:
        """Relations with several possible targets are not expanded."""
        graph = build_graph()
        paths = graph.nested_relations(graph["ModelResource"])
        assert "morphToRelation" in paths
        assert not any(path.startswith("morphToRelation.") for path in paths)

    def test_nested_exposed_fields(self) -> None:
        """Filterable fields include relation.field for nestable relations."""
        graph = build_graph()
        fields = graph.nested_exposed_fields(graph["ModelResource"])
        assert "number" in fields
        assert "hasManyRelation.number" in fields
        assert "morphToRelation.number" not in fields


# ============================================================================
# Build checks
# ============================================================================


class TestRegistryBuild:
    """Verify build() rejects invalid declarations."""

    def test_builds_all_test_resources(self) -> None:
        """The shared test declarations are valid."""
        graph = build_graph()
        assert len(graph) == len(RESOURCES)
        assert "ModelResource" in graph

    def test_register_as_decorator(self) -> None:
        """register() returns the class so it can decorate declarations."""
        registry = ResourceRegistry()

        @registry.register
        class Solo(Resource):
            model = Model
            exposed_fields = ("id",)

        assert Solo.get_name() == "Solo"
        assert "Solo" in registry.build()

    def test_unknown_field_rejected(self) -> None:
        """Exposed fields must be columns."""
        registry = ResourceRegistry()

        class Broken(Resource):
            model = Model
            exposed_fields = ("id", "missing")

        registry.register(Broken)
        with pytest.raises(ResourceConfigError) as exc:
            registry.build()
        assert any("missing" in issue for issue in exc.value.issues)

    def test_unknown_target_rejected(self) -> None:
        """Relations must point at registered resources."""
        registry = ResourceRegistry()

        class Parent(Resource):
            model = Model
            exposed_fields = ("id",)
            relations = (has_many("children", "ChildResource", foreign_key="model_id"),)

        registry.register(Parent)
        with pytest.raises(ResourceConfigError) as exc:
            registry.build()
        assert "ChildResource" in str(exc.value)

    def test_missing_foreign_key_rejected(self) -> None:
        """Link columns are checked against the target table."""
        registry = ResourceRegistry()

        class Parent(Resource):
            model = Model
            exposed_fields = ("id",)
            relations = (has_many("children", "ChildResource", foreign_key="parent_id"),)

        class ChildResource(Resource):
            model = HasManyRelation
            exposed_fields = ("id",)

        registry.register(Parent)
        registry.register(ChildResource)
        with pytest.raises(ResourceConfigError) as exc:
            registry.build()
        assert any("parent_id" in issue for issue in exc.value.issues)

    def test_duplicate_name_rejected(self) -> None:
        """A resource name can only be registered once."""
        registry = ResourceRegistry()

        class Twice(Resource):
            model = Model
            exposed_fields = ("id",)

        registry.register(Twice)
        registry.register(Twice)
        with pytest.raises(ResourceConfigError):
            registry.build()

    def test_soft_delete_column_required(self) -> None:
        """Soft deletes need the deleted_at column."""
        registry = ResourceRegistry()

        class Soft(Resource):
            model = HasManyRelation
            exposed_fields = ("id",)
            soft_deletes = True

        registry.register(Soft)
        with pytest.raises(ResourceConfigError) as exc:
            registry.build()
        assert any("deleted_at" in issue for issue in exc.value.issues)
