"""Tests for search and mutate body validation.

Rules are derived from the test resource graph; every failure must surface
as a ValidationError (or UnsupportedOperationError for read-only
relations) before anything touches storage.
"""

import pytest

from restgraph.core.errors import UnsupportedOperationError, ValidationError
from restgraph.core.validator import (
    RuleBuilder,
    normalize_mutation,
    validate_mutation,
    validate_search,
)
from tests.support.resources import build_graph


@pytest.fixture(scope="module")
def graph():
    return build_graph()


@pytest.fixture
def model(graph):
    return graph["ModelResource"]


def search_errors(graph, resource, payload) -> list[str]:
    with pytest.raises(ValidationError) as exc:
        validate_search(graph, resource, payload)
    return exc.value.errors


def mutation_errors(graph, resource, payload) -> list[str]:
    with pytest.raises(ValidationError) as exc:
        validate_mutation(graph, resource, payload)
    return exc.value.errors


# ============================================================================
# Filters
# ============================================================================


class TestFilters:
    """Verify filter validation."""

    def test_valid_filter_parses(self, graph, model) -> None:
        """A valid leaf filter is parsed into the specification."""
        spec = validate_search(
            graph, model, {"filters": [{"field": "number", "operator": ">", "value": 100}]}
        )
        assert spec.filters[0].field == "number"
        assert spec.filters[0].operator == ">"
        assert spec.filters[0].type == "and"

    def test_unexposed_field_rejected(self, graph, model) -> None:
        """Filtering on a column that is not exposed fails."""
        errors = search_errors(graph, model, {"filters": [{"field": "deleted_at", "value": None}]})
        assert any(e.startswith("filters.0.field") for e in errors)

    def test_relation_field_accepted(self, graph, model) -> None:
        """relation.field filters are allowed for nestable relations."""
        validate_search(graph, model, {"filters": [{"field": "hasManyRelation.number", "value": 1}]})

    def test_unknown_operator_rejected(self, graph, model) -> None:
        """Operators outside the allow-list fail."""
        errors = search_errors(
            graph, model, {"filters": [{"field": "id", "operator": "between", "value": 1}]}
        )
        assert any(e.startswith("filters.0.operator") for e in errors)

    def test_in_operator_needs_array(self, graph, model) -> None:
        """``in`` takes a list of values."""
        errors = search_errors(
            graph, model, {"filters": [{"field": "id", "operator": "in", "value": 1}]}
        )
        assert errors == ["filters.0.value: must be an array for operator 'in'"]

    def test_nested_group_one_level(self, graph, model) -> None:
        """One level of nested filters is accepted."""
        spec = validate_search(graph, model, {
            "filters": [
                {"field": "id", "value": 1},
                {"nested": [{"field": "number", "operator": ">", "value": 3}], "type": "or"},
            ]
        })
        assert spec.filters[1].nested[0].field == "number"

    def test_nested_three_levels_rejected(self, graph, model) -> None:
        """Filters nested deeper than two levels fail before compilation."""
        errors = search_errors(graph, model, {
            "filters": [
                {"nested": [{"nested": [{"field": "id", "value": 1}]}]},
            ]
        })
        assert "filters.0.nested.0.nested: is prohibited" in errors

    def test_nested_prohibits_leaf_keys(self, graph, model) -> None:
        """A nested group cannot also be a leaf."""
        errors = search_errors(graph, model, {
            "filters": [{"field": "id", "value": 1, "nested": [{"field": "id", "value": 2}]}]
        })
        assert any("prohibits" in e for e in errors)

    def test_resource_without_fields_rejects_every_field(self, graph) -> None:
        """Nothing is filterable on a resource exposing no fields."""
        resource = graph["NoExposedFieldsResource"]
        errors = search_errors(graph, resource, {"filters": [{"field": "id", "value": 1}]})
        assert any(e.startswith("filters.0.field") for e in errors)


# ============================================================================
# Scopes, sorts, selects, limits
# ============================================================================


class TestSearchKeys:
    """Verify scopes, sorts, selects, limit and page."""

    def test_scope_must_be_exposed(self, graph, model) -> None:
        """Unknown scopes fail; exposed ones parse with parameters."""
        assert search_errors(graph, model, {"scopes": [{"name": "unknown"}]})
        spec = validate_search(graph, model, {"scopes": [{"name": "numbered", "parameters": [5]}]})
        assert spec.scopes[0].parameters == [5]

    def test_sort_direction(self, graph, model) -> None:
        """Sort direction is asc or desc."""
        errors = search_errors(graph, model, {"sorts": [{"field": "id", "direction": "up"}]})
        assert any(e.startswith("sorts.0.direction") for e in errors)

    def test_select_must_be_exposed(self, graph, model) -> None:
        """Selects are restricted to exposed fields."""
        errors = search_errors(graph, model, {"selects": [{"field": "deleted_at"}]})
        assert any(e.startswith("selects.0.field") for e in errors)

    def test_limit_must_be_exposed(self, graph, model) -> None:
        """Page sizes come from the exposed limits."""
        assert search_errors(graph, model, {"limit": 7}) == ["limit: value 7 is not allowed"]

    def test_page_non_negative(self, graph, model) -> None:
        """Negative pages fail; zero is accepted."""
        assert search_errors(graph, model, {"page": -1}) == ["page: must be at least 0"]
        assert validate_search(graph, model, {"page": 0}).page == 0

    def test_body_must_be_object(self, graph, model) -> None:
        """A non-object search body fails."""
        assert search_errors(graph, model, []) == ["search: body must be an object"]

    def test_several_errors_reported_together(self, graph, model) -> None:
        """Every violation is reported at once."""
        errors = search_errors(graph, model, {"limit": 7, "sorts": [{"field": "nope"}]})
        assert len(errors) == 2


# ============================================================================
# Aggregates
# ============================================================================


class TestAggregates:
    """Verify aggregate validation."""

    def test_count_without_field(self, graph, model) -> None:
        """count takes no field."""
        validate_search(graph, model, {"aggregates": [{"relation": "hasManyRelation", "type": "count"}]})

    def test_count_with_field_rejected(self, graph, model) -> None:
        """count and exists prohibit a field."""
        errors = search_errors(graph, model, {
            "aggregates": [{"relation": "hasManyRelation", "type": "exists", "field": "number"}]
        })
        assert any(e.startswith("aggregates.0.field") for e in errors)

    def test_max_requires_field(self, graph, model) -> None:
        """min/max/avg/sum require a field."""
        errors = search_errors(graph, model, {
            "aggregates": [{"relation": "hasManyRelation", "type": "max"}]
        })
        assert any(e.startswith("aggregates.0.field") for e in errors)

    def test_field_must_be_exposed_by_target(self, graph, model) -> None:
        """The aggregated field belongs to the related resource."""
        errors = search_errors(graph, model, {
            "aggregates": [{"relation": "hasManyRelation", "type": "max", "field": "model_id"}]
        })
        assert errors == [
            "aggregates.0.field: value 'model_id' is not an exposed field of HasManyResource"
        ]

    def test_filters_validated_against_target(self, graph, model) -> None:
        """Aggregate filters use the related resource's fields."""
        validate_search(graph, model, {
            "aggregates": [{
                "relation": "hasManyRelation",
                "type": "count",
                "filters": [{"field": "number", "operator": ">", "value": 1}],
            }]
        })
        errors = search_errors(graph, model, {
            "aggregates": [{
                "relation": "hasManyRelation",
                "type": "count",
                "filters": [{"field": "name", "value": "x"}],
            }]
        })
        assert any(e.startswith("aggregates.0.filters.0.field") for e in errors)

    def test_nested_relation_path(self, graph, model) -> None:
        """Dotted paths are accepted when every hop is nestable."""
        validate_search(graph, model, {
            "aggregates": [{"relation": "hasManyRelation.model", "type": "max", "field": "number"}]
        })

    def test_morph_to_rejected(self, graph, model) -> None:
        """Relations with several targets cannot be aggregated."""
        errors = search_errors(graph, model, {
            "aggregates": [{"relation": "morphToRelation", "type": "count"}]
        })
        assert any(e.startswith("aggregates.0.relation") for e in errors)


# ============================================================================
# Includes
# ============================================================================


class TestIncludes:
    """Verify include validation."""

    def test_include_with_nested_search(self, graph, model) -> None:
        """Includes carry their own search body for the related resource."""
        spec = validate_search(graph, model, {
            "includes": [{
                "relation": "hasManyRelation",
                "filters": [{"field": "number", "operator": ">=", "value": 2}],
                "sorts": [{"field": "number", "direction": "desc"}],
                "limit": 10,
            }]
        })
        assert spec.includes[0].relation == "hasManyRelation"
        assert spec.includes[0].limit == 10

    def test_include_search_uses_target_fields(self, graph, model) -> None:
        """Include filters are checked against the related resource."""
        errors = search_errors(graph, model, {
            "includes": [{"relation": "hasManyRelation", "filters": [{"field": "name", "value": "x"}]}]
        })
        assert any(e.startswith("includes.0.filters.0.field") for e in errors)

    def test_unknown_relation_rejected(self, graph, model) -> None:
        """Include relations come from the nested relation paths."""
        errors = search_errors(graph, model, {"includes": [{"relation": "unknown"}]})
        assert any(e.startswith("includes.0.relation") for e in errors)

    def test_dotted_include(self, graph, model) -> None:
        """Second level paths are valid include relations."""
        validate_search(graph, model, {"includes": [{"relation": "hasManyRelation.model"}]})

    def test_nested_includes_prohibited(self, graph, model) -> None:
        """Includes cannot declare their own includes."""
        errors = search_errors(graph, model, {
            "includes": [{"relation": "hasManyRelation", "includes": [{"relation": "model"}]}]
        })
        assert "includes.0.includes: is prohibited" in errors

    def test_morph_to_include_without_search(self, graph, model) -> None:
        """morph_to can be included but not searched into."""
        validate_search(graph, model, {"includes": [{"relation": "morphToRelation"}]})
        errors = search_errors(graph, model, {
            "includes": [{"relation": "morphToRelation", "filters": [{"field": "id", "value": 1}]}]
        })
        assert errors == [
            "includes.0.filters: relation 'morphToRelation' does not support nested search"
        ]


# ============================================================================
# Mutations
# ============================================================================


class TestMutations:
    """Verify mutate body validation."""

    def test_normalize_shapes(self) -> None:
        """The body may be wrapped, a list or a single node."""
        assert normalize_mutation({"mutate": [{"name": "a"}]}) == [{"name": "a"}]
        assert normalize_mutation([{"name": "a"}]) == [{"name": "a"}]
        assert normalize_mutation({"name": "a"}) == [{"name": "a"}]

    def test_nested_create_parses(self, graph, model) -> None:
        """A node with nested relation operations parses."""
        nodes = validate_mutation(graph, model, {
            "name": "A",
            "relations": {"hasManyRelation": {"operations": [{"number": 1}, {"number": 2}]}},
        })
        assert nodes[0].attributes == {"name": "A"}
        entry = nodes[0].relations["hasManyRelation"]
        assert entry.operation == "create"
        assert [n.attributes for n in entry.operations] == [{"number": 1}, {"number": 2}]

    def test_not_fillable_rejected(self, graph, model) -> None:
        """Only fillable fields and the key are accepted."""
        errors = mutation_errors(graph, model, {"deleted_at": "2024-01-01"})
        assert errors == ["mutate.0.deleted_at: field is not fillable on ModelResource"]

    def test_unknown_relation_rejected(self, graph, model) -> None:
        """Relations must be declared."""
        errors = mutation_errors(graph, model, {"relations": {"unknown": {"operations": []}}})
        assert "mutate.0.relations.unknown: relation is not declared on ModelResource" in errors

    def test_operation_must_be_supported(self, graph, model) -> None:
        """sync is only available on pivot relations."""
        errors = mutation_errors(graph, model, {
            "relations": {"hasManyRelation": {"operation": "sync", "operations": [{"id": 1}]}}
        })
        assert any(e.startswith("mutate.0.relations.hasManyRelation.operation") for e in errors)

    def test_singular_relation_takes_one_node(self, graph, model) -> None:
        """has_one accepts at most one node."""
        errors = mutation_errors(graph, model, {
            "relations": {"hasOneRelation": {"operations": [{"number": 1}, {"number": 2}]}}
        })
        assert any("must not contain more than 1" in e for e in errors)

    def test_attach_requires_key(self, graph, model) -> None:
        """attach nodes must name an existing record."""
        errors = mutation_errors(graph, model, {
            "relations": {"belongsToManyRelation": {"operation": "attach", "operations": [{"number": 1}]}}
        })
        assert "mutate.0.relations.belongsToManyRelation.operations.0.id: is required to attach" in errors

    def test_pivot_fields_allow_list(self, graph, model) -> None:
        """Pivot values are limited to the declared pivot fields."""
        validate_mutation(graph, model, {
            "relations": {"belongsToManyRelation": {"operations": [{"number": 1, "pivot": {"number": 2}}]}}
        })
        errors = mutation_errors(graph, model, {
            "relations": {"belongsToManyRelation": {"operations": [{"pivot": {"other": 2}}]}}
        })
        assert any(e.endswith("pivot field is not allowed") for e in errors)

    def test_pivot_prohibited_on_other_kinds(self, graph, model) -> None:
        """Only pivot relations accept pivot values."""
        errors = mutation_errors(graph, model, {
            "relations": {"hasManyRelation": {"operations": [{"pivot": {"number": 2}}]}}
        })
        assert "mutate.0.relations.hasManyRelation.operations.0.pivot: is prohibited" in errors

    def test_morph_to_needs_resource(self, graph, model) -> None:
        """morph_to nodes name one of the declared target resources."""
        errors = mutation_errors(graph, model, {
            "relations": {"morphToRelation": {"operations": [{"number": 1}]}}
        })
        assert any(e.endswith("resource: is required") for e in errors)
        validate_mutation(graph, model, {
            "relations": {"morphToRelation": {"operations": [{"resource": "MorphToResource", "number": 1}]}}
        })

    def test_through_relation_unsupported(self, graph, model) -> None:
        """Any payload under a through relation is refused."""
        with pytest.raises(UnsupportedOperationError) as exc:
            validate_mutation(graph, model, {
                "relations": {"hasOneThroughRelation": {"operations": [{"number": 1}]}}
            })
        assert str(exc.value) == "You can't mutate a 'has_one_through' relation ('hasOneThroughRelation')."

    def test_depth_follows_payload(self, graph, model) -> None:
        """Cyclic relations nest as deep as the payload goes."""
        nodes = validate_mutation(graph, model, {
            "relations": {"hasManyRelation": {"operations": [{
                "relations": {"model": {"operations": [{
                    "relations": {"hasManyRelation": {"operations": [{
                        "relations": {"model": {"operations": [{"name": "D"}]}},
                    }]}},
                }]}},
            }]}}
        })
        child = nodes[0].relations["hasManyRelation"].operations[0]
        grandparent = child.relations["model"].operations[0]
        assert grandparent.relations["hasManyRelation"].operations[0].relations["model"].operations[0].attributes == {
            "name": "D"
        }

    def test_deep_nodes_checked_against_their_resource(self, graph, model) -> None:
        """Error paths of deep nodes carry the full prefix."""
        errors = mutation_errors(graph, model, {
            "relations": {"hasManyRelation": {"operations": [{
                "relations": {"model": {"operations": [{
                    "relations": {"hasManyRelation": {"operations": [{"name": "x"}]}},
                }]}},
            }]}}
        })
        assert errors == [
            "mutate.0.relations.hasManyRelation.operations.0.relations.model.operations.0"
            ".relations.hasManyRelation.operations.0.name: field is not fillable on HasManyResource"
        ]

    def test_deep_through_relation_unsupported(self, graph, model) -> None:
        """Through relations are refused below the first level too."""
        with pytest.raises(UnsupportedOperationError):
            validate_mutation(graph, model, {
                "relations": {"hasManyRelation": {"operations": [{
                    "relations": {"model": {"operations": [{
                        "relations": {"hasOneThroughRelation": {"operations": [{"number": 1}]}},
                    }]}},
                }]}}
            })

    def test_root_pivot_prohibited(self, graph, model) -> None:
        """Root nodes have no pivot."""
        errors = mutation_errors(graph, model, {"pivot": {"number": 1}})
        assert "mutate.0.pivot: is prohibited" in errors


class TestRuleBuilder:
    """Verify the generated rule sets directly."""

    def test_filters_prohibit_nesting_at_depth_two(self, graph, model) -> None:
        """The nested key of a second level filter is prohibited."""
        rules = RuleBuilder(graph).search_rules(model)
        assert "filters.*.nested.*.nested" in rules
        assert "filters.*.nested.*.nested.*.field" not in rules

    def test_aggregate_paths_skip_morph_to(self, graph, model) -> None:
        """Aggregate paths only walk nestable relations."""
        paths = RuleBuilder(graph).aggregate_paths(model)
        assert "hasManyRelation" in paths
        assert "hasManyRelation.model" in paths
        assert "morphToRelation" not in paths
