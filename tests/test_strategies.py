"""Tests for the exact, fuzzy and statistical matchers."""

import pytest

from conftest import make_field
from import_mapper.schema.target_fields import FormatConstraint, TargetCatalog, TargetFieldSpec
from import_mapper.strategies import ExactMatcher, FuzzyMatcher, StatisticalMatcher, value_satisfies


def by_source(candidates):
    result = {}
    for candidate in candidates:
        result.setdefault(candidate.source_field, []).append(candidate)
    return result


class TestExactMatcher:

    def test_target_name_scores_100(self, catalog, context):
        fields = [make_field("price", ["1"]), make_field("SKU", ["AB-1"]), make_field("is_variant", ["yes"])]

        candidates = by_source(ExactMatcher().propose(fields, catalog, context))

        assert [(c.target_field, c.confidence) for c in candidates["price"]] == [("price", 100.0)]
        assert [(c.target_field, c.confidence) for c in candidates["SKU"]] == [("sku", 100.0)]
        assert [(c.target_field, c.confidence) for c in candidates["is_variant"]] == [("isVariant", 100.0)]

    def test_alias_scores_90(self, catalog, context):
        fields = [make_field("Selling Price", ["1"]), make_field("product_name", ["Widget"])]

        candidates = by_source(ExactMatcher().propose(fields, catalog, context))

        assert [(c.target_field, c.confidence) for c in candidates["Selling Price"]] == [("price", 90.0)]
        assert [(c.target_field, c.confidence) for c in candidates["product_name"]] == [("name", 90.0)]

    def test_unknown_header_proposes_nothing(self, catalog, context):
        assert ExactMatcher().propose([make_field("Warehouse Bin", ["A1"])], catalog, context) == []


class TestFuzzyMatcher:

    def test_typo_maps_below_alias_confidence(self, catalog, context):
        candidates = FuzzyMatcher().propose([make_field("Prodct Name", ["Widget"])], catalog, context)

        assert len(candidates) == 1
        assert candidates[0].target_field == "name"
        assert 60 < candidates[0].confidence < 90
        assert "Product Name" in candidates[0].rationale

    def test_below_floor_proposes_nothing(self, catalog, context):
        assert FuzzyMatcher().propose([make_field("zzzzzz", ["x"])], catalog, context) == []

    def test_equal_similarity_breaks_ties_by_declaration_order(self, context):
        first = TargetCatalog([TargetFieldSpec("abcd", "string"), TargetFieldSpec("abce", "string")])
        second = TargetCatalog([TargetFieldSpec("abce", "string"), TargetFieldSpec("abcd", "string")])
        field = make_field("abcx", ["x"])

        assert FuzzyMatcher().propose([field], first, context)[0].target_field == "abcd"
        assert FuzzyMatcher().propose([field], second, context)[0].target_field == "abce"


class TestStatisticalMatcher:

    def test_barcodes_under_meaningless_header_map_to_gtin(self, catalog, context):
        field = make_field("x7q", ["4006381333931", "4006381333948", "012345678905"])

        candidates = StatisticalMatcher().propose([field], catalog, context)

        assert [(c.target_field, c.confidence) for c in candidates] == [("gtin", 85.0)]

    def test_enumeration_is_case_insensitive(self, catalog, context):
        field = make_field("col_3", ["live", "Draft", "archived"])

        candidates = StatisticalMatcher().propose([field], catalog, context)

        assert [(c.target_field, c.confidence) for c in candidates] == [("status", 85.0)]

    def test_prices_fit_both_price_fields(self, catalog, context):
        field = make_field("c1", ["19.99", "5.49", "120.50"])

        targets = {c.target_field: c.confidence for c in StatisticalMatcher().propose([field], catalog, context)}

        assert targets == {"price": 85.0, "compareAtPrice": 85.0}

    def test_type_only_targets_are_capped_lower(self, catalog, context):
        field = make_field("c2", ["2024/01/05", "2024/02/01"])

        targets = {c.target_field: c.confidence for c in StatisticalMatcher().propose([field], catalog, context)}

        assert targets == {"createdAt": 45.0, "updatedAt": 45.0}

    def test_confidence_is_proportional_to_satisfying_fraction(self, catalog, context):
        field = make_field("c3", ["4006381333931", "not a barcode"])

        candidates = StatisticalMatcher().propose([field], catalog, context)

        assert [(c.target_field, c.confidence) for c in candidates] == [("gtin", 42.5)]

    def test_empty_column_proposes_nothing(self, catalog, context):
        assert StatisticalMatcher().propose([make_field("empty", ["", ""])], catalog, context) == []


@pytest.mark.parametrize("value, expected", [
    ("42", True),
    ("42.5", False),
    ("-1", False),
    ("abc", False),
])
def test_value_satisfies_integer_range(value, expected):
    target = TargetFieldSpec("stock", "integer", constraint=FormatConstraint(min_value=0, max_value=100))

    assert value_satisfies(value, target) is expected


def test_value_satisfies_max_length():
    target = TargetFieldSpec("code", "string", constraint=FormatConstraint(max_length=3))

    assert value_satisfies("abc", target)
    assert not value_satisfies("abcd", target)
