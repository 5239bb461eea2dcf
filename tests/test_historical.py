"""Tests for the historical matcher."""

from datetime import timedelta

import pytest

from conftest import NOW, make_field
from import_mapper.database import InMemoryLearningCache
from import_mapper.matching.exceptions import CacheUnavailable
from import_mapper.strategies import HistoricalMatcher


def remember(cache, field, target, confidence=95.0, age_days=1, strategy="exact"):
    cache.record(
        fingerprint=field.fingerprint,
        shape_key=field.shape_key,
        source_name=field.name,
        target_field=target,
        confidence=confidence,
        strategy=strategy,
        now=NOW - timedelta(days=age_days),
    )


@pytest.fixture
def matcher(memory_cache):
    return HistoricalMatcher(memory_cache, clock=lambda: NOW)


def test_fingerprint_hit_returns_cached_target(matcher, memory_cache, catalog, context):
    field = make_field("Brand", ["Acme", "Globex"])
    remember(memory_cache, field, "brandId")

    candidates = matcher.propose([field], catalog, context)

    assert [(c.target_field, c.confidence, c.strategy) for c in candidates] == [("brandId", 95.0, "historical")]


@pytest.mark.parametrize("age_days, expected", [
    (3, 95.0),
    (10, 90.0),
    (45, 85.0),
    (200, 75.0),
])
def test_confidence_decays_with_age(matcher, memory_cache, catalog, context, age_days, expected):
    field = make_field("Brand", ["Acme", "Globex"])
    remember(memory_cache, field, "brandId", age_days=age_days)

    assert matcher.propose([field], catalog, context)[0].confidence == expected


def test_renamed_header_is_found_by_value_shape(matcher, memory_cache, catalog, context):
    remember(memory_cache, make_field("Brand", ["Acme", "Globex"]), "brandId")
    renamed = make_field("Hersteller", ["Initech", "Umbrella"])

    candidates = matcher.propose([renamed], catalog, context)

    assert [(c.target_field, c.confidence) for c in candidates] == [("brandId", 76.0)]
    assert "value shape" in candidates[0].rationale


def test_fields_sharing_a_shape_each_get_the_cached_target(matcher, memory_cache, catalog, context):
    remember(memory_cache, make_field("Brand", ["Acme", "Globex"]), "brandId")
    fields = [make_field("Hersteller", ["Initech"], 0), make_field("Lieferant", ["Umbrella"], 1)]

    candidates = matcher.propose(fields, catalog, context)

    assert [(c.source_field, c.target_field, c.confidence) for c in candidates] == [
        ("Hersteller", "brandId", 76.0),
        ("Lieferant", "brandId", 76.0),
    ]


def test_shape_pointing_to_several_targets_proposes_each_with_penalty(matcher, memory_cache, catalog, context):
    remember(memory_cache, make_field("Brand", ["Acme"]), "brandId")
    remember(memory_cache, make_field("Parent", ["Acme"]), "parentId")

    candidates = matcher.propose([make_field("Other", ["Initech"])], catalog, context)

    assert sorted((c.target_field, c.confidence) for c in candidates) == [("brandId", 66.0), ("parentId", 66.0)]


def test_fingerprint_hits_take_their_target_out_of_shape_matching(matcher, memory_cache, catalog, context):
    remember(memory_cache, make_field("price", ["19.99", "5.49"]), "price")
    remember(memory_cache, make_field("compareAtPrice", ["24.99", "7.99"]), "compareAtPrice")
    fields = [
        make_field("qq1", ["12.50", "3.20"], 0),
        make_field("compareAtPrice", ["15.00", "4.10"], 1),
    ]

    candidates = matcher.propose(fields, catalog, context)

    assert sorted((c.source_field, c.target_field, c.confidence) for c in candidates) == [
        ("compareAtPrice", "compareAtPrice", 95.0),
        ("qq1", "price", 76.0),
    ]


def test_cached_target_missing_from_catalog_is_ignored(matcher, memory_cache, catalog, context):
    field = make_field("Colour", ["Red"])
    remember(memory_cache, field, "color")

    assert matcher.propose([field], catalog, context) == []


def test_unavailable_cache_degrades_to_no_candidates(catalog, context):
    class BrokenCache(InMemoryLearningCache):
        def lookup(self, fingerprints, shape_keys):
            raise CacheUnavailable("database is locked")

    matcher = HistoricalMatcher(BrokenCache())

    assert matcher.propose([make_field("Brand", ["Acme"])], catalog, context) == []
    assert any("cache unavailable" in note for note in context.notes)
