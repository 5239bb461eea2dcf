"""Tests for primitive type inference."""

import pytest

from import_mapper.decoding.type_inference import infer_column_type, parse_date, parse_number


@pytest.mark.parametrize("raw, expected", [
    ("12", 12.0),
    ("1,500", 1500.0),
    ("1.234,50", 1234.5),
    ("$12.99", 12.99),
    ("-3.5", -3.5),
    ("12%", 12.0),
    ("abc", None),
    ("", None),
    ("12-05-2024", None),
])
def test_parse_number(raw, expected):
    assert parse_number(raw) == expected


def test_parse_date_formats():
    assert parse_date("2024-01-05").year == 2024
    assert parse_date("2024-01-05T10:00:00Z").hour == 10
    assert parse_date("05.01.2024").month == 1
    assert parse_date("tomorrow") is None


@pytest.mark.parametrize("values, expected", [
    (["1", "2.5", "3"], "number"),
    (["true", "no", "yes"], "boolean"),
    (["2024-01-05", "2024-02-01"], "date"),
    (["Widget", "Gadget", "3"], "string"),
    (["1", "2", "x", "y"], "string"),
    (["", "  "], "unknown"),
    ([], "unknown"),
])
def test_infer_column_type(values, expected):
    assert infer_column_type(values) == expected


def test_infer_column_type_only_samples_first_values():
    values = ["1"] * 3 + ["word"] * 10

    assert infer_column_type(values, max_samples=3) == "number"
