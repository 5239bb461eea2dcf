"""Matching strategies."""

from import_mapper.strategies.base import MappingStrategy
from import_mapper.strategies.exact import ExactMatcher
from import_mapper.strategies.external import ExternalInferenceMatcher
from import_mapper.strategies.fuzzy import FuzzyMatcher
from import_mapper.strategies.historical import HistoricalMatcher
from import_mapper.strategies.statistical import StatisticalMatcher, value_satisfies

__all__ = [
    "MappingStrategy",
    "ExactMatcher",
    "ExternalInferenceMatcher",
    "FuzzyMatcher",
    "HistoricalMatcher",
    "StatisticalMatcher",
    "value_satisfies",
]
