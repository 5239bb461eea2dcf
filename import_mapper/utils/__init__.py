"""Utility functions for the import mapper."""

from import_mapper.utils.lru_cache import LRUCache
from import_mapper.utils.normalize import (
    compute_fingerprint,
    compute_shape_key,
    normalize_field_name,
    tokenize_field_name,
    value_shape_signature,
)
from import_mapper.utils.retry import retry_with_backoff
from import_mapper.utils.sanitize import sanitize_for_logging

__all__ = [
    "LRUCache",
    "compute_fingerprint",
    "compute_shape_key",
    "normalize_field_name",
    "tokenize_field_name",
    "value_shape_signature",
    "retry_with_backoff",
    "sanitize_for_logging",
]
