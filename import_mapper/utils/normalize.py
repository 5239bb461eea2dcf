"""Field-name normalisation and structural fingerprints for source fields."""

import hashlib
import re
from collections import Counter
from typing import Iterable, List

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")

# Number of distinct value shapes kept in a signature
MAX_SHAPE_PATTERNS = 3


def normalize_field_name(name: str) -> str:
    """
    Normalize a field name for comparison.

    Lowercases, drops every non-alphanumeric character and collapses
    whitespace and underscores, so "Product Name", "product_name" and
    "productName" all become "productname".

    Args:
        name: Raw header text

    Returns:
        Normalized name (may be empty)
    """
    if name is None:
        return ""
    return _NON_ALNUM.sub("", str(name).strip().lower())


def tokenize_field_name(name: str) -> List[str]:
    """Split a header into lowercase word tokens (camelCase aware)."""
    if not name:
        return []
    spaced = _CAMEL_BOUNDARY.sub(" ", str(name))
    return [token for token in _NON_ALNUM.split(spaced.lower()) if token]


def value_shape(value: str) -> str:
    """
    Reduce a raw value to its character-class shape.

    Digit runs become "9", letter runs become "a", other characters are
    kept, e.g. "SKU-0042" -> "a-9" and "12.50" -> "9.9".
    """
    shape = []
    previous = None
    for char in str(value).strip():
        if char.isdigit():
            token = "9"
        elif char.isalpha():
            token = "a"
        elif char.isspace():
            token = " "
        else:
            token = char
        if token in ("9", "a", " ") and token == previous:
            continue
        shape.append(token)
        previous = token
    return "".join(shape)


def value_shape_signature(inferred_type: str, sample_values: Iterable[str]) -> str:
    """
    Build the value-shape signature of a column.

    The signature combines the inferred primitive type with the most common
    value shapes among the samples (ties broken alphabetically so the result
    is stable).

    Args:
        inferred_type: Primitive type assigned by the decoder
        sample_values: Raw sample values

    Returns:
        Signature string such as "string|a-9" or "number|9.9/9"
    """
    counts = Counter(value_shape(v) for v in sample_values if str(v).strip())
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    shapes = "/".join(shape for shape, _ in ranked[:MAX_SHAPE_PATTERNS])
    return f"{inferred_type}|{shapes}"


def compute_fingerprint(name: str, shape_signature: str) -> str:
    """
    Compute the structural fingerprint of a source field.

    Args:
        name: Raw header text
        shape_signature: Result of value_shape_signature()

    Returns:
        SHA256 hex digest of the normalized name and shape signature
    """
    normalized = f"{normalize_field_name(name)}|{shape_signature}"
    return hashlib.sha256(normalized.encode()).hexdigest()


def compute_shape_key(shape_signature: str) -> str:
    """Hash of the shape signature alone, used when a header has been renamed."""
    return hashlib.sha256(shape_signature.encode()).hexdigest()
