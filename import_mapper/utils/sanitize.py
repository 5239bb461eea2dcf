"""Utilities for sanitizing uploaded header text and values before logging."""

from typing import Iterable, List, Optional


def sanitize_for_logging(value: Optional[str], max_length: int = 80) -> str:
    """
    Sanitize a header or cell value for logging.

    Control characters are replaced and long values truncated, since headers
    come straight from user uploads.

    Args:
        value: Value to sanitize
        max_length: Maximum length to return

    Returns:
        Sanitized string
    """
    if value is None:
        return ""

    cleaned = "".join(c if c.isprintable() else "?" for c in str(value))
    if len(cleaned) > max_length:
        return cleaned[:max_length] + "..."
    return cleaned


def sanitize_names(values: Iterable[str], max_items: int = 25) -> List[str]:
    """Sanitize a list of field names, truncating the list itself."""
    names = [sanitize_for_logging(v) for v in values]
    if len(names) > max_items:
        return names[:max_items] + [f"... (+{len(names) - max_items} more)"]
    return names
