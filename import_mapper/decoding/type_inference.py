"""Best-effort primitive type tagging for decoded columns."""

import re
from collections import Counter
from datetime import datetime
from typing import Iterable, Optional

BOOLEAN_TOKENS = {"true", "false", "yes", "no", "y", "n", "t", "f"}

_NUMBER = re.compile(
    r"^[+-]?[$€£¥]?\s?(?:\d{1,3}(?:,\d{3})+|\d+)?(?:\.\d+)?\s?%?$"
)
_EU_NUMBER = re.compile(r"^[+-]?[$€£¥]?\s?\d{1,3}(?:\.\d{3})*,\d+$")
_DATE_HINT = re.compile(r"\d{1,4}[-/.]\d{1,2}[-/.]\d{1,4}|\d{4}-\d{2}-\d{2}T")

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d.%m.%Y",
    "%d-%m-%Y",
    "%m-%d-%Y",
)

# Order in which tied votes are resolved: string always wins a tie
_TIE_ORDER = ("string", "number", "boolean", "date")


def parse_number(value: str) -> Optional[float]:
    """
    Coerce a raw cell to a float.

    Accepts currency symbols, thousands separators, a trailing percent sign
    and European decimal commas ("1.234,50").

    Args:
        value: Raw cell text

    Returns:
        Parsed float or None if the value is not numeric
    """
    text = str(value).strip()
    if not text:
        return None
    if not any(c.isdigit() for c in text):
        return None
    if _NUMBER.match(text):
        cleaned = re.sub(r"[$€£¥%,\s]", "", text)
    elif _EU_NUMBER.match(text):
        cleaned = re.sub(r"[$€£¥\s]", "", text).replace(".", "").replace(",", ".")
    else:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_boolean(value: str) -> Optional[bool]:
    text = str(value).strip().lower()
    if text in ("true", "yes", "y", "t"):
        return True
    if text in ("false", "no", "n", "f"):
        return False
    return None


def parse_date(value: str) -> Optional[datetime]:
    text = str(value).strip()
    if not text or not _DATE_HINT.search(text):
        return None
    # Drop a trailing timezone designator before trying fixed formats
    candidate = re.sub(r"(Z|[+-]\d{2}:?\d{2})$", "", text)
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt)
        except ValueError:
            continue
    return None


def classify_value(value: str) -> Optional[str]:
    """
    Assign a primitive type to a single non-empty value.

    Returns:
        "boolean", "number", "date", "string", or None for empty values
    """
    text = str(value).strip()
    if not text:
        return None
    if text.lower() in BOOLEAN_TOKENS:
        return "boolean"
    if parse_number(text) is not None:
        return "number"
    if parse_date(text) is not None:
        return "date"
    return "string"


def infer_column_type(values: Iterable[str], max_samples: int = 50) -> str:
    """
    Majority-vote the primitive type of a column.

    Only the first ``max_samples`` non-empty values are inspected. Ties are
    resolved in favour of "string"; a column without any non-empty value
    is "unknown".

    Args:
        values: Raw cell values in file order
        max_samples: Maximum number of non-empty values to inspect

    Returns:
        One of "string", "number", "boolean", "date", "unknown"
    """
    votes = Counter()
    inspected = 0
    for value in values:
        if inspected >= max_samples:
            break
        tag = classify_value(value)
        if tag is None:
            continue
        votes[tag] += 1
        inspected += 1

    if not votes:
        return "unknown"

    top = max(votes.values())
    winners = [t for t in _TIE_ORDER if votes.get(t) == top]
    if len(winners) > 1:
        return "string"
    return winners[0]
