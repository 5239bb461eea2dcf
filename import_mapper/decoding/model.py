"""Data models for the tabular decoder."""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import pandas as pd


@dataclass(frozen=True)
class SourceField:
    """A column of an uploaded file, as seen by the matchers.

    Created once per decoded file and never modified afterwards.
    """

    name: str
    position: int
    inferred_type: str  # string, number, boolean, date, unknown
    sample_values: Tuple[str, ...]
    null_ratio: float
    distinct_ratio: float
    shape_signature: str
    fingerprint: str
    shape_key: str

    def to_dict(self) -> dict:
        """Convert to dictionary for the inference prompt and diagnostics"""
        return {
            "name": self.name,
            "type": self.inferred_type,
            "sample_values": list(self.sample_values[:5]),
            "null_ratio": round(self.null_ratio, 3),
        }


@dataclass
class DecodedTable:
    """Rectangular record set produced from an uploaded file."""

    columns: List[str]
    records: pd.DataFrame  # all cells are strings; missing cells are ""
    source_fields: List[SourceField]
    file_kind: str  # csv, json
    encoding: str
    delimiter: Optional[str] = None
    total_rows: int = 0
    skipped_rows: int = 0
    issues: List[str] = field(default_factory=list)

    def field(self, name: str) -> Optional[SourceField]:
        for source_field in self.source_fields:
            if source_field.name == name:
                return source_field
        return None

    def report(self) -> dict:
        """Decode summary included in the mapping result"""
        return {
            "file_kind": self.file_kind,
            "encoding": self.encoding,
            "delimiter": self.delimiter,
            "columns": len(self.columns),
            "total_rows": self.total_rows,
            "skipped_rows": self.skipped_rows,
            "issues": list(self.issues),
        }
