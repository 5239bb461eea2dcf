"""Tabular decoding of uploaded catalog files."""

from import_mapper.decoding.decoder import TabularDecoder, detect_delimiter, detect_encoding
from import_mapper.decoding.model import DecodedTable, SourceField
from import_mapper.decoding.type_inference import infer_column_type

__all__ = [
    "TabularDecoder",
    "DecodedTable",
    "SourceField",
    "detect_delimiter",
    "detect_encoding",
    "infer_column_type",
]
