"""Tabular decoder: turns uploaded bytes of unknown shape into a rectangular record set."""

import codecs
import csv
import io
import json
import logging
from collections import Counter, deque
from pathlib import PurePath
from typing import Iterator, List, Optional, Tuple

import pandas as pd
from charset_normalizer import from_bytes

from import_mapper.config import DecoderConfig
from import_mapper.decoding.model import DecodedTable, SourceField
from import_mapper.decoding.type_inference import infer_column_type
from import_mapper.matching.exceptions import DecodeError
from import_mapper.utils.normalize import (
    compute_fingerprint,
    compute_shape_key,
    value_shape_signature,
)

logger = logging.getLogger(__name__)

CANDIDATE_DELIMITERS = (",", ";", "\t", "|")

JSON_CONTENT_TYPES = {
    "application/json",
    "text/json",
    "application/x-ndjson",
    "application/jsonl",
    "application/x-jsonlines",
}
DELIMITED_CONTENT_TYPES = {
    "text/csv",
    "application/csv",
    "text/plain",
    "text/tab-separated-values",
    "application/vnd.ms-excel",
}
JSON_EXTENSIONS = {".json", ".jsonl", ".ndjson"}
DELIMITED_EXTENSIONS = {".csv", ".tsv", ".txt", ".tab"}

# Keys under which JSON exports commonly nest their record array
RECORD_ARRAY_KEYS = ("data", "records", "items", "products", "rows")

# Lines inspected when guessing the delimiter
DELIMITER_SAMPLE_LINES = 20


def detect_encoding(content: bytes) -> str:
    """
    Detect the text encoding of uploaded bytes.

    Order: byte-order mark, strict UTF-8, charset_normalizer best guess,
    and finally latin-1 (which accepts any byte sequence).

    Args:
        content: Raw file bytes

    Returns:
        Codec name usable with bytes.decode()
    """
    if content.startswith(codecs.BOM_UTF8):
        return "utf-8-sig"
    if content.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return "utf-16"

    try:
        content.decode("utf-8")
        return "utf-8"
    except UnicodeDecodeError:
        pass

    best = from_bytes(content).best()
    if best is not None:
        return best.encoding

    return "latin-1"


def detect_delimiter(lines: List[str]) -> str:
    """
    Guess the delimiter of a delimited text sample.

    Each candidate is scored by how consistently it splits the sample lines
    into the same number of cells (quoted sections are ignored). csv.Sniffer
    is consulted only when no candidate appears at all.

    Args:
        lines: Non-blank lines from the start of the file

    Returns:
        Delimiter character (defaults to ",")
    """
    best_delimiter = None
    best_score = 0
    for delimiter in CANDIDATE_DELIMITERS:
        counts = [_count_unquoted(line, delimiter) for line in lines]
        present = [c for c in counts if c > 0]
        if not present:
            continue
        mode, mode_lines = Counter(present).most_common(1)[0]
        score = mode_lines * (mode + 1)
        if score > best_score:
            best_delimiter, best_score = delimiter, score

    if best_delimiter is not None:
        return best_delimiter

    try:
        dialect = csv.Sniffer().sniff("\n".join(lines), delimiters="".join(CANDIDATE_DELIMITERS))
        return dialect.delimiter
    except csv.Error:
        return ","


def _count_unquoted(line: str, delimiter: str) -> int:
    count = 0
    in_quotes = False
    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            count += 1
    return count


def _dedupe_header(raw_header: List[str]) -> List[str]:
    """Strip header cells, name blank ones and suffix duplicates."""
    header = []
    seen = Counter()
    for index, cell in enumerate(raw_header):
        name = str(cell).strip() or f"column_{index + 1}"
        seen[name] += 1
        if seen[name] > 1:
            name = f"{name}_{seen[name]}"
        header.append(name)
    return header


def _json_cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


class TabularDecoder:
    """Decoder for CSV/TSV/JSON uploads with ragged rows and quoting errors.

    Never rejects a whole file because of individual bad rows: short rows are
    padded and long rows are folded into the last column. Rows that cannot
    be parsed at all, contain a NUL byte or hold a cell longer than
    ``max_cell_length`` are skipped and counted.
    """

    def __init__(self, config: Optional[DecoderConfig] = None):
        """
        Initialize the decoder.

        Args:
            config: Decoder settings (defaults to DecoderConfig())
        """
        self.config = config or DecoderConfig()

    def decode(
        self,
        content: bytes,
        content_type: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> DecodedTable:
        """
        Decode raw bytes into a record set and its source fields.

        Args:
            content: Raw file bytes
            content_type: Declared MIME type, if any
            filename: Original file name, if any (used for the extension)

        Returns:
            DecodedTable

        Raises:
            DecodeError: If the file is empty, has no header row or yields
                zero parsed data rows
        """
        if not content or not content.strip():
            raise DecodeError("File is empty")

        encoding = detect_encoding(content)
        text = content.decode(encoding, errors="replace").lstrip("\ufeff")
        if not text.strip():
            raise DecodeError("File is empty")

        file_kind = self._resolve_kind(text, content_type, filename)
        issues: List[str] = []
        delimiter = None

        if file_kind == "json":
            header, rows, skipped = self._parse_json(text, issues)
        else:
            delimiter = self._resolve_delimiter(text, content_type, filename)
            header, rows, skipped = self._parse_delimited(text, delimiter, issues)

        if not rows:
            raise DecodeError(
                f"No data rows could be parsed ({skipped} rows skipped)", skipped_rows=skipped
            )

        records = pd.DataFrame(rows, columns=header, dtype=str)
        source_fields = self._build_source_fields(records)

        logger.info(
            f"Decoded {file_kind} file ({encoding}): {len(header)} columns, "
            f"{len(rows)} rows, {skipped} skipped"
        )

        return DecodedTable(
            columns=header,
            records=records,
            source_fields=source_fields,
            file_kind=file_kind,
            encoding=encoding,
            delimiter=delimiter,
            total_rows=len(rows),
            skipped_rows=skipped,
            issues=issues,
        )

    def _resolve_kind(self, text: str, content_type: Optional[str], filename: Optional[str]) -> str:
        mime = (content_type or "").split(";")[0].strip().lower()
        if mime in JSON_CONTENT_TYPES:
            return "json"
        if mime in DELIMITED_CONTENT_TYPES:
            return "csv"

        suffix = PurePath(filename).suffix.lower() if filename else ""
        if suffix in JSON_EXTENSIONS:
            return "json"
        if suffix in DELIMITED_EXTENSIONS:
            return "csv"

        return "json" if text.lstrip()[:1] in ("[", "{") else "csv"

    def _resolve_delimiter(self, text: str, content_type: Optional[str], filename: Optional[str]) -> str:
        mime = (content_type or "").split(";")[0].strip().lower()
        suffix = PurePath(filename).suffix.lower() if filename else ""
        if mime == "text/tab-separated-values" or suffix in (".tsv", ".tab"):
            return "\t"

        sample = []
        for line in text.splitlines():
            if line.strip():
                sample.append(line)
            if len(sample) >= DELIMITER_SAMPLE_LINES:
                break
        return detect_delimiter(sample)

    # Delimited text

    def _parse_delimited(
        self, text: str, delimiter: str, issues: List[str]
    ) -> Tuple[List[str], List[List[str]], int]:
        header: Optional[List[str]] = None
        rows: List[List[str]] = []
        skipped = 0
        relaxed_rows = 0
        ragged_rows = 0

        for record, relaxed in self._logical_records(text):
            cells = self._parse_record(record, delimiter, relaxed)
            if cells is None:
                if header is None:
                    raise DecodeError("Header row could not be parsed")
                skipped += 1
                continue
            if not any(cell.strip() for cell in cells):
                continue
            if relaxed:
                relaxed_rows += 1

            if header is None:
                header = _dedupe_header(cells)
                continue

            row, was_ragged = self._rectangularize(cells, len(header), delimiter)
            ragged_rows += was_ragged
            rows.append(row)

        if header is None:
            raise DecodeError("File has no header row")

        if relaxed_rows:
            issues.append(f"{relaxed_rows} rows parsed in relaxed quoting mode")
        if ragged_rows:
            issues.append(f"{ragged_rows} rows had a column count different from the header")
        if skipped:
            issues.append(f"{skipped} rows could not be parsed and were skipped")
        return header, rows, skipped

    def _logical_records(self, text: str) -> Iterator[Tuple[str, bool]]:
        """
        Group physical lines into logical records.

        A line with an odd number of quotes opens a quoted field that may
        continue on following lines, up to ``max_multiline_rows``. If the
        quote is still open after that, the quote is treated as a literal:
        the borrowed lines are put back and the opening line is yielded on
        its own, flagged for relaxed parsing.

        Yields:
            (record text, relaxed flag)
        """
        lines = deque(text.splitlines())
        while lines:
            line = lines.popleft()
            if not line.strip():
                continue
            quotes = line.count('"')
            if quotes % 2 == 0:
                yield line, False
                continue

            buffer = [line]
            while lines and quotes % 2 == 1 and len(buffer) <= self.config.max_multiline_rows:
                continuation = lines.popleft()
                buffer.append(continuation)
                quotes += continuation.count('"')

            if quotes % 2 == 0:
                yield "\n".join(buffer), False
            else:
                for borrowed in reversed(buffer[1:]):
                    lines.appendleft(borrowed)
                yield line, True

    def _parse_record(self, record: str, delimiter: str, relaxed: bool) -> Optional[List[str]]:
        # NUL bytes only appear in binary or corrupted exports
        if "\x00" in record:
            logger.debug("Skipping row containing a NUL byte")
            return None

        cells = self._split_record(record, delimiter, relaxed)
        if cells is not None and any(len(cell) > self.config.max_cell_length for cell in cells):
            logger.debug(f"Skipping row with a cell longer than {self.config.max_cell_length} characters")
            return None
        return cells

    @staticmethod
    def _split_record(record: str, delimiter: str, relaxed: bool) -> Optional[List[str]]:
        if not relaxed:
            try:
                parsed = list(csv.reader(io.StringIO(record, newline=""), delimiter=delimiter, strict=True))
                if len(parsed) == 1:
                    return parsed[0]
            except csv.Error:
                pass

        # Relaxed mode: quotes are literal noise, strip them and split on the delimiter only
        try:
            flattened = record.replace('"', "").replace("\r", " ").replace("\n", " ")
            return next(csv.reader([flattened], delimiter=delimiter, quoting=csv.QUOTE_NONE))
        except (csv.Error, StopIteration) as e:
            logger.debug(f"Skipping unparseable row: {e}")
            return None

    @staticmethod
    def _rectangularize(cells: List[str], width: int, joiner: str) -> Tuple[List[str], bool]:
        """Pad short rows with "" and fold extra trailing cells into the last column."""
        if len(cells) == width:
            return cells, False

        if len(cells) < width:
            return cells + [""] * (width - len(cells)), True

        # Trailing empty cells beyond the header carry nothing (e.g. a trailing delimiter)
        trimmed = list(cells)
        while len(trimmed) > width and trimmed[-1] == "":
            trimmed.pop()
        if len(trimmed) == width:
            return trimmed, True
        return trimmed[:width - 1] + [joiner.join(trimmed[width - 1:])], True

    # JSON

    def _parse_json(self, text: str, issues: List[str]) -> Tuple[List[str], List[List[str]], int]:
        skipped = 0
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            payload, skipped = self._parse_ndjson(text)
            issues.append("Parsed as newline-delimited JSON")

        if isinstance(payload, dict):
            for key in RECORD_ARRAY_KEYS:
                if isinstance(payload.get(key), list):
                    payload = payload[key]
                    break
            else:
                payload = [payload]

        if not isinstance(payload, list):
            raise DecodeError("JSON document does not contain a record array")

        if any(isinstance(item, list) for item in payload[:1]):
            return self._json_rows_from_arrays(payload, skipped, issues)
        return self._json_rows_from_objects(payload, skipped, issues)

    def _parse_ndjson(self, text: str) -> Tuple[list, int]:
        items = []
        skipped = 0
        for line in text.splitlines():
            if not line.strip():
                continue
            try:
                items.append(json.loads(line))
            except json.JSONDecodeError:
                skipped += 1
        if not items:
            raise DecodeError("File is not valid JSON", skipped_rows=skipped)
        return items, skipped

    def _json_rows_from_objects(
        self, payload: list, skipped: int, issues: List[str]
    ) -> Tuple[List[str], List[List[str]], int]:
        keys: List[str] = []
        seen = set()
        objects = []
        for item in payload:
            if not isinstance(item, dict):
                skipped += 1
                continue
            objects.append(item)
            for key in item:
                if key not in seen:
                    seen.add(key)
                    keys.append(key)

        if not keys:
            raise DecodeError("File has no header row", skipped_rows=skipped)

        header = _dedupe_header(keys)
        rows = [[_json_cell(obj.get(key)) for key in keys] for obj in objects]
        if skipped:
            issues.append(f"{skipped} JSON items were not records and were skipped")
        return header, rows, skipped

    def _json_rows_from_arrays(
        self, payload: list, skipped: int, issues: List[str]
    ) -> Tuple[List[str], List[List[str]], int]:
        raw_header = [_json_cell(cell) for cell in payload[0]]
        if not any(cell.strip() for cell in raw_header):
            raise DecodeError("File has no header row")
        header = _dedupe_header(raw_header)

        rows = []
        ragged_rows = 0
        for item in payload[1:]:
            if not isinstance(item, list):
                skipped += 1
                continue
            row, was_ragged = self._rectangularize([_json_cell(c) for c in item], len(header), ",")
            ragged_rows += was_ragged
            rows.append(row)

        if ragged_rows:
            issues.append(f"{ragged_rows} rows had a column count different from the header")
        if skipped:
            issues.append(f"{skipped} JSON items were not rows and were skipped")
        return header, rows, skipped

    # Source fields

    def _build_source_fields(self, records: pd.DataFrame) -> List[SourceField]:
        source_fields = []
        total = len(records)
        for position, column in enumerate(records.columns):
            values = records[column].tolist()
            non_empty = [v for v in values if str(v).strip()]
            inferred_type = infer_column_type(values, max_samples=self.config.type_inference_rows)
            samples = tuple(non_empty[:self.config.sample_size])
            signature = value_shape_signature(inferred_type, samples)

            source_fields.append(SourceField(
                name=column,
                position=position,
                inferred_type=inferred_type,
                sample_values=samples,
                null_ratio=1.0 - (len(non_empty) / total) if total else 1.0,
                distinct_ratio=len(set(non_empty)) / len(non_empty) if non_empty else 0.0,
                shape_signature=signature,
                fingerprint=compute_fingerprint(column, signature),
                shape_key=compute_shape_key(signature),
            ))
        return source_fields
