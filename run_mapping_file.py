"""
Map a single catalog file onto the product schema and write the result.

Usage:
  PYTHONPATH=. python run_mapping_file.py \
    --input /path/to/products.csv \
    --catalog schemas/products.yaml \
    --output-prefix results/products
"""

import argparse
import json
import logging
import mimetypes
from pathlib import Path

from import_mapper.config import get_config
from import_mapper.database import SqlLearningCache
from import_mapper.matching.exceptions import DecodeError
from import_mapper.pipeline import AdaptiveOrchestrator
from import_mapper.schema.target_fields import TargetCatalog, get_default_catalog


def run_file(input_path: Path, catalog_path: Path, output_prefix: str, deadline: float) -> int:
    config = get_config()
    catalog = TargetCatalog.from_yaml(catalog_path) if catalog_path else get_default_catalog()
    cache = SqlLearningCache(
        config.learning_cache.database_path,
        memory_cache_size=config.learning_cache.memory_cache_size,
    )
    orchestrator = AdaptiveOrchestrator(catalog=catalog, cache=cache, config=config)

    content_type, _ = mimetypes.guess_type(str(input_path))
    try:
        result = orchestrator.run(
            input_path.read_bytes(),
            content_type=content_type,
            filename=input_path.name,
            deadline_seconds=deadline,
        )
    except DecodeError as e:
        print(f"Cannot read {input_path}: {e}")
        return 2

    output_prefix_path = Path(output_prefix)
    output_prefix_path.parent.mkdir(exist_ok=True, parents=True)
    report_file = output_prefix_path.parent / f"{output_prefix_path.name}_mapping.json"
    records_file = output_prefix_path.parent / f"{output_prefix_path.name}_normalized.csv"

    report_file.write_text(json.dumps(result.to_dict(), indent=2, default=str), encoding="utf-8")
    result.normalized_records.to_csv(records_file, index=False)

    print(f"State: {result.state} (confidence {result.overall_confidence:.1f})")
    for decision in result.decisions:
        target = decision.target_field or "-- unmapped --"
        print(f"  {decision.source_field!r:30} -> {target:20} {decision.confidence:6.1f}  {decision.strategy or ''}")
    if result.missing_required_targets:
        print(f"Missing required fields: {', '.join(result.missing_required_targets)}")
    print(f"  -> wrote {report_file}")
    print(f"  -> wrote {records_file}")
    return 0 if result.state != "failed" else 1


def main():
    parser = argparse.ArgumentParser(description="Map a catalog import file onto the product schema.")
    parser.add_argument("--input", required=True, help="Path to CSV/TSV/JSON file")
    parser.add_argument("--catalog", default=None, help="Target schema YAML (defaults to product fields)")
    parser.add_argument("--output-prefix", default="results/mapping", help="Output prefix (no extension)")
    parser.add_argument("--deadline", type=float, default=None, help="Run deadline in seconds")
    parser.add_argument("--log-level", default=None, help="Logging level (defaults to LOG_LEVEL)")
    args = parser.parse_args()

    logging.basicConfig(
        level=(args.log_level or get_config().log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    input_path = Path(args.input)
    catalog_path = Path(args.catalog) if args.catalog else None

    if not input_path.exists():
        raise FileNotFoundError(f"Input file not found: {input_path}")
    if catalog_path and not catalog_path.exists():
        raise FileNotFoundError(f"Catalog file not found: {catalog_path}")

    raise SystemExit(run_file(input_path, catalog_path, args.output_prefix, args.deadline))


if __name__ == "__main__":
    main()
