#!/usr/bin/env python3
"""Learning cache database initialization script.

Creates the learning cache schema and, optionally, evicts stale low-usage
patterns. It can be run standalone or as part of the setup process.
"""

import argparse
import sys
from pathlib import Path

from sqlalchemy import inspect

from import_mapper.config import get_config
from import_mapper.database import SqlLearningCache


def main():
    """Initialize database and verify setup."""
    parser = argparse.ArgumentParser(description="Initialize the learning cache database.")
    parser.add_argument("--db-path", help="Database path (defaults to LEARNING_CACHE_DATABASE_PATH)")
    parser.add_argument("--evict-stale", action="store_true", help="Evict stale low-usage patterns")
    args = parser.parse_args()

    print("=" * 50)
    print("Learning Cache Initialization")
    print("=" * 50)
    print()

    try:
        config = get_config()
        db_path = Path(args.db_path) if args.db_path else config.learning_cache.database_path

        print(f"Database path: {db_path}")
        cache = SqlLearningCache(db_path, memory_cache_size=0)
        print("✓ Database initialized successfully")

        print()
        print("Verifying database schema...")
        inspector = inspect(cache.engine)
        tables = inspector.get_table_names()
        if "field_mapping_cache" in tables:
            indexes = sorted(idx["name"] for idx in inspector.get_indexes("field_mapping_cache"))
            print(f"✓ field_mapping_cache present (indexes: {', '.join(indexes)})")
        else:
            print("⚠ Warning: field_mapping_cache table is missing")
            return 1

        if args.evict_stale:
            evicted = cache.evict_stale(
                config.learning_cache.max_age_days,
                min_observations=config.learning_cache.eviction_min_observations,
            )
            print(f"✓ Evicted {evicted} stale pattern(s)")

        stats = cache.statistics()
        print()
        print("Patterns per strategy:")
        if not stats:
            print("  (empty)")
        for strategy, values in sorted(stats.items()):
            print(
                f"  {strategy}: {values['count']} entries, "
                f"avg confidence {values['avg_confidence']}, "
                f"{values['total_observations']} observations"
            )

        print()
        print("=" * 50)
        print("Learning cache initialization completed successfully!")
        print("=" * 50)
        return 0

    except Exception as e:
        print()
        print("=" * 50)
        print(f"❌ Error initializing learning cache: {e}")
        print("=" * 50)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
