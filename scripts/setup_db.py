#!/usr/bin/env python3
"""Initialize the BOURSE database schema.

Usage:
    python scripts/setup_db.py
    python scripts/setup_db.py --database-url sqlite:///data/demo.db
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy.exc import SQLAlchemyError

from src.core.logging import get_logger, setup_logging
from src.data.db import create_db_engine, init_schema

log = get_logger(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Create the BOURSE database schema")
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="SQLAlchemy URL (default: DATABASE_URL setting)",
    )
    return parser.parse_args()


def main() -> int:
    setup_logging()
    args = parse_args()
    log.info("starting_schema_initialization")

    engine = create_db_engine(args.database_url)
    try:
        init_schema(engine)
    except SQLAlchemyError as exc:
        log.error("schema_initialization_failed", error=str(exc))
        return 1
    finally:
        engine.dispose()

    log.info("schema_initialization_complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
