"""Command line entry point: ``python -m dbkit``.

Loads a pool configuration, builds the pool and reports which connection every tag
resolves to. Exit status is 0 when every tag resolved, 1 otherwise.

    python -m dbkit --config pool.yml
    DBKIT_LOG_LEVEL=DEBUG python -m dbkit --tag replica
"""

from __future__ import annotations

import argparse
import logging
import os
import sys

from .config import PoolConfigLoader, build_pool
from .exceptions import DatabaseError

logger = logging.getLogger("dbkit")


def configure_logging() -> None:
    """Configure logging to stderr with the level from DBKIT_LOG_LEVEL."""
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    log_level_str = os.getenv("DBKIT_LOG_LEVEL", "INFO").upper()

    if log_level_str not in valid_log_levels:
        print(
            f"Warning: Invalid DBKIT_LOG_LEVEL '{log_level_str}'. "
            f"Valid levels: {', '.join(sorted(valid_log_levels))}. "
            "Using INFO.",
            file=sys.stderr,
        )
        log_level_str = "INFO"

    logging.basicConfig(
        level=getattr(logging, log_level_str),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="dbkit",
        description="Resolve the connections of a dbkit pool configuration.",
    )
    parser.add_argument("--config", help="Pool config file (default: DBKIT_POOL_CONFIG)")
    parser.add_argument(
        "--tag",
        action="append",
        dest="tags",
        help="Tag to resolve (repeatable; default: every configured tag)",
    )
    args = parser.parse_args(argv)

    configure_logging()

    try:
        config = PoolConfigLoader(args.config).load_config()
    except DatabaseError as e:
        logger.error(str(e))
        return 1

    pool = build_pool(config)
    tags = args.tags or list(config.tags)
    if not tags:
        logger.warning("No tags configured.")
        return 1

    failed = 0
    for tag in tags:
        try:
            connection = pool.get_connection(tag)
        except DatabaseError as e:
            print(f"{tag}: FAILED {e}")
            failed += 1
            continue
        print(f"{tag}: {connection.engine.value} (alive)")

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
