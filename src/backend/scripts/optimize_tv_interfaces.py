#!/usr/bin/env python
"""
TV Interfaces Optimization Script

Runs the TV interface optimizer once against the configured PostgreSQL
database:
1. Creates the query indexes (CONCURRENTLY, IF NOT EXISTS)
2. Drops the legacy partial index
3. Refreshes table statistics
4. Prints the optimization status and oversized screenshots

Run from backend directory:
    python scripts/optimize_tv_interfaces.py [--status-only] [--max-size-mb 10]
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.config import settings  # noqa: E402
from core.database import close_db  # noqa: E402
from core.logging_config import setup_logging_from_settings, stop_queue_listener  # noqa: E402
from services.tv_interface_optimizer import TVInterfaceOptimizer  # noqa: E402

logger = logging.getLogger("scripts.optimize_tv_interfaces")


def print_status(status: dict) -> None:
    print("\nOptimization status")
    print("=" * 40)
    print(f"Optimized:          {'yes' if status['is_optimized'] else 'no'}")
    print(f"Table size:         {status['table_size']}")
    print(f"Indexes size:       {status['indexes_size']}")
    print(f"Total rows:         {status['total_rows']}")
    print(f"Active rows:        {status['active_rows']}")
    print(f"Large screenshots:  {status['large_screenshots']}")
    print(f"Avg screenshot:     {status['avg_screenshot_size']} bytes")
    if status["missing_indexes"]:
        print(f"Missing indexes:    {', '.join(status['missing_indexes'])}")

    print("\nIndexes:")
    for index in status["indexes"]:
        print(f"  {index['indexname']}")


def print_screenshots(report: dict) -> None:
    print(f"\nScreenshots found above the limit: {report['total_found']}")
    for item in report["large_screenshots"]:
        print(f"  {item['id']}: {item['size_mb']} MB")
    if report["total_found"]:
        print(report["recommendation"])


async def main(status_only: bool, max_size_mb: int) -> int:
    optimizer = TVInterfaceOptimizer()
    try:
        if not status_only:
            result = await optimizer.optimize_database()
            print(f"Indexes ensured: {', '.join(result.indexes_created)}")
            print(f"Indexes dropped: {', '.join(result.indexes_dropped)}")

        print_status(await optimizer.get_optimization_status())
        print_screenshots(await optimizer.cleanup_large_screenshots(max_size_mb))
        return 0
    except Exception as e:
        logger.error(f"Optimization failed: {e}", exc_info=True)
        print(f"\nOptimization failed: {e}")
        return 1
    finally:
        await close_db()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Optimize the tv_interfaces table")
    parser.add_argument("--status-only", action="store_true", help="Only print the status report")
    parser.add_argument(
        "--max-size-mb",
        type=int,
        default=settings.diagnostics.large_screenshot_mb,
        help="Report screenshots larger than this many MB",
    )
    args = parser.parse_args()

    setup_logging_from_settings()
    try:
        exit_code = asyncio.run(main(args.status_only, args.max_size_mb))
    finally:
        stop_queue_listener()
    sys.exit(exit_code)
