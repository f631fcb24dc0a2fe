"""Command-line entry point for running aggregation passes on a FileStore.

Usage:
    python -m ops_core.cli sales --start 2024-10-01 --end 2024-10-31 --data-root data
    python -m ops_core.cli labor --start 2024-10-01 --end 2024-10-31 --location 42 --force
    python -m ops_core.cli workers --data-root data --verbose
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence

from ops_core import api
from ops_core.config import EngineConfig
from ops_core.exceptions import OpsAPIError
from ops_core.store.file import FileStore

logger = logging.getLogger(__name__)

RANGE_COMMANDS = {
    "sales": api.aggregate_sales_line_items,
    "labor": api.aggregate_labor_hours,
    "planning": api.aggregate_planning_hours,
    "revenue": api.aggregate_revenue_days,
}


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="ops-core",
        description="Aggregate raw Bork and Eitje documents into reporting collections.",
    )
    p.add_argument(
        "command",
        choices=[*RANGE_COMMANDS, "workers"],
        help="Pass to run.",
    )
    p.add_argument("--start", help="Start date YYYY-MM-DD (inclusive).")
    p.add_argument("--end", help="End date YYYY-MM-DD (inclusive).")
    p.add_argument(
        "--location",
        default=None,
        help="Location id (Eitje environment id for labor passes). Default: all locations.",
    )
    p.add_argument(
        "--data-root",
        default="data",
        help="Root directory of the file store (default: data).",
    )
    p.add_argument(
        "--force",
        action="store_true",
        help="Re-aggregate the whole range instead of only changed dates.",
    )
    p.add_argument(
        "--strict",
        action="store_true",
        help="workers: fail on duplicate worker profiles instead of reporting them.",
    )
    p.add_argument(
        "--verbose",
        "--debug",
        action="store_true",
        dest="verbose",
        help="Verbose/debug logging output.",
    )
    return p


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    if args.command in RANGE_COMMANDS and not (args.start and args.end):
        print(f"ERROR: {args.command} requires --start and --end", file=sys.stderr)
        return 2

    try:
        config = EngineConfig.from_env()
        store = FileStore.from_root(args.data_root, collections=config.collections)
        if args.command == "workers":
            result = api.reconcile_worker_profiles(store, strict=args.strict, config=config)
        else:
            result = RANGE_COMMANDS[args.command](
                store,
                (args.start, args.end),
                location_id=args.location,
                mode="force" if args.force else "incremental",
                config=config,
            )
    except (OpsAPIError, ValueError) as e:
        logger.error("Error: %s", e, exc_info=args.verbose)
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except KeyboardInterrupt:
        sys.exit(130)
