"""Generate teacher insights from stored sessions and print a summary."""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Sequence

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db import open_stores
from env_validation import configure_logging, get_env_int
from recommendations import InsightService


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="Path to the SQLite database (default: $DB_PATH or data.db)",
    )
    parser.add_argument(
        "--teacher",
        type=str,
        default="educator",
        help="Teacher whose threshold settings apply (default: educator)",
    )
    parser.add_argument(
        "--clear-active",
        action="store_true",
        help="Delete active insights before generating new ones",
    )
    parser.add_argument(
        "--prune-days",
        type=int,
        default=get_env_int("PRUNE_AFTER_DAYS", 30),
        help="Prune acted-on insights older than this many days (default: 30)",
    )
    parser.add_argument(
        "--show",
        type=int,
        default=5,
        help="Number of top active insights to print (default: 5)",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging()

    stores = open_stores(args.db)
    try:
        service = InsightService(stores, prune_after_days=max(1, args.prune_days))
        result = service.refresh(args.teacher, clear_active=args.clear_active)
        report = result.as_dict()
        report["top"] = [
            {
                "id": insight.id,
                "rule": insight.rule_name,
                "priority": insight.priority,
                "summary": insight.summary,
            }
            for insight in service.get_active(max(0, args.show))
        ]
        report["stats"] = service.stats()
    finally:
        stores.database.close()

    print(json.dumps(report, indent=2, ensure_ascii=False))
    return 1 if result.detection.failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
