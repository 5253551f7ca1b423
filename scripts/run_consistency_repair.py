"""Run the digital redemption consistency repair once.

Run by an operator, dry-run first, after a data migration or when digital
redemptions are reported stuck at APPROVED.

Example:
    python scripts/run_consistency_repair.py --dry-run
    python scripts/run_consistency_repair.py --type BOOST --actor 1234
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

from emporium.constants import DIGITAL_TYPES
from emporium.database.engine import create_db_engine
from emporium.database.models import RewardType
from emporium.services import repair_service

logger = logging.getLogger("emporium.repair")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Correct digital redemptions stuck at APPROVED")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be corrected without writing anything.",
    )
    parser.add_argument(
        "--type",
        dest="types",
        action="append",
        choices=sorted(t.value for t in DIGITAL_TYPES),
        help="Limit the scan to one digital reward type (repeatable).",
    )
    parser.add_argument(
        "--actor",
        type=int,
        default=None,
        help="Admin user id recorded in the audit log.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    args = parse_args(argv)

    engine = create_db_engine()
    types = [RewardType(t) for t in args.types] if args.types else DIGITAL_TYPES
    report = repair_service.scan(
        engine, reward_types=types, dry_run=args.dry_run, actor_id=args.actor,
    )
    logger.info(
        "Consistency repair finished: count=%d dry_run=%s", report["count"], report["dry_run"],
    )
    print(json.dumps(report, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
