#!/usr/bin/env python3
"""
Populate today's plan in the status document.

Picks tasks across active projects by project weight and writes them to
`todayPlan`. Skips days off (Friday, Saturday) and days already planned.

Usage:
    python populate_today.py            # normally from cron, early morning
    python populate_today.py --force    # replace an existing plan for today
"""

import argparse
import logging
import sys

from statusboard.config import Config
from statusboard.document_store import store_from_config
from statusboard.errors import BoardError
from statusboard.mutator import DocumentMutator
from statusboard.today import is_working_day, local_today

logger = logging.getLogger("populate_today")


def run(cfg: Config, force: bool = False, store=None, today=None) -> int:
    """Returns the number of tasks planned (0 when nothing was written)."""
    day = today or local_today(cfg.timezone)
    if not force and not is_working_day(day):
        logger.info(f"{day:%A} is a day off, not planning")
        return 0

    mutator = DocumentMutator(store or store_from_config(cfg), max_attempts=cfg.commit_attempts)
    plan = mutator.populate_today(day, cfg.today_weights, force=force)
    if plan is None:
        logger.info(f"Already planned for {day.isoformat()}")
        return 0
    for item in plan["tasks"]:
        logger.info(f"  [{item['projectId']}] {item['title']}")
    logger.info(f"Planned {len(plan['tasks'])} tasks for {day.isoformat()}")
    return len(plan["tasks"])


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Populate today's plan")
    parser.add_argument("--config", help="Path to statusboard.yaml")
    parser.add_argument("--force", action="store_true", help="Plan even on a day off or when already planned")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [populate-today] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    try:
        run(Config.load(args.config), force=args.force)
    except BoardError as e:
        logger.error(f"{e.message}{f' ({e.detail})' if e.detail else ''}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
