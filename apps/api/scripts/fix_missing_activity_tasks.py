"""
Rebuild template tasks for every categorized activity.

Recovery tool for activities that were created or re-categorized while a
write path skipped its sync hook. Template-backed tasks are dropped and
rebuilt per activity; the whole sweep runs in one transaction.

Usage (inside api container):
  python scripts/fix_missing_activity_tasks.py --dry-run
  python scripts/fix_missing_activity_tasks.py
"""

from __future__ import annotations

import json
import os
import sys


# Ensure /app is on sys.path when run as a script inside the container.
_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _ROOT not in sys.path:
    sys.path.insert(0, _ROOT)


def main() -> int:
    import argparse

    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only list activities missing template tasks. No DB writes.",
    )
    args = parser.parse_args()

    from core.database import get_db_sync, unit_of_work
    from core.logging import setup_logging
    from services.task_propagation import (
        fix_missing_activity_tasks_for_all_users,
        preview_missing_activity_tasks,
    )

    setup_logging()
    db = get_db_sync()
    try:
        if args.dry_run:
            fixes = preview_missing_activity_tasks(db)
        else:
            with unit_of_work(db):
                fixes = fix_missing_activity_tasks_for_all_users(db)

        print(
            json.dumps(
                {
                    "dry_run": args.dry_run,
                    "activities": len(fixes),
                    "tasks": sum(f.tasks_created for f in fixes),
                    "fixes": [f.to_dict() for f in fixes],
                },
                indent=2,
            )
        )
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
