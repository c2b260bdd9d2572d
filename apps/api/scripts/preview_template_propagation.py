"""
Show how far a template edit would reach before making it.

Prints the series count, direct / series / total activity updates and
external event updates. With --apply the propagation is run for real.

Usage (inside api container):
  python scripts/preview_template_propagation.py 4368ec7f-c30d-45ff-a6ee-58db7716be24
  python scripts/preview_template_propagation.py 4368ec7f-c30d-45ff-a6ee-58db7716be24 --apply
"""

from __future__ import annotations

import json
import os
import sys
from uuid import UUID


# Ensure /app is on sys.path when run as a script inside the container.
_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if _ROOT not in sys.path:
    sys.path.insert(0, _ROOT)


def main() -> int:
    import argparse

    parser = argparse.ArgumentParser()
    parser.add_argument("template_id", type=str, help="UUID of task template")
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Reconcile every affected activity. Default is a dry run (no DB writes).",
    )
    args = parser.parse_args()

    template_id = UUID(args.template_id)

    from core.database import get_db_sync, unit_of_work
    from core.logging import setup_logging
    from models import TaskTemplate
    from services.task_propagation import propagate_template_change

    setup_logging()
    db = get_db_sync()
    try:
        template = db.query(TaskTemplate).filter(TaskTemplate.id == template_id).first()
        if not template:
            print(f"Template not found: {template_id}", file=sys.stderr)
            return 2

        if args.apply:
            with unit_of_work(db):
                report = propagate_template_change(db, template_id)
        else:
            report = propagate_template_change(db, template_id, dry_run=True)

        print(json.dumps({"title": template.title, **report.to_dict()}, indent=2))
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
