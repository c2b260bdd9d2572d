"""
Task Sync Maintenance Tasks

Manual admin triggers for the task sync engine, run on the worker so a
full sweep does not hold an API request open.
"""

from typing import Dict
from uuid import UUID
from celery import Task
from sqlalchemy.orm import Session
from core.database import get_db_sync, unit_of_work
from core.logging import log_context
from tasks import celery_app
from services.task_propagation import (
    fix_missing_activity_tasks_for_all_users,
    propagate_template_change,
)
import logging

logger = logging.getLogger(__name__)


@celery_app.task(name="tasks.fix_missing_activity_tasks", bind=True)
def fix_missing_activity_tasks_task(self: Task) -> Dict:
    """Rebuild template tasks for every categorized activity, in one transaction."""
    db: Session = get_db_sync()
    try:
        with log_context(celery_task_id=self.request.id), unit_of_work(db):
            fixes = fix_missing_activity_tasks_for_all_users(db)
        logger.info(f"Missing task sweep finished, {len(fixes)} activities fixed")
        return {
            "status": "success",
            "activities_fixed": len(fixes),
            "fixes": [f.to_dict() for f in fixes],
        }
    except Exception as e:
        logger.error(f"Missing task sweep failed: {e}", exc_info=True)
        raise
    finally:
        db.close()


@celery_app.task(name="tasks.propagate_template_change", bind=True)
def propagate_template_change_task(self: Task, template_id: str, dry_run: bool = False) -> Dict:
    """Fan a template change out to every activity and external event using it."""
    db: Session = get_db_sync()
    try:
        with log_context(template_id=template_id, celery_task_id=self.request.id), unit_of_work(db):
            report = propagate_template_change(db, UUID(str(template_id)), dry_run=dry_run)
        return {"status": "success", **report.to_dict()}
    except Exception as e:
        logger.error(f"Propagation failed for template {template_id}: {e}", exc_info=True)
        raise
    finally:
        db.close()
