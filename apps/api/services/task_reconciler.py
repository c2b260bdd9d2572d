"""
Task Reconciler

Makes an activity's task list match the templates of its category.

For one activity, in order:
1. Resolve (category, user); no category, no user, or an external activity = no-op
2. Resolve the applicable templates
3. Delete stale feedback tasks (template no longer applies or no longer has
   after-training enabled, or the marker is malformed)
4. Delete orphaned template-backed tasks (template not in the resolved set),
   except tasks backed by an activity-local template
5. Upsert one task per template: title/description/reminder mirrored from the
   template, subtasks reset to the template's list, completed left alone
6. For after-training templates: insert-if-absent TrainingReflection and
   upsert the feedback task

External events (EventLocalMeta) go through the same steps minus feedback
synthesis and subtasks. Soft-deleted events are skipped.

All functions flush but never commit: the caller's unit of work decides.
Constraint violations are raised as ReconciliationError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.exceptions import ReconciliationError
from models import (
    Activity,
    ActivityTask,
    EventLocalMeta,
    ExternalEvent,
    ExternalEventTask,
    TASK_KIND_TEMPLATE,
    TaskTemplate,
)
from services.after_training_markers import decode_marker_uuid
from services.feedback_tasks import ensure_training_reflection, upsert_feedback_task
from services.task_rows import (
    activity_local_template_ids,
    delete_activity_tasks,
    feedback_task_clause,
    replace_subtasks,
    template_subtask_rows,
)
from services.template_resolver import resolve_templates_for_category

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """What one reconciliation did to one activity (or external event)."""
    target_id: Optional[UUID]
    skipped: bool = False
    tasks_created: int = 0
    tasks_updated: int = 0
    orphans_removed: int = 0
    feedback_removed: int = 0
    feedback_upserted: int = 0
    reflections_created: int = 0
    template_ids: List[UUID] = field(default_factory=list)


def _feedback_template_of(task: ActivityTask) -> Optional[UUID]:
    if task.feedback_template_id is not None:
        return task.feedback_template_id
    return decode_marker_uuid(task.description)


def _event_deleted(db: Session, meta: EventLocalMeta) -> bool:
    # Soft-deleted events keep their completed tasks and get nothing new.
    if meta.external_event_id is None:
        return False
    return bool(
        db.query(ExternalEvent.deleted)
        .filter(ExternalEvent.id == meta.external_event_id)
        .scalar()
    )


def _mirror_template(task, template: TaskTemplate) -> None:
    task.title = template.title
    task.description = template.description
    task.reminder_minutes = template.reminder_minutes


def reconcile_activity_tasks(db: Session, activity_id: UUID) -> ReconcileResult:
    """Bring one internal activity's tasks in line with its category's templates."""
    result = ReconcileResult(target_id=activity_id)

    activity = db.query(Activity).filter(Activity.id == activity_id).first()
    if (
        activity is None
        or activity.category_id is None
        or activity.user_id is None
        or activity.is_external
    ):
        result.skipped = True
        return result

    templates = resolve_templates_for_category(db, activity.user_id, activity.category_id)
    template_ids = {t.id for t in templates}
    after_training_ids = {t.id for t in templates if t.after_training_enabled}
    result.template_ids = [t.id for t in templates]

    try:
        # 3) stale feedback tasks
        feedback_tasks = (
            db.query(ActivityTask)
            .filter(ActivityTask.activity_id == activity.id, feedback_task_clause())
            .all()
        )
        stale_feedback = [
            t for t in feedback_tasks
            if _feedback_template_of(t) not in after_training_ids
        ]
        result.feedback_removed = delete_activity_tasks(db, stale_feedback)

        # 4) orphaned template-backed tasks; activity-local ones are the user's
        template_tasks = (
            db.query(ActivityTask)
            .filter(
                ActivityTask.activity_id == activity.id,
                ActivityTask.task_template_id.isnot(None),
            )
            .all()
        )
        local_ids = activity_local_template_ids(db, [t.task_template_id for t in template_tasks])
        orphans = [
            t for t in template_tasks
            if t.task_template_id not in template_ids and t.task_template_id not in local_ids
        ]
        result.orphans_removed = delete_activity_tasks(db, orphans)
        existing = {t.task_template_id: t for t in template_tasks if t.task_template_id in template_ids}

        # 5) upsert current templates, 6) after-training extras
        for template in templates:
            subtasks = template_subtask_rows(db, template.id)
            task = existing.get(template.id)
            if task is not None:
                _mirror_template(task, template)
                task.task_kind = TASK_KIND_TEMPLATE
                replace_subtasks(db, task, subtasks)
                result.tasks_updated += 1
            else:
                task = ActivityTask(
                    activity_id=activity.id,
                    task_template_id=template.id,
                    task_kind=TASK_KIND_TEMPLATE,
                    completed=False,
                )
                _mirror_template(task, template)
                db.add(task)
                db.flush()
                replace_subtasks(db, task, subtasks)
                result.tasks_created += 1

            if template.after_training_enabled:
                _, created = ensure_training_reflection(db, activity, activity.category_id)
                if created:
                    result.reflections_created += 1
                upsert_feedback_task(db, activity.id, template.id, template.title)
                result.feedback_upserted += 1

        db.flush()
    except IntegrityError as e:
        logger.error(f"Reconciliation failed activity={activity_id}: {e}")
        raise ReconciliationError("activity", activity_id, e) from e

    logger.debug(
        f"Reconciled activity={activity_id} created={result.tasks_created} "
        f"updated={result.tasks_updated} orphans={result.orphans_removed} "
        f"feedback={result.feedback_upserted}"
    )
    return result


def reconcile_external_event_tasks(
    db: Session,
    local_meta_id: UUID,
    reset_template_tasks: bool = False,
) -> ReconcileResult:
    """
    Bring one external event's tasks in line with its category's templates.

    reset_template_tasks drops every template-backed task first (a category
    change is handled as delete-then-recreate, not as a diff).
    """
    result = ReconcileResult(target_id=local_meta_id)

    meta = db.query(EventLocalMeta).filter(EventLocalMeta.id == local_meta_id).first()
    if meta is None or _event_deleted(db, meta):
        result.skipped = True
        return result

    try:
        if reset_template_tasks:
            result.orphans_removed += int(
                db.query(ExternalEventTask)
                .filter(
                    ExternalEventTask.local_meta_id == meta.id,
                    ExternalEventTask.task_template_id.isnot(None),
                )
                .delete(synchronize_session="fetch")
                or 0
            )

        if meta.category_id is None or meta.user_id is None:
            result.skipped = True
            db.flush()
            return result

        templates = resolve_templates_for_category(db, meta.user_id, meta.category_id)
        template_ids = {t.id for t in templates}
        result.template_ids = [t.id for t in templates]

        template_tasks = (
            db.query(ExternalEventTask)
            .filter(
                ExternalEventTask.local_meta_id == meta.id,
                ExternalEventTask.task_template_id.isnot(None),
            )
            .all()
        )
        for task in template_tasks:
            if task.task_template_id not in template_ids:
                db.delete(task)
                result.orphans_removed += 1
        existing = {t.task_template_id: t for t in template_tasks if t.task_template_id in template_ids}

        for template in templates:
            task = existing.get(template.id)
            if task is not None:
                _mirror_template(task, template)
                result.tasks_updated += 1
            else:
                task = ExternalEventTask(
                    local_meta_id=meta.id,
                    task_template_id=template.id,
                    completed=False,
                )
                _mirror_template(task, template)
                db.add(task)
                result.tasks_created += 1

        db.flush()
    except IntegrityError as e:
        logger.error(f"Reconciliation failed external_event local_meta={local_meta_id}: {e}")
        raise ReconciliationError("external_event", local_meta_id, e) from e

    logger.debug(
        f"Reconciled external local_meta={local_meta_id} created={result.tasks_created} "
        f"updated={result.tasks_updated} orphans={result.orphans_removed}"
    )
    return result
