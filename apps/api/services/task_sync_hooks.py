"""
Task sync write-path hooks.

Every write that can change which templates apply to which activity calls
one of these, inside the same unit of work as the write itself:

    with unit_of_work(db):
        activity.category_id = new_category_id
        on_activity_category_changed(db, activity, previous_category_id)

Hooks flush, never commit. A failure inside a hook propagates so the whole
write (and everything reconciled so far) is rolled back.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from models import (
    Activity,
    ActivitySeries,
    ActivityTask,
    EventLocalMeta,
    ExternalEvent,
    ExternalEventTask,
    HiddenTaskTemplate,
    TaskTemplate,
)
from services.task_propagation import (
    CategoryLinkReport,
    PropagationReport,
    propagate_template_category_link,
    propagate_template_change,
)
from services.task_reconciler import (
    ReconcileResult,
    reconcile_activity_tasks,
    reconcile_external_event_tasks,
)
from services.task_rows import bulk_delete_activity_tasks, feedback_task_clause
from services.template_cleanup import CleanupResult, cleanup_tasks_for_template
from services.template_resolver import template_category_ids

logger = logging.getLogger(__name__)

_UNSET = object()

# Template fields whose change must reach existing tasks.
_MIRRORED_TEMPLATE_FIELDS = ("title", "description", "reminder_minutes")


def watched_template_fields() -> List[str]:
    """Mirrored fields plus every after_training_* column of task_templates."""
    after_training = sorted(
        c.name for c in TaskTemplate.__table__.columns if c.name.startswith("after_training")
    )
    return list(_MIRRORED_TEMPLATE_FIELDS) + after_training


def template_snapshot(template: TaskTemplate) -> Dict[str, Any]:
    """Capture the watched fields before editing a template."""
    return {name: getattr(template, name) for name in watched_template_fields()}


# --- Activities ---------------------------------------------------------------

def on_activity_created(db: Session, activity: Activity) -> Optional[ReconcileResult]:
    if activity.category_id is None or activity.is_external:
        return None
    db.flush()
    return reconcile_activity_tasks(db, activity.id)


def on_activity_category_changed(
    db: Session,
    activity: Activity,
    previous_category_id: Optional[UUID],
) -> Optional[ReconcileResult]:
    """
    Re-sync after an activity moved to another category.

    Tasks of templates linked to both categories survive with their
    completed flag; the rest are removed as orphans. Moving to no category
    clears template-backed and feedback tasks.
    """
    if activity.category_id == previous_category_id or activity.is_external:
        return None
    db.flush()

    if activity.category_id is None:
        task_ids = [
            row[0]
            for row in db.query(ActivityTask.id)
            .filter(
                ActivityTask.activity_id == activity.id,
                (ActivityTask.task_template_id.isnot(None)) | feedback_task_clause(),
            )
            .all()
        ]
        removed = bulk_delete_activity_tasks(db, task_ids)
        return ReconcileResult(target_id=activity.id, skipped=True, orphans_removed=removed)

    return reconcile_activity_tasks(db, activity.id)


def apply_series_update(
    db: Session,
    series_id: UUID,
    title: Optional[str] = None,
    category_id: Any = _UNSET,
) -> List[ReconcileResult]:
    """
    Copy series-level fields onto every activity of the series.

    Activities whose category actually moved are re-synced one by one.
    """
    series = db.query(ActivitySeries).filter(ActivitySeries.id == series_id).first()
    if series is None:
        return []

    if title is not None:
        series.title = title
    if category_id is not _UNSET:
        series.category_id = category_id

    results: List[ReconcileResult] = []
    activities = (
        db.query(Activity)
        .filter(Activity.series_id == series_id)
        .order_by(Activity.activity_date, Activity.id)
        .all()
    )
    for activity in activities:
        if title is not None:
            activity.title = title
        if category_id is _UNSET:
            continue
        previous = activity.category_id
        activity.category_id = category_id
        outcome = on_activity_category_changed(db, activity, previous)
        if outcome is not None:
            results.append(outcome)

    db.flush()
    return results


# --- Templates ----------------------------------------------------------------

def on_template_updated(
    db: Session,
    template: TaskTemplate,
    previous: Dict[str, Any],
) -> Optional[PropagationReport]:
    """Propagate when a mirrored or after_training_* field changed."""
    changed = [
        name for name in watched_template_fields()
        if name in previous and previous[name] != getattr(template, name)
    ]
    if not changed:
        return None
    db.flush()
    logger.debug(f"Template {template.id} changed fields={changed}")
    return propagate_template_change(db, template.id)


def on_template_subtasks_changed(db: Session, template_id: UUID) -> PropagationReport:
    db.flush()
    return propagate_template_change(db, template_id)


def on_template_category_linked(
    db: Session,
    template_id: UUID,
    category_id: UUID,
    now=None,
) -> CategoryLinkReport:
    db.flush()
    return propagate_template_category_link(db, template_id, category_id, now=now)


def on_template_category_unlinked(db: Session, template_id: UUID, category_id: UUID) -> List[ReconcileResult]:
    """Remove the template's tasks from activities/events still filed under `category_id`."""
    db.flush()
    activity_ids = [
        row[0]
        for row in db.query(ActivityTask.activity_id)
        .join(Activity, Activity.id == ActivityTask.activity_id)
        .filter(
            Activity.category_id == category_id,
            (ActivityTask.task_template_id == template_id) | feedback_task_clause(template_id),
        )
        .distinct()
        .all()
    ]
    meta_ids = [
        row[0]
        for row in db.query(ExternalEventTask.local_meta_id)
        .join(EventLocalMeta, EventLocalMeta.id == ExternalEventTask.local_meta_id)
        .filter(
            EventLocalMeta.category_id == category_id,
            ExternalEventTask.task_template_id == template_id,
        )
        .distinct()
        .all()
    ]
    results = [reconcile_activity_tasks(db, a) for a in sorted(activity_ids, key=str)]
    results += [reconcile_external_event_tasks(db, m) for m in sorted(meta_ids, key=str)]
    return results


def delete_template(db: Session, template_id: UUID) -> Optional[CleanupResult]:
    """
    Hard delete: clean up with the title captured first, then drop the row.

    Category links and template subtasks go with the row.
    """
    template = db.query(TaskTemplate).filter(TaskTemplate.id == template_id).first()
    if template is None:
        return None

    categories = template_category_ids(db, template.id)
    result = cleanup_tasks_for_template(
        db,
        template.user_id,
        template.id,
        template_title=template.title,
        category_ids=categories,
    )
    db.delete(template)
    db.flush()
    return result


def hide_template(db: Session, user_id: UUID, template_id: UUID) -> CleanupResult:
    """Soft-disable a template for `user_id`; only id-scoped cleanup applies."""
    existing = (
        db.query(HiddenTaskTemplate)
        .filter(HiddenTaskTemplate.user_id == user_id, HiddenTaskTemplate.task_template_id == template_id)
        .first()
    )
    if existing is None:
        db.add(HiddenTaskTemplate(user_id=user_id, task_template_id=template_id))
        db.flush()
    return cleanup_tasks_for_template(db, user_id, template_id)


def unhide_template(db: Session, user_id: UUID, template_id: UUID, now=None) -> List[CategoryLinkReport]:
    """Undo a hide and give the template's tasks back to upcoming activities."""
    removed = (
        db.query(HiddenTaskTemplate)
        .filter(HiddenTaskTemplate.user_id == user_id, HiddenTaskTemplate.task_template_id == template_id)
        .delete(synchronize_session="fetch")
    )
    if not removed:
        return []
    db.flush()
    return [
        propagate_template_category_link(db, template_id, category_id, now=now)
        for category_id in template_category_ids(db, template_id)
    ]


def set_template_hidden(db: Session, user_id: UUID, template_id: UUID, hidden: bool, now=None):
    if hidden:
        return hide_template(db, user_id, template_id)
    return unhide_template(db, user_id, template_id, now=now)


# --- External events ----------------------------------------------------------

def on_external_event_meta_created(db: Session, local_meta: EventLocalMeta) -> Optional[ReconcileResult]:
    if local_meta.category_id is None:
        return None
    db.flush()
    return reconcile_external_event_tasks(db, local_meta.id)


def on_external_event_category_changed(
    db: Session,
    local_meta: EventLocalMeta,
    previous_category_id: Optional[UUID],
) -> Optional[ReconcileResult]:
    """A category change on an external event is delete-then-recreate."""
    if local_meta.category_id == previous_category_id:
        return None
    db.flush()
    return reconcile_external_event_tasks(db, local_meta.id, reset_template_tasks=True)


def on_external_event_deleted_changed(
    db: Session,
    external_event: ExternalEvent,
    previously_deleted: bool,
) -> int:
    """
    Follow a soft delete / restore of an external event.

    Soft delete removes only pending tasks; completed ones are history.
    Restore recreates tasks for every linked local meta with a category.
    Returns the number of tasks removed or local meta rows re-synced.
    """
    deleted = bool(external_event.deleted)
    if deleted == bool(previously_deleted):
        return 0
    db.flush()

    meta_ids = select_local_meta_ids(db, external_event.id)
    if deleted:
        if not meta_ids:
            return 0
        removed = (
            db.query(ExternalEventTask)
            .filter(
                ExternalEventTask.local_meta_id.in_(meta_ids),
                ExternalEventTask.completed.is_(False),
            )
            .delete(synchronize_session="fetch")
        )
        logger.info(f"External event {external_event.id} soft-deleted, removed {removed} pending task(s)")
        return int(removed or 0)

    restored = 0
    for meta in (
        db.query(EventLocalMeta)
        .filter(EventLocalMeta.id.in_(meta_ids), EventLocalMeta.category_id.isnot(None))
        .all()
    ):
        reconcile_external_event_tasks(db, meta.id)
        restored += 1
    logger.info(f"External event {external_event.id} restored, re-synced {restored} local meta row(s)")
    return restored


def select_local_meta_ids(db: Session, external_event_id: UUID) -> List[UUID]:
    return [
        row[0]
        for row in db.query(EventLocalMeta.id)
        .filter(EventLocalMeta.external_event_id == external_event_id)
        .all()
    ]
