"""
Template cleanup.

Removes everything a template ever generated for its owner:
template-backed tasks, marker-tagged feedback tasks, external event tasks and
the self-feedback history. Runs before a hard delete (title known) and when a
template is hidden (id-scoped only).

With a title, also removes legacy template-less copies of the template's
tasks. Those rows carry no id at all, so they are matched by title inside the
template's former category scope, and only when the same title shows up on at
least two activities. A title that another live template of the same user
also uses is ambiguous: nothing is deleted and a warning is logged. Leaving
an orphan behind is acceptable; deleting a user's own task is not.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import (
    Activity,
    ActivityTask,
    EventLocalMeta,
    ExternalEventTask,
    TaskTemplate,
    TaskTemplateSelfFeedback,
)
from services.task_rows import bulk_delete_activity_tasks, feedback_task_clause
from services.template_resolver import template_category_ids

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    template_id: Optional[UUID]
    template_tasks_removed: int = 0
    feedback_tasks_removed: int = 0
    external_tasks_removed: int = 0
    self_feedback_removed: int = 0
    legacy_tasks_removed: int = 0
    title_collision: bool = False


def cleanup_tasks_for_template(
    db: Session,
    user_id: Optional[UUID],
    template_id: Optional[UUID],
    template_title: Optional[str] = None,
    category_ids: Optional[List[UUID]] = None,
) -> CleanupResult:
    """
    Delete every row generated from `template_id` across the activities of `user_id`.

    category_ids overrides the template's current category links as the
    legacy-title scope (the links are gone once the row is deleted).
    """
    result = CleanupResult(template_id=template_id)
    if user_id is None or template_id is None:
        return result

    user_activities = select(Activity.id).where(Activity.user_id == user_id)

    # 1) template-backed tasks + subtasks
    task_ids = [
        row[0]
        for row in db.query(ActivityTask.id)
        .filter(ActivityTask.activity_id.in_(user_activities), ActivityTask.task_template_id == template_id)
        .all()
    ]
    result.template_tasks_removed = bulk_delete_activity_tasks(db, task_ids)

    # 2) feedback tasks (marker or feedback_template_id) + subtasks
    feedback_ids = [
        row[0]
        for row in db.query(ActivityTask.id)
        .filter(ActivityTask.activity_id.in_(user_activities), feedback_task_clause(template_id))
        .all()
    ]
    result.feedback_tasks_removed = bulk_delete_activity_tasks(db, feedback_ids)

    # 3) external event tasks
    user_metas = select(EventLocalMeta.id).where(EventLocalMeta.user_id == user_id)
    result.external_tasks_removed = int(
        db.query(ExternalEventTask)
        .filter(ExternalEventTask.local_meta_id.in_(user_metas), ExternalEventTask.task_template_id == template_id)
        .delete(synchronize_session="fetch")
        or 0
    )

    # 4) self feedback history
    result.self_feedback_removed = int(
        db.query(TaskTemplateSelfFeedback)
        .filter(TaskTemplateSelfFeedback.user_id == user_id, TaskTemplateSelfFeedback.task_template_id == template_id)
        .delete(synchronize_session="fetch")
        or 0
    )

    # 5) legacy template-less copies, matched by title
    title = (template_title or "").strip()
    if title:
        if category_ids is None:
            category_ids = template_category_ids(db, template_id)
        _cleanup_legacy_titled_tasks(db, user_id, template_id, title, category_ids, result)

    db.flush()
    logger.info(
        f"Template cleanup template={template_id} user={user_id} "
        f"tasks={result.template_tasks_removed} feedback={result.feedback_tasks_removed} "
        f"external={result.external_tasks_removed} self_feedback={result.self_feedback_removed} "
        f"legacy={result.legacy_tasks_removed}"
    )
    return result


def _cleanup_legacy_titled_tasks(
    db: Session,
    user_id: UUID,
    template_id: UUID,
    title: str,
    category_ids: List[UUID],
    result: CleanupResult,
) -> None:
    colliding = (
        db.query(TaskTemplate.id)
        .filter(
            TaskTemplate.user_id == user_id,
            TaskTemplate.id != template_id,
            TaskTemplate.title == title,
        )
        .first()
    )
    if colliding is not None:
        result.title_collision = True
        logger.warning(
            f"Legacy cleanup skipped: title {title!r} of template={template_id} "
            f"is also used by template={colliding[0]} (user={user_id})"
        )
        return

    query = (
        db.query(ActivityTask.id, ActivityTask.activity_id)
        .join(Activity, Activity.id == ActivityTask.activity_id)
        .filter(
            Activity.user_id == user_id,
            ActivityTask.task_template_id.is_(None),
            ActivityTask.title == title,
        )
    )
    if category_ids:
        query = query.filter(Activity.category_id.in_(category_ids))
    else:
        query = query.filter(Activity.series_id.isnot(None))

    candidates = query.all()
    activity_ids = {row[1] for row in candidates}
    if len(activity_ids) < 2:
        # A single match has no sibling to confirm it came from the template.
        if candidates:
            logger.debug(f"Legacy cleanup left {len(candidates)} task(s) titled {title!r} untouched")
        return

    result.legacy_tasks_removed = bulk_delete_activity_tasks(db, [row[0] for row in candidates])
