"""
Row-level helpers shared by the task sync services.

Kept separate so the reconciler, the feedback synthesizer and the cleanup
code select and delete task rows the same way.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Set
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from models import (
    ACTIVITY_LOCAL_TASK_SOURCE,
    ActivityTask,
    ActivityTaskSubtask,
    TASK_KIND_FEEDBACK,
    TaskTemplate,
    TaskTemplateSubtask,
)
from services.after_training_markers import marker_like_pattern


def feedback_task_clause(template_id: Optional[UUID] = None):
    """
    WHERE clause matching synthetic feedback tasks.

    Matches the feedback_template_id column as well as template-less rows
    whose description carries the marker (rows written before the column
    existed). Without a template id, matches feedback tasks of any template.
    Marker matching ignores case, like decode_marker.
    """
    if template_id is None:
        return or_(
            ActivityTask.feedback_template_id.isnot(None),
            ActivityTask.task_kind == TASK_KIND_FEEDBACK,
            and_(
                ActivityTask.task_template_id.is_(None),
                ActivityTask.description.isnot(None),
                ActivityTask.description.ilike(marker_like_pattern()),
            ),
        )
    return or_(
        ActivityTask.feedback_template_id == template_id,
        and_(
            ActivityTask.task_template_id.is_(None),
            ActivityTask.description.isnot(None),
            ActivityTask.description.ilike(marker_like_pattern(template_id)),
        ),
    )


def activity_local_template_select():
    """Ids of templates that back activity-local tasks."""
    return select(TaskTemplate.id).where(TaskTemplate.source_folder == ACTIVITY_LOCAL_TASK_SOURCE)


def activity_local_template_ids(db: Session, template_ids: Iterable[Optional[UUID]]) -> Set[UUID]:
    ids = {t for t in template_ids if t is not None}
    if not ids:
        return set()
    return {
        row[0]
        for row in db.query(TaskTemplate.id)
        .filter(TaskTemplate.id.in_(ids), TaskTemplate.source_folder == ACTIVITY_LOCAL_TASK_SOURCE)
        .all()
    }


def delete_activity_tasks(db: Session, tasks: Iterable[ActivityTask]) -> int:
    """Delete loaded task rows together with their subtasks."""
    count = 0
    for task in tasks:
        # subtasks go through the relationship cascade (DB cascade for unloaded rows)
        db.delete(task)
        count += 1
    if count:
        db.flush()
    return count


def bulk_delete_activity_tasks(db: Session, task_ids: Sequence[UUID]) -> int:
    """Delete subtasks, then tasks, for a list of task ids without loading them."""
    if not task_ids:
        return 0
    db.query(ActivityTaskSubtask).filter(
        ActivityTaskSubtask.activity_task_id.in_(task_ids)
    ).delete(synchronize_session="fetch")
    deleted = db.query(ActivityTask).filter(
        ActivityTask.id.in_(task_ids)
    ).delete(synchronize_session="fetch")
    return int(deleted or 0)


def template_subtask_rows(db: Session, template_id: UUID) -> List[TaskTemplateSubtask]:
    return (
        db.query(TaskTemplateSubtask)
        .filter(TaskTemplateSubtask.task_template_id == template_id)
        .order_by(TaskTemplateSubtask.sort_order, TaskTemplateSubtask.created_at)
        .all()
    )


def replace_subtasks(db: Session, task: ActivityTask, template_subtasks: Sequence[TaskTemplateSubtask]) -> bool:
    """
    Make the task's subtasks equal to the template's ordered subtask list.

    Subtasks are not diffed: when the current rows differ in any way from the
    template definition (title, order or a completed flag) they are all
    replaced. Returns True when rows were rewritten.
    """
    wanted = [(s.title, s.sort_order) for s in template_subtasks]
    current = sorted(task.subtasks, key=lambda s: s.sort_order)
    if [(s.title, s.sort_order) for s in current] == wanted and not any(s.completed for s in current):
        return False

    task.subtasks = [
        ActivityTaskSubtask(title=s.title, sort_order=s.sort_order, completed=False)
        for s in template_subtasks
    ]
    db.flush()
    return True
