"""
After-training feedback tasks.

Templates flagged after_training_enabled give every activity they apply to:
- one empty TrainingReflection row (insert-if-absent, never overwritten)
- exactly one synthetic "Feedback on <template title>" task, linked to the
  template through feedback_template_id and the description marker

The task is rewritten in place on every sync so its title follows the
template title while the user's completed flag is kept.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from core.config import settings
from models import (
    Activity,
    ActivityTask,
    TASK_KIND_FEEDBACK,
    TaskTemplate,
    TrainingReflection,
)
from services.after_training_markers import encode_marker
from services.task_rows import delete_activity_tasks, feedback_task_clause

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedbackCopy:
    title_prefix: str
    fallback_subject: str
    sentence: str


FEEDBACK_COPY: Dict[str, FeedbackCopy] = {
    "en": FeedbackCopy(
        title_prefix="Feedback on",
        fallback_subject="the task",
        sentence="Share your feedback after training directly with your coach.",
    ),
    "da": FeedbackCopy(
        title_prefix="Feedback på",
        fallback_subject="opgaven",
        sentence="Del din feedback efter træningen direkte til træneren.",
    ),
}


def _copy(locale: Optional[str] = None) -> FeedbackCopy:
    key = (locale or settings.FEEDBACK_TASK_LOCALE or "en").lower()
    return FEEDBACK_COPY.get(key, FEEDBACK_COPY["en"])


def feedback_task_title(base_title: Optional[str], locale: Optional[str] = None) -> str:
    copy = _copy(locale)
    subject = (base_title or "").strip() or copy.fallback_subject
    return f"{copy.title_prefix} {subject}"


def feedback_task_description(template_id: UUID, locale: Optional[str] = None) -> str:
    return f"{_copy(locale).sentence} {encode_marker(template_id)}"


def upsert_feedback_task(
    db: Session,
    activity_id: UUID,
    template_id: UUID,
    base_title: Optional[str],
) -> Optional[ActivityTask]:
    """
    Ensure exactly one feedback task for (activity, template).

    An existing task (found by feedback_template_id or by marker) is updated
    in place; its completed flag is left alone. When several exist, the
    completed one (else the oldest) is kept and the rest are deleted.
    Otherwise a new task is inserted with completed=False and no subtasks.
    """
    if activity_id is None or template_id is None:
        return None

    title = feedback_task_title(base_title)
    description = feedback_task_description(template_id)
    reminder = (
        db.query(TaskTemplate.after_training_delay_minutes)
        .filter(TaskTemplate.id == template_id)
        .scalar()
    )

    candidates = (
        db.query(ActivityTask)
        .filter(ActivityTask.activity_id == activity_id, feedback_task_clause(template_id))
        .order_by(ActivityTask.completed.desc(), ActivityTask.created_at.asc(), ActivityTask.id.asc())
        .all()
    )

    if candidates:
        task = candidates[0]
        duplicates = candidates[1:]
        if duplicates:
            logger.warning(
                f"Collapsing {len(duplicates)} duplicate feedback task(s) "
                f"activity={activity_id} template={template_id}"
            )
            delete_activity_tasks(db, duplicates)
        task.title = title
        task.description = description
        task.reminder_minutes = reminder
        task.feedback_template_id = template_id
        task.task_template_id = None
        task.task_kind = TASK_KIND_FEEDBACK
    else:
        task = ActivityTask(
            activity_id=activity_id,
            task_template_id=None,
            feedback_template_id=template_id,
            task_kind=TASK_KIND_FEEDBACK,
            title=title,
            description=description,
            reminder_minutes=reminder,
            completed=False,
        )
        db.add(task)

    db.flush()
    return task


def ensure_training_reflection(
    db: Session,
    activity: Activity,
    category_id: UUID,
) -> Tuple[Optional[TrainingReflection], bool]:
    """
    Insert an empty reflection for the activity unless one exists.

    The reflection belongs to the player when the activity has one, else to
    the activity owner. Returns (reflection, created).
    """
    existing = (
        db.query(TrainingReflection)
        .filter(TrainingReflection.activity_id == activity.id)
        .first()
    )
    if existing is not None:
        return existing, False

    owner_id = activity.player_id or activity.user_id
    if owner_id is None:
        return None, False

    reflection = TrainingReflection(
        activity_id=activity.id,
        user_id=owner_id,
        category_id=category_id,
        rating=None,
        note=None,
    )
    db.add(reflection)
    db.flush()
    return reflection, True
