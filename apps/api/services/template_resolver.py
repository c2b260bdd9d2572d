"""
Template resolution.

Answers one question: which task templates apply to an activity (or an
external event) of `user_id` filed under `category_id`?

A template applies iff it is owned by the same user, at least one of its
category links points at the category, and the owner has not hidden it.
The answer is recomputed from the link table on every call; it is a pure
function of (user_id, category_id), so a cache can wrap it from outside.
"""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import HiddenTaskTemplate, TaskTemplate, TaskTemplateCategory


def resolve_templates_for_category(
    db: Session,
    user_id: Optional[UUID],
    category_id: Optional[UUID],
) -> List[TaskTemplate]:
    """
    Return every template of `user_id` linked to `category_id`.

    No user or no category means no templates. Results are ordered by
    creation time so reconciliation inserts tasks in a stable order.
    """
    if user_id is None or category_id is None:
        return []

    hidden = select(HiddenTaskTemplate.task_template_id).where(HiddenTaskTemplate.user_id == user_id)

    return (
        db.query(TaskTemplate)
        .join(TaskTemplateCategory, TaskTemplateCategory.task_template_id == TaskTemplate.id)
        .filter(
            TaskTemplateCategory.category_id == category_id,
            TaskTemplate.user_id == user_id,
            ~TaskTemplate.id.in_(hidden),
        )
        .distinct()
        .order_by(TaskTemplate.created_at, TaskTemplate.id)
        .all()
    )


def resolve_template_ids_for_category(
    db: Session,
    user_id: Optional[UUID],
    category_id: Optional[UUID],
) -> List[UUID]:
    return [t.id for t in resolve_templates_for_category(db, user_id, category_id)]


def template_category_ids(db: Session, template_id: UUID) -> List[UUID]:
    """Categories a template is currently linked to."""
    rows = (
        db.query(TaskTemplateCategory.category_id)
        .filter(TaskTemplateCategory.task_template_id == template_id)
        .distinct()
        .all()
    )
    return [row[0] for row in rows]
