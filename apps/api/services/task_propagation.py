"""
Task Propagation

Fans a template-level change out to every activity that uses the template.

Scope of a template change:
- direct: activities that already carry a task for the template
- series: every other internal activity in the recurring series of a direct activity
- external: external events (local meta rows) carrying a task for the
  template, unless the event is soft-deleted

dry_run returns the counts only, so callers can preview the blast radius of
an edit before committing to it. A real run reconciles each target in turn
inside the caller's transaction: one failure rolls the whole propagation back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Any, Dict, List, Optional, Set
from uuid import UUID

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from core.config import settings
from models import (
    Activity,
    ActivityTask,
    EventLocalMeta,
    ExternalEvent,
    ExternalEventTask,
    TaskTemplate,
)
from services.task_reconciler import reconcile_activity_tasks, reconcile_external_event_tasks
from services.task_rows import activity_local_template_select, bulk_delete_activity_tasks
from services.template_resolver import resolve_template_ids_for_category

logger = logging.getLogger(__name__)


@dataclass
class PropagationReport:
    template_id: Optional[UUID]
    dry_run: bool = False
    series_count: int = 0
    direct_activity_updates: int = 0
    series_activity_updates: int = 0
    external_event_updates: int = 0
    activity_ids: List[UUID] = field(default_factory=list)
    external_ids: List[UUID] = field(default_factory=list)

    @property
    def total_activity_updates(self) -> int:
        return self.direct_activity_updates + self.series_activity_updates

    def to_dict(self) -> Dict[str, Any]:
        return {
            "templateId": str(self.template_id) if self.template_id else None,
            "seriesCount": self.series_count,
            "directActivityUpdates": self.direct_activity_updates,
            "seriesActivityUpdates": self.series_activity_updates,
            "totalActivityUpdates": self.total_activity_updates,
            "externalEventUpdates": self.external_event_updates,
            "dryRun": self.dry_run,
        }


@dataclass
class CategoryLinkReport:
    template_id: UUID
    category_id: UUID
    activity_updates: int = 0
    external_event_updates: int = 0


@dataclass
class MissingTaskFix:
    activity_id: UUID
    tasks_created: int

    def to_dict(self) -> Dict[str, Any]:
        return {"activityId": str(self.activity_id), "tasksCreated": self.tasks_created}


def _sorted(ids: Set[UUID]) -> List[UUID]:
    return sorted(ids, key=str)


def propagate_template_change(db: Session, template_id: Optional[UUID], dry_run: bool = False) -> PropagationReport:
    """Reconcile every activity and external event affected by a template change."""
    report = PropagationReport(template_id=template_id, dry_run=dry_run)
    if template_id is None:
        return report

    direct_ids: Set[UUID] = {
        row[0]
        for row in db.query(ActivityTask.activity_id)
        .filter(ActivityTask.task_template_id == template_id)
        .distinct()
        .all()
    }

    series_ids: Set[UUID] = set()
    if direct_ids:
        series_ids = {
            row[0]
            for row in db.query(Activity.series_id)
            .filter(Activity.id.in_(direct_ids), Activity.series_id.isnot(None))
            .distinct()
            .all()
        }

    series_activity_ids: Set[UUID] = set()
    if series_ids:
        series_activity_ids = {
            row[0]
            for row in db.query(Activity.id)
            .filter(Activity.series_id.in_(series_ids), Activity.is_external.is_(False))
            .all()
        } - direct_ids

    external_ids: Set[UUID] = {
        row[0]
        for row in db.query(ExternalEventTask.local_meta_id)
        .join(EventLocalMeta, EventLocalMeta.id == ExternalEventTask.local_meta_id)
        .outerjoin(ExternalEvent, ExternalEvent.id == EventLocalMeta.external_event_id)
        .filter(
            ExternalEventTask.task_template_id == template_id,
            or_(ExternalEvent.id.is_(None), ExternalEvent.deleted.is_(False)),
        )
        .distinct()
        .all()
    }

    report.direct_activity_updates = len(direct_ids)
    report.series_count = len(series_ids)
    report.series_activity_updates = len(series_activity_ids)
    report.external_event_updates = len(external_ids)
    report.activity_ids = _sorted(direct_ids) + _sorted(series_activity_ids)
    report.external_ids = _sorted(external_ids)

    if dry_run:
        return report

    for activity_id in report.activity_ids:
        reconcile_activity_tasks(db, activity_id)
    for local_meta_id in report.external_ids:
        reconcile_external_event_tasks(db, local_meta_id)

    logger.info(
        f"Template propagation template={template_id} series={report.series_count} "
        f"activities={report.total_activity_updates} external={report.external_event_updates}"
    )
    return report


def _upcoming_activity_clause(now: datetime):
    today = now.date()
    return or_(
        Activity.activity_date.is_(None),
        Activity.activity_date > today,
        and_(
            Activity.activity_date == today,
            or_(Activity.activity_time.is_(None), Activity.activity_time >= now.time()),
        ),
    )


def _upcoming_event_clause(now: datetime):
    today = now.date()
    return or_(
        ExternalEvent.id.is_(None),
        ExternalEvent.start_date > today,
        and_(
            ExternalEvent.start_date == today,
            func.coalesce(ExternalEvent.start_time, time(0, 0)) >= now.time(),
        ),
    )


def propagate_template_category_link(
    db: Session,
    template_id: UUID,
    category_id: UUID,
    now: Optional[datetime] = None,
    upcoming_only: Optional[bool] = None,
) -> CategoryLinkReport:
    """
    Give a template's tasks to activities and external events newly in scope
    after the template was linked to `category_id`.

    Only the linked category is touched, not every activity using the
    template. With upcoming_only (default from settings) past activities and
    events keep their task lists as they were.
    """
    report = CategoryLinkReport(template_id=template_id, category_id=category_id)
    template = db.query(TaskTemplate).filter(TaskTemplate.id == template_id).first()
    if template is None or category_id is None:
        return report

    if upcoming_only is None:
        upcoming_only = settings.TASK_SYNC_LINK_UPCOMING_ONLY
    now = now or datetime.now()

    activity_query = db.query(Activity.id).filter(
        Activity.category_id == category_id,
        Activity.user_id == template.user_id,
        Activity.is_external.is_(False),
    )
    if upcoming_only:
        activity_query = activity_query.filter(_upcoming_activity_clause(now))

    meta_query = (
        db.query(EventLocalMeta.id)
        .outerjoin(ExternalEvent, ExternalEvent.id == EventLocalMeta.external_event_id)
        .filter(
            EventLocalMeta.category_id == category_id,
            EventLocalMeta.user_id == template.user_id,
            or_(ExternalEvent.id.is_(None), ExternalEvent.deleted.is_(False)),
        )
    )
    if upcoming_only:
        meta_query = meta_query.filter(_upcoming_event_clause(now))

    activity_ids = _sorted({row[0] for row in activity_query.all()})
    meta_ids = _sorted({row[0] for row in meta_query.all()})

    for activity_id in activity_ids:
        reconcile_activity_tasks(db, activity_id)
    for local_meta_id in meta_ids:
        reconcile_external_event_tasks(db, local_meta_id)

    report.activity_updates = len(activity_ids)
    report.external_event_updates = len(meta_ids)
    logger.info(
        f"Template category link template={template_id} category={category_id} "
        f"activities={report.activity_updates} external={report.external_event_updates} "
        f"upcoming_only={upcoming_only}"
    )
    return report


def _task_count(db: Session, activity_id: UUID) -> int:
    return int(
        db.query(func.count(ActivityTask.id))
        .filter(ActivityTask.activity_id == activity_id)
        .scalar()
        or 0
    )


def _sweep_candidates(db: Session) -> List[Activity]:
    return (
        db.query(Activity)
        .filter(Activity.is_external.is_(False), Activity.category_id.isnot(None))
        .order_by(Activity.created_at, Activity.id)
        .all()
    )


def fix_missing_activity_tasks_for_all_users(db: Session) -> List[MissingTaskFix]:
    """
    Maintenance sweep: rebuild template tasks for every categorized activity.

    Template-backed tasks are dropped before each rebuild so a half-applied
    earlier sync cannot leave duplicates behind. Activity-local tasks are
    kept. Only activities whose task count went up are reported.
    """
    fixes: List[MissingTaskFix] = []
    candidates = _sweep_candidates(db)

    for activity in candidates:
        if not resolve_template_ids_for_category(db, activity.user_id, activity.category_id):
            continue

        before = _task_count(db, activity.id)
        template_task_ids = [
            row[0]
            for row in db.query(ActivityTask.id)
            .filter(
                ActivityTask.activity_id == activity.id,
                ActivityTask.task_template_id.isnot(None),
                ~ActivityTask.task_template_id.in_(activity_local_template_select()),
            )
            .all()
        ]
        bulk_delete_activity_tasks(db, template_task_ids)
        reconcile_activity_tasks(db, activity.id)
        after = _task_count(db, activity.id)

        if after > before:
            fixes.append(MissingTaskFix(activity_id=activity.id, tasks_created=after - before))

    logger.info(f"Missing task sweep checked={len(candidates)} fixed={len(fixes)}")
    return fixes


def preview_missing_activity_tasks(db: Session) -> List[MissingTaskFix]:
    """
    Read-only counterpart of the sweep: per activity, how many applicable
    templates have no task yet.
    """
    previews: List[MissingTaskFix] = []
    for activity in _sweep_candidates(db):
        template_ids = set(resolve_template_ids_for_category(db, activity.user_id, activity.category_id))
        if not template_ids:
            continue
        present = {
            row[0]
            for row in db.query(ActivityTask.task_template_id)
            .filter(ActivityTask.activity_id == activity.id, ActivityTask.task_template_id.isnot(None))
            .all()
        }
        missing = len(template_ids - present)
        if missing:
            previews.append(MissingTaskFix(activity_id=activity.id, tasks_created=missing))
    return previews
