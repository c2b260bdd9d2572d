"""
Task Sync Maintenance API Router

Manual triggers for the task sync engine: preview or run a template
propagation, re-sync a single activity or external event, clean up after a
template, and run the missing-task sweep.

Guarded by a shared token (X-Admin-Token == ADMIN_API_TOKEN). With no token
configured every endpoint answers 403.
"""

import logging
import secrets
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Header, Query
from sqlalchemy.orm import Session

from core.config import settings
from core.database import get_db
from core.exceptions import ForbiddenError, NotFoundError
from core.logging import log_context
from models import EventLocalMeta, TaskTemplate
from schemas import (
    CleanupResultResponse,
    FixMissingResponse,
    MissingTaskFixResponse,
    PropagationReportResponse,
    ReconcileResultResponse,
    TemplateCleanupRequest,
)
from services.task_propagation import (
    fix_missing_activity_tasks_for_all_users,
    preview_missing_activity_tasks,
    propagate_template_change,
)
from services.task_reconciler import reconcile_activity_tasks, reconcile_external_event_tasks
from services.template_cleanup import cleanup_tasks_for_template
from services.template_resolver import template_category_ids

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin/task-sync", tags=["task-sync"])


def require_admin_token(x_admin_token: Optional[str] = Header(default=None)) -> None:
    expected = settings.ADMIN_API_TOKEN
    if not expected or not x_admin_token:
        raise ForbiddenError("Task sync maintenance is disabled or token missing")
    if not secrets.compare_digest(x_admin_token, expected):
        raise ForbiddenError("Invalid admin token")


@router.post(
    "/templates/{template_id}/propagate",
    response_model=PropagationReportResponse,
    dependencies=[Depends(require_admin_token)],
)
def propagate_template(
    template_id: UUID,
    dry_run: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    """Preview (dry_run) or apply a template change to every activity using it."""
    if db.query(TaskTemplate.id).filter(TaskTemplate.id == template_id).first() is None:
        raise NotFoundError("Task template", str(template_id))

    with log_context(template_id=template_id):
        report = propagate_template_change(db, template_id, dry_run=dry_run)
        logger.info(f"Admin propagation template={template_id} dry_run={dry_run}")
    return PropagationReportResponse.model_validate(report)


@router.post(
    "/activities/{activity_id}/reconcile",
    response_model=ReconcileResultResponse,
    dependencies=[Depends(require_admin_token)],
)
def reconcile_activity(activity_id: UUID, db: Session = Depends(get_db)):
    with log_context(activity_id=activity_id):
        result = reconcile_activity_tasks(db, activity_id)
    return ReconcileResultResponse.model_validate(result)


@router.post(
    "/external-events/{local_meta_id}/reconcile",
    response_model=ReconcileResultResponse,
    dependencies=[Depends(require_admin_token)],
)
def reconcile_external_event(
    local_meta_id: UUID,
    reset: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    if db.query(EventLocalMeta.id).filter(EventLocalMeta.id == local_meta_id).first() is None:
        raise NotFoundError("External event", str(local_meta_id))
    with log_context(local_meta_id=local_meta_id):
        result = reconcile_external_event_tasks(db, local_meta_id, reset_template_tasks=reset)
    return ReconcileResultResponse.model_validate(result)


@router.post(
    "/templates/{template_id}/cleanup",
    response_model=CleanupResultResponse,
    dependencies=[Depends(require_admin_token)],
)
def cleanup_template(
    template_id: UUID,
    request: Optional[TemplateCleanupRequest] = Body(default=None),
    db: Session = Depends(get_db),
):
    """
    Remove everything generated from a template.

    The owner comes from the template row when it still exists, else from
    the request body.
    """
    request = request or TemplateCleanupRequest()
    template = db.query(TaskTemplate).filter(TaskTemplate.id == template_id).first()
    user_id = template.user_id if template is not None else request.user_id
    if user_id is None:
        raise NotFoundError("Task template", str(template_id))

    categories = template_category_ids(db, template_id) if template is not None else None
    with log_context(template_id=template_id):
        result = cleanup_tasks_for_template(
            db,
            user_id,
            template_id,
            template_title=request.template_title,
            category_ids=categories,
        )
    return CleanupResultResponse.model_validate(result)


@router.post(
    "/fix-missing",
    response_model=FixMissingResponse,
    dependencies=[Depends(require_admin_token)],
)
def fix_missing(dry_run: bool = Query(default=False), db: Session = Depends(get_db)):
    """Run (or preview) the missing-task sweep over every user."""
    if dry_run:
        fixes = preview_missing_activity_tasks(db)
    else:
        fixes = fix_missing_activity_tasks_for_all_users(db)
    return FixMissingResponse(
        dry_run=dry_run,
        activities_fixed=len(fixes),
        fixes=[MissingTaskFixResponse.model_validate(f) for f in fixes],
    )
