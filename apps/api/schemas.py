from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from uuid import UUID
from typing import Optional, List


class TaskSyncModel(BaseModel):
    """Report models serialize with camelCase keys (seriesCount, directActivityUpdates, ...)."""
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class ReconcileResultResponse(TaskSyncModel):
    target_id: Optional[UUID] = None
    skipped: bool = False
    tasks_created: int = 0
    tasks_updated: int = 0
    orphans_removed: int = 0
    feedback_removed: int = 0
    feedback_upserted: int = 0
    reflections_created: int = 0
    template_ids: List[UUID] = []


class PropagationReportResponse(TaskSyncModel):
    template_id: Optional[UUID] = None
    dry_run: bool = False
    series_count: int = 0
    direct_activity_updates: int = 0
    series_activity_updates: int = 0
    total_activity_updates: int = 0
    external_event_updates: int = 0


class CleanupResultResponse(TaskSyncModel):
    template_id: Optional[UUID] = None
    template_tasks_removed: int = 0
    feedback_tasks_removed: int = 0
    external_tasks_removed: int = 0
    self_feedback_removed: int = 0
    legacy_tasks_removed: int = 0
    title_collision: bool = False


class MissingTaskFixResponse(TaskSyncModel):
    activity_id: UUID
    tasks_created: int


class FixMissingResponse(TaskSyncModel):
    dry_run: bool = False
    activities_fixed: int = 0
    fixes: List[MissingTaskFixResponse] = []


class TemplateCleanupRequest(TaskSyncModel):
    # Required once the template row is gone.
    user_id: Optional[UUID] = None
    # Only set for a hard delete; enables the legacy title match.
    template_title: Optional[str] = None
