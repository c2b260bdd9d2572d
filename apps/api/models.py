from sqlalchemy import Column, Integer, Boolean, CheckConstraint, Date, DateTime, ForeignKey, Text, Time, Uuid, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from core.database import Base
import uuid
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# activity_tasks.task_kind values
TASK_KIND_TEMPLATE = "template"
TASK_KIND_FREEFORM = "freeform"
TASK_KIND_FEEDBACK = "feedback"
TASK_KINDS = (TASK_KIND_TEMPLATE, TASK_KIND_FREEFORM, TASK_KIND_FEEDBACK)

# task_templates.source_folder of templates backing a task added on one activity only
ACTIVITY_LOCAL_TASK_SOURCE = "activity_local_task"


class ActivityCategory(Base):
    __tablename__ = "activity_categories"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=True, index=True)  # NULL = system category
    name = Column(Text, nullable=False)
    color = Column(Text, nullable=True)
    emoji = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)


class ActivitySeries(Base):
    """A recurrence definition; its generated activities share series_id."""
    __tablename__ = "activity_series"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    title = Column(Text, nullable=False)
    category_id = Column(Uuid, ForeignKey("activity_categories.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    activities = relationship("Activity", back_populates="series")


class Activity(Base):
    __tablename__ = "activities"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    # Set when a trainer schedules for a player; the player owns the reflection.
    player_id = Column(Uuid, nullable=True)
    title = Column(Text, nullable=False, default="")
    activity_date = Column(Date, nullable=True)
    activity_time = Column(Time, nullable=True)
    category_id = Column(Uuid, ForeignKey("activity_categories.id", ondelete="SET NULL"), nullable=True, index=True)
    series_id = Column(Uuid, ForeignKey("activity_series.id", ondelete="SET NULL"), nullable=True, index=True)
    # External activities never get template tasks here (see EventLocalMeta).
    is_external = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    # --- RELATIONSHIPS ---
    series = relationship("ActivitySeries", back_populates="activities")
    tasks = relationship(
        "ActivityTask",
        back_populates="activity",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ActivityTask.created_at",
    )


class TaskTemplate(Base):
    """
    Reusable checklist item bound to one or more categories.

    Every activity of the owning user whose category is linked gets one
    ActivityTask mirrored from this row. With after_training_enabled the
    activity also gets a synthetic feedback task and a TrainingReflection.
    """
    __tablename__ = "task_templates"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    reminder_minutes = Column(Integer, nullable=True)
    # Where the template came from; ACTIVITY_LOCAL_TASK_SOURCE templates are
    # never linked to a category and their tasks survive reconciliation.
    source_folder = Column(Text, nullable=True)

    # --- AFTER-TRAINING FEEDBACK ---
    # Every after_training_* column takes part in change detection.
    after_training_enabled = Column(Boolean, default=False, nullable=False)
    after_training_delay_minutes = Column(Integer, nullable=True)  # reminder of the feedback task
    after_training_feedback_enable_score = Column(Boolean, default=True, nullable=False)
    after_training_feedback_enable_note = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "after_training_delay_minutes IS NULL OR (after_training_delay_minutes >= 0 AND after_training_delay_minutes <= 600)",
            name="ck_task_templates_after_training_delay",
        ),
    )

    category_links = relationship(
        "TaskTemplateCategory",
        back_populates="template",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    subtasks = relationship(
        "TaskTemplateSubtask",
        back_populates="template",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TaskTemplateSubtask.sort_order",
    )


class TaskTemplateCategory(Base):
    __tablename__ = "task_template_categories"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    task_template_id = Column(Uuid, ForeignKey("task_templates.id", ondelete="CASCADE"), nullable=False)
    category_id = Column(Uuid, ForeignKey("activity_categories.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("task_template_id", "category_id", name="uq_task_template_category"),
        Index("ix_task_template_categories_category_id", "category_id"),
    )

    template = relationship("TaskTemplate", back_populates="category_links")


class TaskTemplateSubtask(Base):
    __tablename__ = "task_template_subtasks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    task_template_id = Column(Uuid, ForeignKey("task_templates.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(Text, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    template = relationship("TaskTemplate", back_populates="subtasks")


class HiddenTaskTemplate(Base):
    """Per-user soft hide. A hidden template no longer applies to that user's activities."""
    __tablename__ = "hidden_task_templates"

    user_id = Column(Uuid, primary_key=True)
    task_template_id = Column(Uuid, ForeignKey("task_templates.id", ondelete="CASCADE"), primary_key=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)


class ActivityTask(Base):
    """
    One checklist item on one activity.

    task_kind:
    - 'template': mirrored from task_template_id (at most one per activity/template)
    - 'freeform': typed in by the user, never touched by reconciliation
    - 'feedback': synthetic after-training task for feedback_template_id; the
      description also carries the [auto-after-training:<id>] marker so rows
      written before feedback_template_id existed are still recognized
    """
    __tablename__ = "activity_tasks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    activity_id = Column(Uuid, ForeignKey("activities.id", ondelete="CASCADE"), nullable=False)
    task_template_id = Column(Uuid, ForeignKey("task_templates.id", ondelete="CASCADE"), nullable=True)
    feedback_template_id = Column(Uuid, ForeignKey("task_templates.id", ondelete="CASCADE"), nullable=True)
    task_kind = Column(Text, default=TASK_KIND_FREEFORM, nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    completed = Column(Boolean, default=False, nullable=False)  # owned by the user
    reminder_minutes = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("activity_id", "task_template_id", name="uq_activity_task_template"),
        Index("ix_activity_tasks_activity_id", "activity_id"),
        Index("ix_activity_tasks_task_template_id", "task_template_id"),
        Index("ix_activity_tasks_feedback_template_id", "feedback_template_id"),
        CheckConstraint(
            "task_kind IN ('template', 'freeform', 'feedback')",
            name="ck_activity_tasks_task_kind",
        ),
    )

    activity = relationship("Activity", back_populates="tasks")
    subtasks = relationship(
        "ActivityTaskSubtask",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ActivityTaskSubtask.sort_order",
    )


class ActivityTaskSubtask(Base):
    __tablename__ = "activity_task_subtasks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    activity_task_id = Column(Uuid, ForeignKey("activity_tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(Text, nullable=False)
    completed = Column(Boolean, default=False, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    task = relationship("ActivityTask", back_populates="subtasks")


class ExternalEvent(Base):
    """Calendar-imported event (ingestion lives outside this service)."""
    __tablename__ = "events_external"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider = Column(Text, nullable=False, default="ics")
    provider_event_uid = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    start_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=True)
    deleted = Column(Boolean, default=False, nullable=False)  # soft delete
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)


class EventLocalMeta(Base):
    """A user's local view of an external event: carries the category."""
    __tablename__ = "events_local_meta"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    external_event_id = Column(Uuid, ForeignKey("events_external.id", ondelete="CASCADE"), nullable=True, index=True)
    user_id = Column(Uuid, nullable=False, index=True)
    category_id = Column(Uuid, ForeignKey("activity_categories.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    external_event = relationship("ExternalEvent")


class ExternalEventTask(Base):
    __tablename__ = "external_event_tasks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    local_meta_id = Column(Uuid, ForeignKey("events_local_meta.id", ondelete="CASCADE"), nullable=False)
    task_template_id = Column(Uuid, ForeignKey("task_templates.id", ondelete="CASCADE"), nullable=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    completed = Column(Boolean, default=False, nullable=False)
    reminder_minutes = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("local_meta_id", "task_template_id", name="uq_external_event_task_template"),
        Index("ix_external_event_tasks_local_meta_id", "local_meta_id"),
        Index("ix_external_event_tasks_task_template_id", "task_template_id"),
    )


class TrainingReflection(Base):
    """
    Post-training self rating, one per activity.

    Created empty the first time an after-training template applies to the
    activity; rating and note are filled in by the player later and never
    overwritten by the sync engine.
    """
    __tablename__ = "training_reflections"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    activity_id = Column(Uuid, ForeignKey("activities.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid, nullable=False)
    category_id = Column(Uuid, ForeignKey("activity_categories.id", ondelete="CASCADE"), nullable=False)
    rating = Column(Integer, nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("activity_id", name="uq_training_reflection_activity"),
        Index("ix_training_reflections_user_category", "user_id", "category_id"),
        CheckConstraint("rating IS NULL OR (rating BETWEEN 1 AND 10)", name="ck_training_reflection_rating"),
    )


class TaskTemplateSelfFeedback(Base):
    """Per-template self rating history (one row per user/template/activity)."""
    __tablename__ = "task_template_self_feedback"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False)
    task_template_id = Column(Uuid, ForeignKey("task_templates.id", ondelete="CASCADE"), nullable=False)
    activity_id = Column(Uuid, ForeignKey("activities.id", ondelete="CASCADE"), nullable=False)
    rating = Column(Integer, nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "task_template_id", "activity_id", name="uq_task_template_self_feedback_owner"),
        Index("ix_task_template_self_feedback_user_template", "user_id", "task_template_id"),
        CheckConstraint("rating IS NULL OR (rating BETWEEN 1 AND 10)", name="ck_task_template_self_feedback_rating"),
    )
