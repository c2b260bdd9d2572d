"""initial task sync schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

Categories, series and activities; task templates with their category
links, subtasks and per-user hides; activity tasks (task_kind and
feedback_template_id included) and subtasks; external events with local
meta and tasks; training reflections and template self feedback.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def _updated_at() -> sa.Column:
    return sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    op.create_table(
        'activity_categories',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=True),  # NULL = system category
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('color', sa.Text(), nullable=True),
        sa.Column('emoji', sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index('ix_activity_categories_user_id', 'activity_categories', ['user_id'])

    op.create_table(
        'activity_series',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('category_id', sa.Uuid(), sa.ForeignKey('activity_categories.id', ondelete='SET NULL'), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index('ix_activity_series_user_id', 'activity_series', ['user_id'])

    op.create_table(
        'activities',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('player_id', sa.Uuid(), nullable=True),
        sa.Column('title', sa.Text(), server_default='', nullable=False),
        sa.Column('activity_date', sa.Date(), nullable=True),
        sa.Column('activity_time', sa.Time(), nullable=True),
        sa.Column('category_id', sa.Uuid(), sa.ForeignKey('activity_categories.id', ondelete='SET NULL'), nullable=True),
        sa.Column('series_id', sa.Uuid(), sa.ForeignKey('activity_series.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_external', sa.Boolean(), server_default=sa.false(), nullable=False),
        _created_at(),
        _updated_at(),
    )
    op.create_index('ix_activities_user_id', 'activities', ['user_id'])
    op.create_index('ix_activities_category_id', 'activities', ['category_id'])
    op.create_index('ix_activities_series_id', 'activities', ['series_id'])

    op.create_table(
        'task_templates',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('reminder_minutes', sa.Integer(), nullable=True),
        sa.Column('source_folder', sa.Text(), nullable=True),
        sa.Column('after_training_enabled', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('after_training_delay_minutes', sa.Integer(), nullable=True),
        sa.Column('after_training_feedback_enable_score', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('after_training_feedback_enable_note', sa.Boolean(), server_default=sa.true(), nullable=False),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint(
            'after_training_delay_minutes IS NULL OR (after_training_delay_minutes >= 0 AND after_training_delay_minutes <= 600)',
            name='ck_task_templates_after_training_delay',
        ),
    )
    op.create_index('ix_task_templates_user_id', 'task_templates', ['user_id'])

    op.create_table(
        'task_template_categories',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('task_template_id', sa.Uuid(), sa.ForeignKey('task_templates.id', ondelete='CASCADE'), nullable=False),
        sa.Column('category_id', sa.Uuid(), sa.ForeignKey('activity_categories.id', ondelete='CASCADE'), nullable=False),
        _created_at(),
        sa.UniqueConstraint('task_template_id', 'category_id', name='uq_task_template_category'),
    )
    op.create_index('ix_task_template_categories_category_id', 'task_template_categories', ['category_id'])

    op.create_table(
        'task_template_subtasks',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('task_template_id', sa.Uuid(), sa.ForeignKey('task_templates.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('sort_order', sa.Integer(), server_default='0', nullable=False),
        _created_at(),
    )
    op.create_index('ix_task_template_subtasks_task_template_id', 'task_template_subtasks', ['task_template_id'])

    op.create_table(
        'hidden_task_templates',
        sa.Column('user_id', sa.Uuid(), primary_key=True),
        sa.Column('task_template_id', sa.Uuid(), sa.ForeignKey('task_templates.id', ondelete='CASCADE'), primary_key=True),
        _created_at(),
    )

    op.create_table(
        'activity_tasks',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('activity_id', sa.Uuid(), sa.ForeignKey('activities.id', ondelete='CASCADE'), nullable=False),
        sa.Column('task_template_id', sa.Uuid(), sa.ForeignKey('task_templates.id', ondelete='CASCADE'), nullable=True),
        sa.Column('feedback_template_id', sa.Uuid(), sa.ForeignKey('task_templates.id', ondelete='CASCADE'), nullable=True),
        sa.Column('task_kind', sa.Text(), server_default='freeform', nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('completed', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('reminder_minutes', sa.Integer(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint('activity_id', 'task_template_id', name='uq_activity_task_template'),
        sa.CheckConstraint("task_kind IN ('template', 'freeform', 'feedback')", name='ck_activity_tasks_task_kind'),
    )
    op.create_index('ix_activity_tasks_activity_id', 'activity_tasks', ['activity_id'])
    op.create_index('ix_activity_tasks_task_template_id', 'activity_tasks', ['task_template_id'])
    op.create_index('ix_activity_tasks_feedback_template_id', 'activity_tasks', ['feedback_template_id'])

    op.create_table(
        'activity_task_subtasks',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('activity_task_id', sa.Uuid(), sa.ForeignKey('activity_tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('completed', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('sort_order', sa.Integer(), server_default='0', nullable=False),
        _created_at(),
    )
    op.create_index('ix_activity_task_subtasks_activity_task_id', 'activity_task_subtasks', ['activity_task_id'])

    op.create_table(
        'events_external',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('provider', sa.Text(), server_default='ics', nullable=False),
        sa.Column('provider_event_uid', sa.Text(), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=True),
        sa.Column('deleted', sa.Boolean(), server_default=sa.false(), nullable=False),
        _created_at(),
    )

    op.create_table(
        'events_local_meta',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('external_event_id', sa.Uuid(), sa.ForeignKey('events_external.id', ondelete='CASCADE'), nullable=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('category_id', sa.Uuid(), sa.ForeignKey('activity_categories.id', ondelete='SET NULL'), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index('ix_events_local_meta_external_event_id', 'events_local_meta', ['external_event_id'])
    op.create_index('ix_events_local_meta_user_id', 'events_local_meta', ['user_id'])
    op.create_index('ix_events_local_meta_category_id', 'events_local_meta', ['category_id'])

    op.create_table(
        'external_event_tasks',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('local_meta_id', sa.Uuid(), sa.ForeignKey('events_local_meta.id', ondelete='CASCADE'), nullable=False),
        sa.Column('task_template_id', sa.Uuid(), sa.ForeignKey('task_templates.id', ondelete='CASCADE'), nullable=True),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('completed', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('reminder_minutes', sa.Integer(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint('local_meta_id', 'task_template_id', name='uq_external_event_task_template'),
    )
    op.create_index('ix_external_event_tasks_local_meta_id', 'external_event_tasks', ['local_meta_id'])
    op.create_index('ix_external_event_tasks_task_template_id', 'external_event_tasks', ['task_template_id'])

    op.create_table(
        'training_reflections',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('activity_id', sa.Uuid(), sa.ForeignKey('activities.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('category_id', sa.Uuid(), sa.ForeignKey('activity_categories.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rating', sa.Integer(), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        _created_at(),
        sa.UniqueConstraint('activity_id', name='uq_training_reflection_activity'),
        sa.CheckConstraint('rating IS NULL OR (rating BETWEEN 1 AND 10)', name='ck_training_reflection_rating'),
    )
    op.create_index('ix_training_reflections_user_category', 'training_reflections', ['user_id', 'category_id'])

    op.create_table(
        'task_template_self_feedback',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('task_template_id', sa.Uuid(), sa.ForeignKey('task_templates.id', ondelete='CASCADE'), nullable=False),
        sa.Column('activity_id', sa.Uuid(), sa.ForeignKey('activities.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rating', sa.Integer(), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint('user_id', 'task_template_id', 'activity_id', name='uq_task_template_self_feedback_owner'),
        sa.CheckConstraint('rating IS NULL OR (rating BETWEEN 1 AND 10)', name='ck_task_template_self_feedback_rating'),
    )
    op.create_index(
        'ix_task_template_self_feedback_user_template',
        'task_template_self_feedback',
        ['user_id', 'task_template_id'],
    )


def downgrade() -> None:
    op.drop_index('ix_task_template_self_feedback_user_template', table_name='task_template_self_feedback')
    op.drop_table('task_template_self_feedback')
    op.drop_index('ix_training_reflections_user_category', table_name='training_reflections')
    op.drop_table('training_reflections')
    op.drop_index('ix_external_event_tasks_task_template_id', table_name='external_event_tasks')
    op.drop_index('ix_external_event_tasks_local_meta_id', table_name='external_event_tasks')
    op.drop_table('external_event_tasks')
    op.drop_index('ix_events_local_meta_category_id', table_name='events_local_meta')
    op.drop_index('ix_events_local_meta_user_id', table_name='events_local_meta')
    op.drop_index('ix_events_local_meta_external_event_id', table_name='events_local_meta')
    op.drop_table('events_local_meta')
    op.drop_table('events_external')
    op.drop_index('ix_activity_task_subtasks_activity_task_id', table_name='activity_task_subtasks')
    op.drop_table('activity_task_subtasks')
    op.drop_index('ix_activity_tasks_feedback_template_id', table_name='activity_tasks')
    op.drop_index('ix_activity_tasks_task_template_id', table_name='activity_tasks')
    op.drop_index('ix_activity_tasks_activity_id', table_name='activity_tasks')
    op.drop_table('activity_tasks')
    op.drop_table('hidden_task_templates')
    op.drop_index('ix_task_template_subtasks_task_template_id', table_name='task_template_subtasks')
    op.drop_table('task_template_subtasks')
    op.drop_index('ix_task_template_categories_category_id', table_name='task_template_categories')
    op.drop_table('task_template_categories')
    op.drop_index('ix_task_templates_user_id', table_name='task_templates')
    op.drop_table('task_templates')
    op.drop_index('ix_activities_series_id', table_name='activities')
    op.drop_index('ix_activities_category_id', table_name='activities')
    op.drop_index('ix_activities_user_id', table_name='activities')
    op.drop_table('activities')
    op.drop_index('ix_activity_series_user_id', table_name='activity_series')
    op.drop_table('activity_series')
    op.drop_index('ix_activity_categories_user_id', table_name='activity_categories')
    op.drop_table('activity_categories')
