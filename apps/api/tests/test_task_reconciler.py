"""
Tests for the task reconciler (activity and external event task sync).
"""
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from core.database import unit_of_work
from core.exceptions import ReconciliationError
from models import (
    ACTIVITY_LOCAL_TASK_SOURCE,
    ActivityTask,
    TASK_KIND_FEEDBACK,
    TASK_KIND_FREEFORM,
    TASK_KIND_TEMPLATE,
    TaskTemplateCategory,
    TrainingReflection,
)
from services import task_reconciler
from services.after_training_markers import decode_marker_uuid, encode_marker
from services.task_reconciler import reconcile_activity_tasks, reconcile_external_event_tasks
from task_sync_helpers import external_tasks_of, subtasks_of, tasks_of


def _snapshot(db, activity_id):
    rows = []
    for task in tasks_of(db, activity_id):
        rows.append((
            task.id,
            task.task_template_id,
            task.feedback_template_id,
            task.title,
            task.description,
            task.completed,
            task.reminder_minutes,
            [(s.id, s.title, s.completed, s.sort_order) for s in subtasks_of(db, task.id)],
        ))
    return sorted(rows, key=lambda row: str(row[0]))


@pytest.fixture
def training(factory, user_id):
    """Category with one plain template (two subtasks) and one after-training template."""
    category = factory.category(user_id)
    plain = factory.template(
        user_id,
        "Warm-up",
        categories=[category],
        subtasks=["Jog", "Stretch"],
        description="Ten minutes easy",
        reminder_minutes=30,
    )
    after = factory.template(
        user_id,
        "Finishing drill",
        categories=[category],
        after_training_enabled=True,
        after_training_delay_minutes=45,
    )
    return category, plain, after


class TestNewActivity:
    def test_two_templates_give_two_tasks_one_feedback_task_one_reflection(self, db_session, factory, user_id, training):
        category, plain, after = training
        activity = factory.activity(user_id, category=category)

        result = reconcile_activity_tasks(db_session, activity.id)

        tasks = tasks_of(db_session, activity.id)
        template_tasks = [t for t in tasks if t.task_template_id is not None]
        feedback_tasks = [t for t in tasks if t.task_kind == TASK_KIND_FEEDBACK]
        assert len(tasks) == 3
        assert {t.task_template_id for t in template_tasks} == {plain.id, after.id}
        assert len(feedback_tasks) == 1
        assert db_session.query(TrainingReflection).filter(TrainingReflection.activity_id == activity.id).count() == 1
        assert result.tasks_created == 2
        assert result.feedback_upserted == 1
        assert result.reflections_created == 1

    def test_template_task_mirrors_template(self, db_session, factory, user_id, training):
        category, plain, _ = training
        activity = factory.activity(user_id, category=category)

        reconcile_activity_tasks(db_session, activity.id)

        task = next(t for t in tasks_of(db_session, activity.id) if t.task_template_id == plain.id)
        assert task.title == "Warm-up"
        assert task.description == "Ten minutes easy"
        assert task.reminder_minutes == 30
        assert task.completed is False
        assert task.task_kind == TASK_KIND_TEMPLATE
        assert [s.title for s in subtasks_of(db_session, task.id)] == ["Jog", "Stretch"]

    def test_feedback_task_shape(self, db_session, factory, user_id, training):
        category, _, after = training
        activity = factory.activity(user_id, category=category)

        reconcile_activity_tasks(db_session, activity.id)

        feedback = next(t for t in tasks_of(db_session, activity.id) if t.task_kind == TASK_KIND_FEEDBACK)
        assert feedback.title == "Feedback on Finishing drill"
        assert feedback.task_template_id is None
        assert feedback.feedback_template_id == after.id
        assert encode_marker(after.id) in feedback.description
        assert decode_marker_uuid(feedback.description) == after.id
        assert feedback.reminder_minutes == 45
        assert subtasks_of(db_session, feedback.id) == []

    def test_reflection_belongs_to_player_when_set(self, db_session, factory, user_id, training):
        category, _, _ = training
        player_id = uuid4()
        activity = factory.activity(user_id, category=category, player_id=player_id)

        reconcile_activity_tasks(db_session, activity.id)

        reflection = db_session.query(TrainingReflection).filter(TrainingReflection.activity_id == activity.id).one()
        assert reflection.user_id == player_id
        assert reflection.category_id == category.id
        assert reflection.rating is None
        assert reflection.note is None


class TestIdempotence:
    def test_second_reconcile_changes_nothing(self, db_session, factory, user_id, training):
        category, _, _ = training
        activity = factory.activity(user_id, category=category)

        reconcile_activity_tasks(db_session, activity.id)
        first = _snapshot(db_session, activity.id)
        reconcile_activity_tasks(db_session, activity.id)
        second = _snapshot(db_session, activity.id)

        assert first == second

    def test_existing_reflection_is_never_overwritten(self, db_session, factory, user_id, training):
        category, _, _ = training
        activity = factory.activity(user_id, category=category)
        reconcile_activity_tasks(db_session, activity.id)

        reflection = db_session.query(TrainingReflection).filter(TrainingReflection.activity_id == activity.id).one()
        reflection.rating = 8
        reflection.note = "Felt sharp"
        db_session.flush()

        result = reconcile_activity_tasks(db_session, activity.id)

        db_session.expire_all()
        reflection = db_session.query(TrainingReflection).filter(TrainingReflection.activity_id == activity.id).one()
        assert (reflection.rating, reflection.note) == (8, "Felt sharp")
        assert result.reflections_created == 0


class TestCompletionPreservation:
    def test_description_edit_keeps_completed(self, db_session, factory, user_id, training):
        category, plain, _ = training
        activity = factory.activity(user_id, category=category)
        reconcile_activity_tasks(db_session, activity.id)

        task = next(t for t in tasks_of(db_session, activity.id) if t.task_template_id == plain.id)
        task.completed = True
        db_session.flush()

        plain.description = "Fifteen minutes easy"
        db_session.flush()
        reconcile_activity_tasks(db_session, activity.id)

        task = next(t for t in tasks_of(db_session, activity.id) if t.task_template_id == plain.id)
        assert task.description == "Fifteen minutes easy"
        assert task.completed is True

    def test_feedback_task_keeps_completed_and_id(self, db_session, factory, user_id, training):
        category, _, after = training
        activity = factory.activity(user_id, category=category)
        reconcile_activity_tasks(db_session, activity.id)

        feedback = next(t for t in tasks_of(db_session, activity.id) if t.task_kind == TASK_KIND_FEEDBACK)
        feedback.completed = True
        feedback_id = feedback.id
        db_session.flush()

        after.title = "Finishing drill v2"
        db_session.flush()
        reconcile_activity_tasks(db_session, activity.id)

        feedback = next(t for t in tasks_of(db_session, activity.id) if t.task_kind == TASK_KIND_FEEDBACK)
        assert feedback.id == feedback_id
        assert feedback.completed is True
        assert feedback.title == "Feedback on Finishing drill v2"


class TestOrphanRemoval:
    def test_unlinked_template_task_and_subtasks_removed(self, db_session, factory, user_id, training):
        category, plain, _ = training
        activity = factory.activity(user_id, category=category)
        reconcile_activity_tasks(db_session, activity.id)
        orphan = next(t for t in tasks_of(db_session, activity.id) if t.task_template_id == plain.id)
        orphan_id = orphan.id

        db_session.query(TaskTemplateCategory).filter(
            TaskTemplateCategory.task_template_id == plain.id
        ).delete(synchronize_session="fetch")
        db_session.flush()
        result = reconcile_activity_tasks(db_session, activity.id)

        assert all(t.task_template_id != plain.id for t in tasks_of(db_session, activity.id))
        assert db_session.query(ActivityTask).filter(ActivityTask.id == orphan_id).first() is None
        assert subtasks_of(db_session, orphan_id) == []
        assert result.orphans_removed == 1

    def test_disabling_after_training_removes_feedback_task(self, db_session, factory, user_id, training):
        category, _, after = training
        activity = factory.activity(user_id, category=category)
        reconcile_activity_tasks(db_session, activity.id)

        after.after_training_enabled = False
        db_session.flush()
        result = reconcile_activity_tasks(db_session, activity.id)

        tasks = tasks_of(db_session, activity.id)
        assert [t for t in tasks if t.task_kind == TASK_KIND_FEEDBACK] == []
        assert any(t.task_template_id == after.id for t in tasks)
        assert result.feedback_removed == 1

    def test_feedback_task_with_malformed_marker_is_removed(self, db_session, factory, user_id, training):
        category, _, _ = training
        activity = factory.activity(user_id, category=category)
        broken = factory.freeform_task(
            activity,
            title="Feedback on something",
            description="[auto-after-training:not-a-uuid]",
            task_kind=TASK_KIND_FEEDBACK,
        )
        broken_id = broken.id

        reconcile_activity_tasks(db_session, activity.id)

        assert all(t.id != broken_id for t in tasks_of(db_session, activity.id))


class TestCategorySwap:
    def test_swap_replaces_template_tasks_and_keeps_freeform(self, db_session, factory, user_id):
        c1 = factory.category(user_id, name="Practice")
        c2 = factory.category(user_id, name="Match")
        t1 = factory.template(user_id, "Cones", categories=[c1])
        t2 = factory.template(user_id, "Kit check", categories=[c2])
        activity = factory.activity(user_id, category=c1)
        freeform = factory.freeform_task(activity)
        reconcile_activity_tasks(db_session, activity.id)

        activity.category_id = c2.id
        db_session.flush()
        reconcile_activity_tasks(db_session, activity.id)

        tasks = tasks_of(db_session, activity.id)
        template_ids = {t.task_template_id for t in tasks if t.task_template_id is not None}
        assert template_ids == {t2.id}
        assert t1.id not in template_ids
        kept = [t for t in tasks if t.id == freeform.id]
        assert len(kept) == 1
        assert kept[0].task_kind == TASK_KIND_FREEFORM


class TestLegacyFeedbackRows:
    def test_marker_only_row_is_adopted_in_place(self, db_session, factory, user_id, training):
        category, _, after = training
        activity = factory.activity(user_id, category=category)
        legacy = factory.freeform_task(
            activity,
            title="Feedback på Finishing drill",
            description=f"Old text {encode_marker(after.id)}",
            completed=True,
        )
        legacy_id = legacy.id

        reconcile_activity_tasks(db_session, activity.id)

        feedback = [t for t in tasks_of(db_session, activity.id) if t.task_kind == TASK_KIND_FEEDBACK]
        assert len(feedback) == 1
        assert feedback[0].id == legacy_id
        assert feedback[0].completed is True
        assert feedback[0].feedback_template_id == after.id
        assert feedback[0].title == "Feedback on Finishing drill"


class TestSkips:
    def test_activity_without_category_is_a_no_op(self, db_session, factory, user_id, training):
        activity = factory.activity(user_id, category=None)
        factory.freeform_task(activity)

        result = reconcile_activity_tasks(db_session, activity.id)

        assert result.skipped is True
        assert len(tasks_of(db_session, activity.id)) == 1

    def test_missing_activity_is_a_no_op(self, db_session):
        assert reconcile_activity_tasks(db_session, uuid4()).skipped is True

    def test_external_activity_is_skipped(self, db_session, factory, user_id, training):
        category, _, _ = training
        activity = factory.activity(user_id, category=category, is_external=True)

        result = reconcile_activity_tasks(db_session, activity.id)

        assert result.skipped is True
        assert tasks_of(db_session, activity.id) == []


def test_constraint_violation_aborts_the_unit_of_work(db_session, factory, user_id, training, monkeypatch):
    category, _, _ = training
    activity = factory.activity(user_id, category=category)
    db_session.commit()

    def fail(*args, **kwargs):
        raise IntegrityError("INSERT INTO activity_task_subtasks", {}, Exception("duplicate key"))

    monkeypatch.setattr(task_reconciler, "replace_subtasks", fail)

    with pytest.raises(ReconciliationError) as exc_info:
        with unit_of_work(db_session):
            reconcile_activity_tasks(db_session, activity.id)

    assert exc_info.value.target == "activity"
    assert exc_info.value.target_id == activity.id
    assert isinstance(exc_info.value.cause, IntegrityError)
    assert tasks_of(db_session, activity.id) == []


class TestExternalEvents:
    def test_creates_template_tasks_without_feedback(self, db_session, factory, user_id, training):
        category, plain, after = training
        _, meta = factory.external_event(user_id, category=category)

        result = reconcile_external_event_tasks(db_session, meta.id)

        tasks = external_tasks_of(db_session, meta.id)
        assert {t.task_template_id for t in tasks} == {plain.id, after.id}
        assert result.tasks_created == 2
        assert db_session.query(TrainingReflection).count() == 0

    def test_reconcile_keeps_completed(self, db_session, factory, user_id, training):
        category, plain, _ = training
        _, meta = factory.external_event(user_id, category=category)
        reconcile_external_event_tasks(db_session, meta.id)
        task = next(t for t in external_tasks_of(db_session, meta.id) if t.task_template_id == plain.id)
        task.completed = True
        db_session.flush()

        reconcile_external_event_tasks(db_session, meta.id)

        task = next(t for t in external_tasks_of(db_session, meta.id) if t.task_template_id == plain.id)
        assert task.completed is True

    def test_category_change_is_delete_then_recreate(self, db_session, factory, user_id, training):
        category, plain, _ = training
        other = factory.category(user_id, name="Match")
        kit = factory.template(user_id, "Kit check", categories=[other])
        _, meta = factory.external_event(user_id, category=category)
        reconcile_external_event_tasks(db_session, meta.id)

        meta.category_id = other.id
        db_session.flush()
        result = reconcile_external_event_tasks(db_session, meta.id, reset_template_tasks=True)

        assert [t.task_template_id for t in external_tasks_of(db_session, meta.id)] == [kit.id]
        assert result.orphans_removed == 2

    def test_without_category_nothing_is_created(self, db_session, factory, user_id, training):
        _, meta = factory.external_event(user_id, category=None)

        result = reconcile_external_event_tasks(db_session, meta.id)

        assert result.skipped is True
        assert external_tasks_of(db_session, meta.id) == []

    def test_soft_deleted_event_is_skipped(self, db_session, factory, user_id, training):
        category, _, _ = training
        _, meta = factory.external_event(user_id, category=category, deleted=True)

        result = reconcile_external_event_tasks(db_session, meta.id)

        assert result.skipped is True
        assert external_tasks_of(db_session, meta.id) == []


class TestActivityLocalTasks:
    @pytest.fixture
    def local_task(self, factory, user_id):
        local = factory.template(user_id, "Extra sprints", source_folder=ACTIVITY_LOCAL_TASK_SOURCE)

        def add(activity):
            return factory.freeform_task(
                activity,
                title="Extra sprints",
                task_template_id=local.id,
                task_kind=TASK_KIND_TEMPLATE,
                completed=True,
            )

        return local, add

    def test_survives_reconcile(self, db_session, factory, user_id, training, local_task):
        category, _, _ = training
        _, add = local_task
        activity = factory.activity(user_id, category=category)
        task_id = add(activity).id

        result = reconcile_activity_tasks(db_session, activity.id)

        tasks = {t.id: t for t in tasks_of(db_session, activity.id)}
        assert task_id in tasks
        assert tasks[task_id].completed is True
        assert result.orphans_removed == 0

    def test_survives_category_swap(self, db_session, factory, user_id, training, local_task):
        category, _, _ = training
        local, add = local_task
        other = factory.category(user_id, name="Match")
        kit = factory.template(user_id, "Kit check", categories=[other])
        activity = factory.activity(user_id, category=category)
        reconcile_activity_tasks(db_session, activity.id)
        task_id = add(activity).id

        activity.category_id = other.id
        db_session.flush()
        reconcile_activity_tasks(db_session, activity.id)

        tasks = tasks_of(db_session, activity.id)
        assert {t.task_template_id for t in tasks} == {local.id, kit.id}
        assert task_id in {t.id for t in tasks}

    def test_unlinked_regular_template_is_still_an_orphan(self, db_session, factory, user_id, training):
        category, _, _ = training
        stray = factory.template(user_id, "Stray")
        activity = factory.activity(user_id, category=category)
        factory.freeform_task(activity, title="Stray", task_template_id=stray.id, task_kind=TASK_KIND_TEMPLATE)

        result = reconcile_activity_tasks(db_session, activity.id)

        assert stray.id not in {t.task_template_id for t in tasks_of(db_session, activity.id)}
        assert result.orphans_removed == 1
