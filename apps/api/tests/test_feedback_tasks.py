"""
Tests for after-training feedback task synthesis.
"""
from sqlalchemy.dialects import postgresql

from services.after_training_markers import encode_marker
from services.feedback_tasks import (
    feedback_task_description,
    feedback_task_title,
    upsert_feedback_task,
)
from services.task_rows import feedback_task_clause
from models import TASK_KIND_FEEDBACK
from task_sync_helpers import tasks_of


class TestCopy:
    def test_english_title(self):
        assert feedback_task_title("Sprints", locale="en") == "Feedback on Sprints"

    def test_danish_title(self):
        assert feedback_task_title("Sprints", locale="da") == "Feedback på Sprints"

    def test_blank_title_falls_back(self):
        assert feedback_task_title("   ", locale="en") == "Feedback on the task"
        assert feedback_task_title(None, locale="da") == "Feedback på opgaven"

    def test_unknown_locale_uses_english(self):
        assert feedback_task_title("Sprints", locale="xx") == "Feedback on Sprints"

    def test_description_ends_with_marker(self, user_id):
        description = feedback_task_description(user_id, locale="en")
        assert description == (
            "Share your feedback after training directly with your coach. " + encode_marker(user_id)
        )

    def test_danish_description(self, user_id):
        description = feedback_task_description(user_id, locale="da")
        assert description.startswith("Del din feedback efter træningen direkte til træneren.")


class TestUpsert:
    def test_three_upserts_leave_one_task_with_latest_title(self, db_session, factory, user_id):
        category = factory.category(user_id)
        template = factory.template(user_id, "Sprints", after_training_enabled=True)
        activity = factory.activity(user_id, category=category)

        for title in ("Sprints", "Hill sprints", "Hill sprints x6"):
            upsert_feedback_task(db_session, activity.id, template.id, title)

        tasks = tasks_of(db_session, activity.id)
        assert len(tasks) == 1
        assert tasks[0].title == "Feedback on Hill sprints x6"
        assert encode_marker(template.id) in tasks[0].description
        assert tasks[0].task_kind == TASK_KIND_FEEDBACK

    def test_duplicates_collapse_to_the_completed_one(self, db_session, factory, user_id):
        category = factory.category(user_id)
        template = factory.template(user_id, "Sprints", after_training_enabled=True)
        activity = factory.activity(user_id, category=category)
        marker_text = f"Old {encode_marker(template.id)}"
        factory.freeform_task(activity, title="Feedback on Sprints", description=marker_text)
        done = factory.freeform_task(activity, title="Feedback on Sprints", description=marker_text, completed=True)
        done_id = done.id

        kept = upsert_feedback_task(db_session, activity.id, template.id, "Sprints")

        tasks = tasks_of(db_session, activity.id)
        assert [t.id for t in tasks] == [done_id]
        assert kept.id == done_id
        assert tasks[0].completed is True

    def test_other_templates_feedback_is_untouched(self, db_session, factory, user_id):
        category = factory.category(user_id)
        first = factory.template(user_id, "Sprints", after_training_enabled=True)
        second = factory.template(user_id, "Passing", after_training_enabled=True)
        activity = factory.activity(user_id, category=category)

        upsert_feedback_task(db_session, activity.id, first.id, first.title)
        upsert_feedback_task(db_session, activity.id, second.id, second.title)

        titles = sorted(t.title for t in tasks_of(db_session, activity.id))
        assert titles == ["Feedback on Passing", "Feedback on Sprints"]

    def test_reminder_follows_after_training_delay(self, db_session, factory, user_id):
        category = factory.category(user_id)
        template = factory.template(
            user_id, "Sprints", after_training_enabled=True, after_training_delay_minutes=90
        )
        activity = factory.activity(user_id, category=category)

        task = upsert_feedback_task(db_session, activity.id, template.id, template.title)

        assert task.reminder_minutes == 90

    def test_missing_ids_are_a_no_op(self, db_session, user_id):
        assert upsert_feedback_task(db_session, None, user_id, "Sprints") is None

    def test_upper_case_legacy_marker_is_adopted(self, db_session, factory, user_id):
        category = factory.category(user_id)
        template = factory.template(user_id, "Sprints", after_training_enabled=True)
        activity = factory.activity(user_id, category=category)
        legacy = factory.freeform_task(
            activity,
            title="Feedback on Sprints",
            description=f"Old [auto-after-training:{str(template.id).upper()}]",
            completed=True,
        )
        legacy_id = legacy.id

        upsert_feedback_task(db_session, activity.id, template.id, "Sprints")

        tasks = tasks_of(db_session, activity.id)
        assert [t.id for t in tasks] == [legacy_id]
        assert tasks[0].feedback_template_id == template.id
        assert tasks[0].completed is True


def test_marker_lookup_ignores_case_on_postgresql(user_id):
    sql = str(feedback_task_clause(user_id).compile(dialect=postgresql.dialect()))
    assert "ILIKE" in sql
    assert " LIKE " not in sql.replace("ILIKE", "")
