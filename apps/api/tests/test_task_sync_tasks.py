"""
Tests for the task sync Celery tasks (run eagerly, in-process).
"""
from services.task_reconciler import reconcile_activity_tasks
from tasks.task_sync_tasks import fix_missing_activity_tasks_task, propagate_template_change_task
from task_sync_helpers import tasks_of


def test_fix_missing_task_commits_and_reports(db_session, factory, user_id):
    category = factory.category(user_id)
    factory.template(user_id, categories=[category])
    activity = factory.activity(user_id, category=category)
    db_session.commit()

    result = fix_missing_activity_tasks_task()

    assert result["status"] == "success"
    assert result["activities_fixed"] == 1
    assert result["fixes"] == [{"activityId": str(activity.id), "tasksCreated": 1}]
    assert len(tasks_of(db_session, activity.id)) == 1


def test_propagate_task_dry_run(db_session, factory, user_id):
    category = factory.category(user_id)
    template = factory.template(user_id, categories=[category])
    series = factory.series(user_id, category=category)
    first = factory.activity(user_id, category=category, series=series)
    second = factory.activity(user_id, category=category, series=series)
    reconcile_activity_tasks(db_session, first.id)
    db_session.commit()

    result = propagate_template_change_task(str(template.id), dry_run=True)

    assert result["status"] == "success"
    assert result["totalActivityUpdates"] == 2
    assert result["dryRun"] is True
    assert tasks_of(db_session, second.id) == []
