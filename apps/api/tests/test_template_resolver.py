"""
Tests for template resolution.
"""
from uuid import uuid4

from models import HiddenTaskTemplate
from services.template_resolver import (
    resolve_template_ids_for_category,
    resolve_templates_for_category,
    template_category_ids,
)


def test_returns_templates_linked_to_category(db_session, factory, user_id):
    category = factory.category(user_id)
    other = factory.category(user_id, name="Match")
    t1 = factory.template(user_id, "Warm-up", categories=[category])
    t2 = factory.template(user_id, "Stretch", categories=[category, other])
    factory.template(user_id, "Match prep", categories=[other])

    resolved = resolve_templates_for_category(db_session, user_id, category.id)

    assert {t.id for t in resolved} == {t1.id, t2.id}
    assert len(resolved) == 2


def test_template_linked_twice_is_returned_once(db_session, factory, user_id):
    category = factory.category(user_id)
    other = factory.category(user_id, name="Match")
    template = factory.template(user_id, categories=[category, other])

    assert resolve_template_ids_for_category(db_session, user_id, category.id) == [template.id]


def test_other_users_templates_do_not_apply(db_session, factory, user_id):
    category = factory.category(None, name="System category")
    factory.template(uuid4(), "Someone else's", categories=[category])

    assert resolve_templates_for_category(db_session, user_id, category.id) == []


def test_hidden_templates_are_excluded(db_session, factory, user_id):
    category = factory.category(user_id)
    visible = factory.template(user_id, "Visible", categories=[category])
    hidden = factory.template(user_id, "Hidden", categories=[category])
    db_session.add(HiddenTaskTemplate(user_id=user_id, task_template_id=hidden.id))
    db_session.flush()

    assert resolve_template_ids_for_category(db_session, user_id, category.id) == [visible.id]


def test_missing_user_or_category_resolves_to_nothing(db_session, factory, user_id):
    category = factory.category(user_id)
    factory.template(user_id, categories=[category])

    assert resolve_templates_for_category(db_session, None, category.id) == []
    assert resolve_templates_for_category(db_session, user_id, None) == []


def test_template_category_ids(db_session, factory, user_id):
    c1 = factory.category(user_id)
    c2 = factory.category(user_id, name="Match")
    template = factory.template(user_id, categories=[c1, c2])

    assert set(template_category_ids(db_session, template.id)) == {c1.id, c2.id}
