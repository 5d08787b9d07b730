"""Test cases for the record stores."""

from datetime import timedelta

import pytest

from schemas import ActionOutcome, Insight, Session, StudentAssignment


def _insight(**kwargs):
    data = {
        "insight_type": "check_in",
        "rule_name": "needs-support",
        "student_ids": ["s1"],
        "assignment_id": "a1",
        "summary": "Check in",
    }
    data.update(kwargs)
    return Insight(**data)


def test_save_load_roundtrip(stores, now):
    insight = stores.insights.save(_insight(created_at=now, signals={"score": 25.0}))
    loaded = stores.insights.load(insight.id)
    assert loaded == insight
    assert stores.insights.load("missing") is None


def test_student_ids_are_deduplicated():
    assert _insight(student_ids=["s2", "s1", "s2"]).student_ids == ["s2", "s1"]


def test_active_ordering_and_limit(stores, now):
    low = _insight(priority=40, created_at=now)
    high = _insight(priority=90, created_at=now)
    tie_old = _insight(priority=70, created_at=now - timedelta(hours=1))
    tie_new = _insight(priority=70, created_at=now)
    done = _insight(priority=99, status="resolved")
    stores.insights.save_many([low, high, tie_new, tie_old, done])

    assert [i.id for i in stores.insights.get_active()] == [high.id, tie_old.id, tie_new.id, low.id]
    assert [i.id for i in stores.insights.get_active(2)] == [high.id, tie_old.id]


def test_queries_by_student_assignment_status(stores):
    a = stores.insights.save(_insight(student_ids=["s1", "s2"]))
    b = stores.insights.save(_insight(student_ids=["s3"], assignment_id="a2", status="pending"))
    assert [i.id for i in stores.insights.get_by_student("s2")] == [a.id]
    assert [i.id for i in stores.insights.get_by_assignment("a2")] == [b.id]
    assert [i.id for i in stores.insights.get_by_status("pending")] == [b.id]
    assert stores.insights.has_pending_for("s3", "a2")
    assert not stores.insights.has_pending_for("s1", "a1")


def test_prune_old_keeps_active_and_pending(stores, now):
    old = now - timedelta(days=40)
    stale_resolved = stores.insights.save(_insight(status="resolved", created_at=old, reviewed_at=old))
    stale_active = stores.insights.save(_insight(status="active", created_at=old))
    stale_pending = stores.insights.save(_insight(status="pending", created_at=old))
    fresh_dismissed = stores.insights.save(_insight(status="dismissed", created_at=old, reviewed_at=now))

    assert stores.insights.prune_old(30, now=now) == 1
    assert stores.insights.load(stale_resolved.id) is None
    for kept in (stale_active, stale_pending, fresh_dismissed):
        assert stores.insights.load(kept.id) is not None


def test_clear_active(stores):
    stores.insights.save(_insight())
    kept = stores.insights.save(_insight(status="dismissed"))
    assert stores.insights.clear_active() == 1
    assert [i.id for i in stores.insights.get_all()] == [kept.id]


def test_outcomes_are_append_only(stores):
    outcome = ActionOutcome(insight_id="i1", action_type="dismiss", acted_by="t", resolution_status="completed")
    stores.outcomes.save(outcome)
    with pytest.raises(ValueError):
        stores.outcomes.save(outcome)
    with pytest.raises(ValueError):
        stores.outcomes.update(outcome.id, lambda o: None)


def test_assignment_store_keys_by_pair(stores):
    stores.assignments.save(StudentAssignment(assignment_id="a1", student_id="s1"))
    assert stores.assignments.load_pair("a1", "s1").student_id == "s1"
    assert stores.assignments.load("a1:s1") is not None
    assert stores.assignments.load_pair("a1", "s2") is None


def test_latest_completed_session(stores, now):
    older = Session(student_id="s1", assignment_id="a1", score=40, completed_at=now - timedelta(days=2))
    newer = Session(student_id="s1", assignment_id="a1", score=60, completed_at=now)
    draft = Session(student_id="s1", assignment_id="a1", status="in_progress")
    stores.sessions.save_many([newer, older, draft])
    assert stores.sessions.latest_completed("a1", "s1").id == newer.id


def test_settings_store_roundtrip(stores):
    assert stores.settings.load("t1") is None
    stores.settings.save("t1", {"min_group_size": 3})
    assert stores.settings.load("t1") == {"min_group_size": 3}
    assert stores.settings.delete("t1")
    assert not stores.settings.delete("t1")
