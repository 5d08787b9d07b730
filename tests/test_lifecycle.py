"""Tests for the insight status state machine."""

import pytest

from engines.lifecycle import InsightLifecycle, InvalidTransitionError, can_transition
from schemas import Insight


def _insight(stores, **kwargs):
    data = {
        "insight_type": "check_in",
        "rule_name": "needs-support",
        "student_ids": ["s1"],
        "assignment_id": "a1",
        "summary": "Check in with s1",
        "signals": {"score": 25},
    }
    data.update(kwargs)
    return stores.insights.save(Insight(**data))


@pytest.fixture
def lifecycle(stores):
    return InsightLifecycle(stores.insights, stores.outcomes)


def test_transition_table():
    assert can_transition("active", "pending")
    assert can_transition("pending", "resolved")
    assert not can_transition("resolved", "pending")
    assert not can_transition("dismissed", "reviewed")
    assert can_transition("dismissed", "active")


def test_mark_reviewed_records_outcome(stores, lifecycle, now):
    insight = _insight(stores)
    updated = lifecycle.mark_reviewed(insight.id, "teacher-1", now=now)

    assert updated.status == "reviewed"
    assert updated.reviewed_by == "teacher-1"
    assert updated.reviewed_at == now
    outcomes = stores.outcomes.get_for_insight(insight.id)
    assert [o.action_type for o in outcomes] == ["mark_reviewed"]
    assert updated.outcome_id == outcomes[0].id


def test_dismiss_then_dismiss_again_is_rejected(stores, lifecycle, now):
    insight = _insight(stores)
    lifecycle.dismiss(insight.id, "teacher-1", now=now)
    with pytest.raises(InvalidTransitionError):
        lifecycle.dismiss(insight.id, "teacher-1", now=now)


def test_missing_insight_returns_none(lifecycle):
    assert lifecycle.mark_reviewed("missing", "teacher-1") is None
    assert lifecycle.reactivate("missing") is None


def test_reactivate_clears_action_state(stores, lifecycle, now):
    insight = _insight(stores)
    lifecycle.mark_resolved(insight.id, "outcome-1", "follow_up_needed", now=now)
    reactivated = lifecycle.reactivate(insight.id)

    assert reactivated.status == "active"
    assert reactivated.reviewed_at is None
    assert reactivated.resolved_at is None
    assert reactivated.outcome_id is None
    assert reactivated.resolution_status is None
    assert reactivated.submitted_actions == []


def test_feedback_allowed_in_any_status(stores, lifecycle, now):
    insight = _insight(stores)
    lifecycle.dismiss(insight.id, "teacher-1", now=now)
    updated = lifecycle.add_feedback(insight.id, "not-helpful", "already handled")
    assert updated.feedback == "not-helpful"
    assert updated.feedback_note == "already handled"
    with pytest.raises(ValueError):
        lifecycle.add_feedback(insight.id, "meh")


def test_review_cascade_is_scoped_to_assignment(stores, lifecycle, now):
    target = _insight(stores)
    other_assignment = _insight(stores, assignment_id="a2")
    other_student = _insight(stores, student_ids=["s2"])
    group = _insight(stores, rule_name="group-support", student_ids=["s1", "s3"])

    resolved = lifecycle.resolve_for_review("s1", "a1", now=now)

    assert {i.id for i in resolved} == {target.id, group.id}
    assert stores.insights.load(target.id).resolution_status == "completed"
    assert stores.insights.load(other_assignment.id).status == "active"
    assert stores.insights.load(other_student.id).status == "active"


def test_pending_resolves_when_student_retries(stores, lifecycle, now):
    insight = _insight(stores)
    lifecycle.mark_pending(insight.id, "outcome-1", now=now)
    assert stores.insights.has_pending_for("s1", "a1")

    resolved = lifecycle.resolve_pending_for_retry("s1", "a1", now=now)
    assert [i.id for i in resolved] == [insight.id]
    assert stores.insights.load(insight.id).status == "resolved"
