"""End-to-end tests for insight generation through the service layer."""

from datetime import timedelta

from schemas import ClassRoster, Session


def _seed(service, stores, now, scores, hints=None, assignment_id="a1"):
    roster = ClassRoster(
        id="c1",
        name="7B",
        subject="Maths",
        student_ids=list(scores),
        student_names={sid: sid.upper() for sid in scores},
    )
    stores.classes.save(roster)
    service.synchronizer.assign(assignment_id, list(scores), "teacher-1", class_id="c1", title="Fractions",
                                now=now - timedelta(days=1))
    for student_id, score in scores.items():
        used = (hints or {}).get(student_id, 0.0)
        responses = [{"hint_used": i < round(used * 10)} for i in range(10)]
        service.synchronizer.record_completion(
            Session(
                student_id=student_id,
                assignment_id=assignment_id,
                assignment_title="Fractions",
                score=score,
                responses=responses,
                completed_at=now,
            ),
            now=now,
        )


def test_refresh_generates_and_is_idempotent(service, stores, now):
    _seed(service, stores, now, {"s1": 25, "s2": 85, "s3": 95}, hints={"s1": 0.7})

    first = service.refresh("teacher-1", now=now)
    rules = sorted(i.rule_name for i in first.detection.generated)
    assert rules == ["needs-support", "ready-for-challenge"]

    check_in = next(i for i in first.detection.generated if i.rule_name == "needs-support")
    assert check_in.priority == 95
    assert check_in.signals["student_name"] == "S1"

    second = service.refresh("teacher-1", now=now)
    assert second.detection.generated == []
    assert second.detection.skipped_duplicates == 2
    assert len(stores.insights.get_all()) == 2


def test_dismissed_insight_is_not_regenerated(service, stores, now):
    _seed(service, stores, now, {"s1": 25})
    [insight] = service.refresh("teacher-1", now=now).detection.generated
    service.lifecycle.dismiss(insight.id, "teacher-1", now=now)

    again = service.refresh("teacher-1", now=now + timedelta(days=1))
    assert again.detection.generated == []


def test_group_of_three_yields_single_insight(service, stores, now):
    _seed(service, stores, now, {"s1": 30, "s2": 28, "s3": 32})
    generated = service.refresh("teacher-1", now=now).detection.generated
    assert [i.rule_name for i in generated] == ["group-support"]
    assert sorted(generated[0].student_ids) == ["s1", "s2", "s3"]

    state = service.attention("teacher-1")
    assert [s.student_id for s in state.students] == ["s1", "s2", "s3"]
    assert state.students[0].reason == "Needs support · Part of group below 40%"


def test_attention_reason_for_struggling_student(service, stores, now):
    _seed(service, stores, now, {"s1": 25}, hints={"s1": 0.7})
    service.refresh("teacher-1", now=now)
    status = service.student_attention("teacher-1", "s1")
    assert status.needs_attention
    assert status.reason == "Needs support · Scored 25% with high hints"


def test_reviewing_assignment_clears_attention(service, stores, now):
    _seed(service, stores, now, {"s1": 25})
    service.refresh("teacher-1", now=now)
    service.synchronizer.mark_reviewed("a1", "s1", "teacher-1", now=now)

    status = service.student_attention("teacher-1", "s1")
    assert not status.needs_attention
    assert len(status.resolved_ids) == 1


def test_teacher_thresholds_apply_to_refresh(service, stores, now):
    _seed(service, stores, now, {"s1": 35})
    service.thresholds.update("teacher-1", {"needs_support_score": 30})
    assert service.refresh("teacher-1", now=now).detection.generated == []


def test_stats(service, stores, now):
    _seed(service, stores, now, {"s1": 25, "s2": 20, "s3": 95, "s4": 96})
    generated = service.refresh("teacher-1", now=now).detection.generated
    challenge = next(i for i in generated if i.rule_name == "ready-for-challenge")
    service.lifecycle.add_feedback(challenge.id, "helpful")
    service.lifecycle.mark_reviewed(challenge.id, "teacher-1", now=now)

    stats = service.stats(now=now)
    assert stats["total_active"] == len(generated) - 1
    assert stats["reviewed_today"] == 1
    assert stats["feedback_rate"] == 1 / len(generated)


def test_refresh_prunes_and_rescores(service, stores, now):
    _seed(service, stores, now, {"s1": 25})
    [insight] = service.refresh("teacher-1", now=now).detection.generated
    later = now + timedelta(days=4)
    result = service.refresh("teacher-1", now=later)
    assert result.rescored == 1
    assert stores.insights.load(insight.id).priority == 75

    service.lifecycle.dismiss(insight.id, "teacher-1", now=later)
    pruned = service.refresh("teacher-1", now=later + timedelta(days=31))
    assert pruned.pruned == 1


def test_prune_with_zero_days_is_not_the_default_window(service, stores, now):
    _seed(service, stores, now, {"s1": 25})
    [insight] = service.refresh("teacher-1", now=now).detection.generated
    service.lifecycle.dismiss(insight.id, "teacher-1", now=now - timedelta(hours=1))

    assert service.prune(now=now) == 0
    assert service.prune(days=0, now=now) == 1
    assert stores.insights.load(insight.id) is None
