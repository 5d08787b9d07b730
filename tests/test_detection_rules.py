"""Tests for the detection rules and the rule engine."""

from datetime import datetime, timezone

import pytest

from engines.base import DetectionRule
from engines.dedup import DeduplicationGuard
from engines.detection_rules import (
    DetectionRuleEngine,
    GroupSupportRule,
    NeedsSupportRule,
    NotableImprovementRule,
    ReadyForChallengeRule,
    WatchProgressRule,
)
from schemas import AssignmentAggregateData, Insight, StudentPerformanceData, TeacherThresholdSettings

NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
THRESHOLDS = TeacherThresholdSettings()


def perf(student_id="s1", score=80.0, hint=0.0, **kwargs) -> StudentPerformanceData:
    data = {
        "student_id": student_id,
        "student_name": student_id.title(),
        "assignment_id": "a1",
        "assignment_title": "Fractions",
        "score": score,
        "hint_usage_rate": hint,
    }
    data.update(kwargs)
    return StudentPerformanceData(**data)


def aggregate(**kwargs) -> AssignmentAggregateData:
    data = {
        "assignment_id": "a1",
        "assignment_title": "Fractions",
        "class_name": "7B",
        "student_count": 10,
        "completed_count": 8,
        "average_score": 70.0,
        "students_needing_support": [],
        "days_since_assigned": 2,
    }
    data.update(kwargs)
    return AssignmentAggregateData(**data)


class _MemoryInsights:
    def __init__(self, insights=()):
        self.insights = list(insights)

    def get_all(self):
        return list(self.insights)


def engine(existing=()):
    return DetectionRuleEngine(DeduplicationGuard(_MemoryInsights(existing)))


def test_needs_support_low_score_is_high_confidence():
    candidate = NeedsSupportRule().evaluate(perf(score=30), THRESHOLDS, {})
    assert candidate.confidence == "high"
    assert candidate.confidence_score == 0.9
    assert candidate.evidence[0] == "Scored 30% on Fractions"


def test_needs_support_heavy_hints_under_developing():
    candidate = NeedsSupportRule().evaluate(perf(score=65, hint=0.7), THRESHOLDS, {})
    assert candidate.confidence == "high"
    assert candidate.confidence_score == 0.85
    assert "Used hints on 70% of questions" in candidate.evidence


def test_needs_support_support_seeking_is_medium():
    candidate = NeedsSupportRule().evaluate(
        perf(score=45, coach_intent="support-seeking"), THRESHOLDS, {}
    )
    assert candidate.confidence == "medium"
    assert candidate.confidence_score == 0.8


def test_needs_support_skips_students_with_teacher_note():
    assert NeedsSupportRule().evaluate(perf(score=10, has_teacher_note=True), THRESHOLDS, {}) is None


def test_needs_support_ignores_healthy_scores():
    assert NeedsSupportRule().evaluate(perf(score=75, hint=0.9), THRESHOLDS, {}) is None


def test_ready_for_challenge_boosted_by_enrichment_intent():
    rule = ReadyForChallengeRule()
    plain = rule.evaluate(perf(score=95, hint=0.05), THRESHOLDS, {})
    boosted = rule.evaluate(perf(score=95, hint=0.05, coach_intent="enrichment-seeking"), THRESHOLDS, {})
    assert (plain.confidence, plain.confidence_score) == ("medium", 0.8)
    assert (boosted.confidence, boosted.confidence_score) == ("high", 0.9)
    assert rule.evaluate(perf(score=95, hint=0.2), THRESHOLDS, {}) is None


def test_notable_improvement_requires_previous_score():
    rule = NotableImprovementRule()
    assert rule.evaluate(perf(score=85), THRESHOLDS, {}) is None
    big = rule.evaluate(perf(score=85, previous_score=50), THRESHOLDS, {})
    small = rule.evaluate(perf(score=75, previous_score=52), THRESHOLDS, {})
    assert big.confidence_score == 0.9
    assert small.confidence_score == 0.85
    assert rule.evaluate(perf(score=65, previous_score=30), THRESHOLDS, {}) is None


def test_watch_progress_is_assignment_level():
    rule = WatchProgressRule()
    candidate = rule.evaluate(
        aggregate(average_score=40, completed_count=3, days_since_assigned=7), THRESHOLDS, {}
    )
    assert candidate.student_ids == []
    assert candidate.confidence == "low"
    assert rule.evaluate(aggregate(average_score=40, completed_count=3, days_since_assigned=5), THRESHOLDS, {}) is None


def test_group_support_needs_matching_students():
    rule = GroupSupportRule()
    data = aggregate(students_needing_support=["s1", "s2"])
    assert rule.evaluate(data, THRESHOLDS, {"performance": [perf("s1", 30)]}) is None
    candidate = rule.evaluate(data, THRESHOLDS, {"performance": [perf("s1", 30), perf("s2", 20)]})
    assert candidate.confidence_score == 0.85
    assert candidate.signals["student_count"] == 2


def test_low_score_with_heavy_hints_produces_priority_95_checkin():
    result = engine().detect([perf("s1", score=25, hint=0.7)], [], THRESHOLDS, now=NOW)
    assert len(result.generated) == 1
    insight = result.generated[0]
    assert insight.insight_type == "check_in"
    assert insight.rule_name == "needs-support"
    assert insight.confidence == "high"
    assert insight.priority == 95


def test_three_struggling_students_produce_one_group_insight():
    performance = [perf("s1", 30), perf("s2", 28), perf("s3", 32)]
    aggregates = [aggregate(students_needing_support=["s1", "s2", "s3"])]
    result = engine().detect(performance, aggregates, THRESHOLDS, now=NOW)

    assert [i.rule_name for i in result.generated] == ["group-support"]
    group = result.generated[0]
    assert sorted(group.student_ids) == ["s1", "s2", "s3"]
    assert group.confidence_score == 0.95
    assert result.filtered_by_constraint == 3


def test_stored_group_insight_still_absorbs_individual_candidates():
    existing = Insight(
        insight_type="check_in",
        rule_name="group-support",
        student_ids=["s3", "s1", "s2"],
        assignment_id="a1",
        summary="group",
    )
    performance = [perf("s1", 30), perf("s2", 28), perf("s3", 32)]
    aggregates = [aggregate(students_needing_support=["s1", "s2", "s3"])]
    result = engine([existing]).detect(performance, aggregates, THRESHOLDS, now=NOW)
    assert result.generated == []
    assert result.skipped_duplicates == 1
    assert result.filtered_by_constraint == 3


def test_stored_insight_from_another_rule_does_not_block_new_rule():
    existing = Insight(
        insight_type="challenge_opportunity",
        rule_name="ready-for-challenge",
        student_ids=["s1"],
        assignment_id="a1",
        summary="stretch",
        status="dismissed",
    )
    result = engine([existing]).detect([perf("s1", score=95, previous_score=60)], [], THRESHOLDS, now=NOW)
    assert [i.rule_name for i in result.generated] == ["notable-improvement"]
    assert result.skipped_duplicates == 1
    assert result.filtered_by_constraint == 0


def test_stored_group_only_absorbs_same_insight_type():
    existing = Insight(
        insight_type="check_in",
        rule_name="group-support",
        student_ids=["s1", "s2"],
        assignment_id="a1",
        summary="group",
    )
    result = engine([existing]).detect([perf("s1", score=95, hint=0.0)], [], THRESHOLDS, now=NOW)
    assert [i.rule_name for i in result.generated] == ["ready-for-challenge"]


@pytest.mark.parametrize("status", ["active", "pending", "resolved", "dismissed"])
def test_existing_insight_blocks_regeneration(status):
    existing = Insight(
        insight_type="check_in",
        rule_name="needs-support",
        student_ids=["s1"],
        assignment_id="a1",
        summary="existing",
        status=status,
    )
    result = engine([existing]).detect([perf("s1", score=20)], [], THRESHOLDS, now=NOW)
    assert result.generated == []
    assert result.skipped_duplicates == 1


def test_reviewed_insight_does_not_block_regeneration():
    existing = Insight(
        insight_type="check_in",
        rule_name="needs-support",
        student_ids=["s1"],
        assignment_id="a1",
        summary="existing",
        status="reviewed",
    )
    result = engine([existing]).detect([perf("s1", score=20)], [], THRESHOLDS, now=NOW)
    assert len(result.generated) == 1


def test_failing_rule_is_skipped_and_counted():
    class Exploding(DetectionRule):
        name = "exploding"
        insight_type = "check_in"

        def evaluate(self, data, thresholds, context):
            raise RuntimeError("boom")

    rules = [Exploding(), NeedsSupportRule()]
    detector = DetectionRuleEngine(DeduplicationGuard(_MemoryInsights()), rules=rules)
    result = detector.detect([perf("s1", score=20)], [], THRESHOLDS, now=NOW)
    assert result.failures == 1
    assert len(result.generated) == 1


def test_teacher_thresholds_change_detection():
    strict = TeacherThresholdSettings(needs_support_score=20)
    result = engine().detect([perf("s1", score=30)], [], strict, now=NOW)
    assert result.generated == []
