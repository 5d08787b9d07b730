"""Tests for insight priority scoring."""

from datetime import datetime, timedelta, timezone

from engines.scoring import compute_priority, insight_category, score_insight
from schemas import Insight

NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


def test_individual_high_confidence_recent_checkin():
    assert compute_priority("check_in", "high", 1, NOW, now=NOW) == 95


def test_group_checkin_gets_large_group_bonus_and_clamps():
    # 50 + 25 + 15 + 10 + 10 = 110 -> clamped
    assert compute_priority("check_in", "high", 3, NOW, now=NOW) == 100


def test_stale_insight_is_penalised():
    created = NOW - timedelta(hours=80)
    assert compute_priority("celebrate_progress", "medium", 1, created, now=NOW) == 45


def test_middle_age_has_no_recency_adjustment():
    created = NOW - timedelta(hours=48)
    assert compute_priority("challenge_opportunity", "medium", 1, created, now=NOW) == 60


def test_monitor_uses_group_weight():
    assert insight_category("monitor", 0) == "monitor"
    assert compute_priority("monitor", "low", 0, NOW, now=NOW) == 85


def test_score_insight_sets_priority():
    insight = Insight(
        insight_type="check_in",
        rule_name="needs-support",
        student_ids=["s1", "s2"],
        summary="Two students need help",
        confidence="medium",
        confidence_score=0.85,
        created_at=NOW,
    )
    assert score_insight(insight, now=NOW).priority == 50 + 25 + 5 + 10
