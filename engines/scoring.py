"""Priority scoring for generated insights."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Optional

from schemas import Insight, utcnow

PRIORITY_BASE = 50
PRIORITY_MIN = 1
PRIORITY_MAX = 100

CATEGORY_WEIGHTS: Dict[str, int] = {
    "individual_checkin": 20,
    "small_group": 25,
    "monitor": 25,
    "enrichment": 5,
    "celebrate": 0,
}

CONFIDENCE_WEIGHTS: Dict[str, int] = {"high": 15, "medium": 5, "low": 0}

RECENT_WINDOW = timedelta(hours=24)
STALE_AFTER = timedelta(hours=72)
RECENT_BONUS = 10
STALE_PENALTY = -10
LARGE_GROUP_SIZE = 3
LARGE_GROUP_BONUS = 10

MIN_CONFIDENCE_SCORE = 0.7


def insight_category(insight_type: str, student_count: int) -> str:
    if insight_type == "check_in":
        return "small_group" if student_count > 1 else "individual_checkin"
    if insight_type == "challenge_opportunity":
        return "enrichment"
    if insight_type == "celebrate_progress":
        return "celebrate"
    return "monitor"


def compute_priority(
    insight_type: str,
    confidence: str,
    student_count: int,
    created_at: datetime,
    now: Optional[datetime] = None,
) -> int:
    now = now or utcnow()
    score = PRIORITY_BASE
    score += CATEGORY_WEIGHTS[insight_category(insight_type, student_count)]
    score += CONFIDENCE_WEIGHTS.get(confidence, 0)

    age = now - created_at
    if age < RECENT_WINDOW:
        score += RECENT_BONUS
    elif age > STALE_AFTER:
        score += STALE_PENALTY

    if student_count >= LARGE_GROUP_SIZE:
        score += LARGE_GROUP_BONUS

    return max(PRIORITY_MIN, min(PRIORITY_MAX, score))


def score_insight(insight: Insight, now: Optional[datetime] = None) -> Insight:
    insight.priority = compute_priority(
        insight.insight_type,
        insight.confidence,
        len(insight.student_ids),
        insight.created_at,
        now=now,
    )
    return insight
