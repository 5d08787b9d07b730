"""Detection rules that turn aggregated performance into insight candidates."""

from __future__ import annotations

import logging
import statistics
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from schemas import (
    AssignmentAggregateData,
    Insight,
    StudentPerformanceData,
    TeacherThresholdSettings,
    utcnow,
)

from engines.base import DetectionRule, InsightCandidate
from engines.dedup import DeduplicationGuard
from engines.scoring import MIN_CONFIDENCE_SCORE, score_insight

logger = logging.getLogger(__name__)

SUPPORT_SEEKING_SCORE_CEILING = 50
LARGE_GROUP_SIZE = 3
STRONG_IMPROVEMENT = 30
MONITOR_AVERAGE_CEILING = 50
MONITOR_COMPLETION_RATIO = 0.5

# Higher rank wins when one student/assignment pair has several candidates.
INSIGHT_TYPE_RANK = {
    "check_in": 4,
    "challenge_opportunity": 3,
    "celebrate_progress": 2,
    "monitor": 1,
}


def _pct(value: float) -> int:
    return int(round(value))


class NeedsSupportRule(DetectionRule):
    name = "needs-support"
    insight_type = "check_in"

    def evaluate(self, data: StudentPerformanceData, thresholds: TeacherThresholdSettings, context: Dict[str, Any]):
        if data.has_teacher_note:
            return None

        confidence_score = 0.0
        band = "medium"
        evidence = [f"Scored {_pct(data.score)}% on {data.assignment_title}"]

        if data.score < thresholds.needs_support_score:
            confidence_score = 0.9
            band = "high"
        if data.hint_usage_rate > thresholds.heavy_hint_usage and data.score < thresholds.developing_upper:
            confidence_score = max(confidence_score, 0.85)
            band = "high"
            evidence.append(f"Used hints on {_pct(data.hint_usage_rate * 100)}% of questions")
        if data.coach_intent == "support-seeking" and data.score < SUPPORT_SEEKING_SCORE_CEILING:
            confidence_score = max(confidence_score, 0.8)
            evidence.append("Asked the coach for help repeatedly")

        if confidence_score == 0.0:
            return None

        return InsightCandidate(
            insight_type=self.insight_type,
            rule_name=self.name,
            student_ids=[data.student_id],
            assignment_id=data.assignment_id,
            summary=f"{data.student_name} may need a check-in on {data.assignment_title}",
            confidence=band,
            confidence_score=max(confidence_score, MIN_CONFIDENCE_SCORE),
            evidence=evidence,
            suggested_actions=[
                "Schedule a quick one-on-one check-in",
                "Review their responses together",
                "Reassign with additional scaffolding",
            ],
            signals={
                "student_name": data.student_name,
                "assignment_title": data.assignment_title,
                "score": data.score,
                "hint_usage_rate": data.hint_usage_rate,
                "coach_intent": data.coach_intent,
                "has_teacher_note": data.has_teacher_note,
                "help_request_count": data.help_request_count,
            },
        )


class GroupSupportRule(DetectionRule):
    name = "group-support"
    insight_type = "check_in"
    scope = "assignment"

    def evaluate(self, data: AssignmentAggregateData, thresholds: TeacherThresholdSettings, context: Dict[str, Any]):
        struggling = list(data.students_needing_support)
        if len(struggling) < thresholds.min_group_size:
            return None

        performance: Sequence[StudentPerformanceData] = context.get("performance", ())
        members = [
            item
            for item in performance
            if item.assignment_id == data.assignment_id and item.student_id in struggling
        ]
        if len(members) < thresholds.min_group_size:
            return None

        count = len(struggling)
        average = statistics.fmean(item.score for item in members)
        names = [item.student_name for item in members]
        return InsightCandidate(
            insight_type=self.insight_type,
            rule_name=self.name,
            student_ids=struggling,
            assignment_id=data.assignment_id,
            summary=f"{count} students are struggling with {data.assignment_title}",
            confidence="high",
            confidence_score=0.95 if count >= LARGE_GROUP_SIZE else 0.85,
            evidence=[
                f"{count} students scored below {_pct(thresholds.needs_support_score)}%",
                f"Group average {_pct(average)}%",
            ],
            suggested_actions=[
                "Run a small-group review session",
                "Reteach the key concept to the group",
                "Assign targeted practice",
            ],
            signals={
                "student_count": count,
                "student_names": names,
                "average_score": average,
                "threshold_percent": thresholds.needs_support_score,
                "class_name": data.class_name,
                "assignment_title": data.assignment_title,
            },
        )


class ReadyForChallengeRule(DetectionRule):
    name = "ready-for-challenge"
    insight_type = "challenge_opportunity"

    def evaluate(self, data: StudentPerformanceData, thresholds: TeacherThresholdSettings, context: Dict[str, Any]):
        if data.score < thresholds.strong_threshold or data.hint_usage_rate >= thresholds.minimal_hint_usage:
            return None

        confidence, band = 0.8, "medium"
        evidence = [
            f"Scored {_pct(data.score)}% on {data.assignment_title}",
            f"Used hints on {_pct(data.hint_usage_rate * 100)}% of questions",
        ]
        if data.coach_intent == "enrichment-seeking":
            confidence, band = 0.9, "high"
            evidence.append("Asked the coach for harder material")

        return InsightCandidate(
            insight_type=self.insight_type,
            rule_name=self.name,
            student_ids=[data.student_id],
            assignment_id=data.assignment_id,
            summary=f"{data.student_name} is ready for a challenge",
            confidence=band,
            confidence_score=confidence,
            evidence=evidence,
            suggested_actions=["Offer an extension activity", "Assign an advanced problem set"],
            signals={
                "student_name": data.student_name,
                "assignment_title": data.assignment_title,
                "score": data.score,
                "hint_usage_rate": data.hint_usage_rate,
                "coach_intent": data.coach_intent,
            },
        )


class NotableImprovementRule(DetectionRule):
    name = "notable-improvement"
    insight_type = "celebrate_progress"

    def evaluate(self, data: StudentPerformanceData, thresholds: TeacherThresholdSettings, context: Dict[str, Any]):
        if data.previous_score is None:
            return None
        improvement = data.score - data.previous_score
        if improvement < thresholds.significant_improvement or data.score < thresholds.developing_upper:
            return None

        return InsightCandidate(
            insight_type=self.insight_type,
            rule_name=self.name,
            student_ids=[data.student_id],
            assignment_id=data.assignment_id,
            summary=f"{data.student_name} improved by {_pct(improvement)} points",
            confidence="medium",
            confidence_score=0.9 if improvement >= STRONG_IMPROVEMENT else 0.85,
            evidence=[
                f"Scored {_pct(data.score)}% on {data.assignment_title}",
                f"Up from {_pct(data.previous_score)}% last time",
            ],
            suggested_actions=["Acknowledge their progress", "Award a progress badge"],
            signals={
                "student_name": data.student_name,
                "assignment_title": data.assignment_title,
                "score": data.score,
                "previous_score": data.previous_score,
                "improvement": improvement,
            },
        )


class WatchProgressRule(DetectionRule):
    name = "watch-progress"
    insight_type = "monitor"
    scope = "assignment"

    def evaluate(self, data: AssignmentAggregateData, thresholds: TeacherThresholdSettings, context: Dict[str, Any]):
        if data.student_count <= 0:
            return None
        completion_ratio = data.completed_count / data.student_count
        if (
            data.average_score >= MONITOR_AVERAGE_CEILING
            or completion_ratio >= MONITOR_COMPLETION_RATIO
            or data.days_since_assigned <= thresholds.monitor_min_days
        ):
            return None

        return InsightCandidate(
            insight_type=self.insight_type,
            rule_name=self.name,
            student_ids=[],
            assignment_id=data.assignment_id,
            summary=f"{data.assignment_title} needs a closer look",
            confidence="low",
            confidence_score=0.75,
            evidence=[
                f"Only {data.completed_count} of {data.student_count} students have finished",
                f"Average score so far {_pct(data.average_score)}%",
                f"Assigned {data.days_since_assigned} days ago",
            ],
            suggested_actions=["Send a reminder to the class", "Check whether the assignment is too hard"],
            signals={
                "assignment_title": data.assignment_title,
                "average_score": data.average_score,
                "completion_ratio": completion_ratio,
                "days_since_assigned": data.days_since_assigned,
                "class_name": data.class_name,
            },
        )


DEFAULT_RULES: Tuple[DetectionRule, ...] = (
    NeedsSupportRule(),
    GroupSupportRule(),
    ReadyForChallengeRule(),
    NotableImprovementRule(),
    WatchProgressRule(),
)


@dataclass
class DetectionResult:
    generated: List[Insight] = field(default_factory=list)
    skipped_duplicates: int = 0
    filtered_by_constraint: int = 0
    failures: int = 0


def _constraint_rank(candidate: InsightCandidate) -> Tuple[int, int, float]:
    return (
        INSIGHT_TYPE_RANK.get(candidate.insight_type, 0),
        1 if len(candidate.student_ids) > 1 else 0,
        candidate.confidence_score,
    )


def apply_student_constraint(candidates: Sequence[InsightCandidate]) -> Tuple[List[InsightCandidate], int]:
    """Keep at most one candidate per (student, assignment) pair.

    A group candidate that wins any of its pairs survives whole.  Candidates
    without students are assignment-level and always survive.
    """
    winners: Dict[Tuple[str, Optional[str]], int] = {}
    for index, candidate in enumerate(candidates):
        for student_id in candidate.student_ids:
            key = (student_id, candidate.assignment_id)
            current = winners.get(key)
            if current is None or _constraint_rank(candidate) > _constraint_rank(candidates[current]):
                winners[key] = index

    winning = set(winners.values())
    kept = [
        candidate
        for index, candidate in enumerate(candidates)
        if not candidate.student_ids or index in winning
    ]
    return kept, len(candidates) - len(kept)


class DetectionRuleEngine:
    def __init__(self, guard: DeduplicationGuard, rules: Sequence[DetectionRule] = DEFAULT_RULES):
        self.guard = guard
        self.rules = list(rules)

    def _evaluate(self, rule: DetectionRule, data: Any, thresholds, context, result: DetectionResult):
        try:
            return rule.evaluate(data, thresholds, context)
        except Exception:
            label = getattr(data, "student_id", None) or getattr(data, "assignment_id", "?")
            logger.exception("Rule %s failed for %s; skipping", rule.name, label)
            result.failures += 1
            return None

    def detect(
        self,
        performance: Sequence[StudentPerformanceData],
        aggregates: Sequence[AssignmentAggregateData],
        thresholds: TeacherThresholdSettings,
        now: Optional[datetime] = None,
    ) -> DetectionResult:
        now = now or utcnow()
        result = DetectionResult()
        context = {"performance": performance}

        candidates: List[InsightCandidate] = []
        for rule in self.rules:
            inputs = performance if rule.scope == "student" else aggregates
            for data in inputs:
                candidate = self._evaluate(rule, data, thresholds, context, result)
                if candidate is not None and candidate.confidence_score >= MIN_CONFIDENCE_SCORE:
                    candidates.append(candidate)

        fresh: List[InsightCandidate] = []
        for candidate in candidates:
            if self.guard.exists(candidate.rule_name, candidate.student_ids, candidate.assignment_id):
                result.skipped_duplicates += 1
                continue
            fresh.append(candidate)

        kept, result.filtered_by_constraint = apply_student_constraint(fresh)

        for candidate in kept:
            if len(candidate.student_ids) == 1 and self.guard.covered_by_group(
                candidate.insight_type, candidate.student_ids[0], candidate.assignment_id
            ):
                result.filtered_by_constraint += 1
                continue
            self.guard.remember(
                candidate.rule_name, candidate.student_ids, candidate.assignment_id, candidate.insight_type
            )
            insight = Insight(
                insight_type=candidate.insight_type,
                rule_name=candidate.rule_name,
                signals=candidate.signals,
                generated_at=now,
                created_at=now,
                student_ids=candidate.student_ids,
                assignment_id=candidate.assignment_id,
                summary=candidate.summary,
                evidence=candidate.evidence,
                suggested_actions=candidate.suggested_actions,
                confidence=candidate.confidence,
                confidence_score=candidate.confidence_score,
            )
            result.generated.append(score_insight(insight, now=now))

        logger.info(
            "Detection produced %s insights (%s duplicates, %s filtered, %s failures)",
            len(result.generated),
            result.skipped_duplicates,
            result.filtered_by_constraint,
            result.failures,
        )
        return result
