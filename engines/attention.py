"""Decides which students need attention and why."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from schemas import Insight, TeacherThresholdSettings

EXCLUDED_TYPES = frozenset({"celebrate_progress", "challenge_opportunity", "monitor"})
EXCLUDED_RULES = frozenset({"notable-improvement", "ready-for-challenge", "watch-progress"})
ATTENTION_RULES = frozenset({"needs-support", "check-in-suggested", "group-support"})
CONDITIONAL_RULES = frozenset({"developing"})

NEEDS_SUPPORT_RULES = frozenset({"needs-support", "struggling-student", "group-support", "developing"})
CHECK_IN_RULES = frozenset({"check-in-suggested"})


def _number(value) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def is_elevated(insight: Insight, thresholds: TeacherThresholdSettings) -> bool:
    signals = insight.signals
    if signals.get("is_elevated") or signals.get("escalated_from_developing"):
        return True
    hint_rate = _number(signals.get("hint_usage_rate"))
    if hint_rate is not None and hint_rate > thresholds.needs_support_hint_threshold:
        return True
    help_requests = _number(signals.get("help_request_count"))
    return help_requests is not None and help_requests >= thresholds.escalation_help_requests


def is_attention_kind(insight: Insight, thresholds: TeacherThresholdSettings) -> bool:
    """Whether this insight describes a student needing support, regardless of status."""
    if insight.insight_type in EXCLUDED_TYPES or insight.rule_name in EXCLUDED_RULES:
        return False
    if insight.rule_name in ATTENTION_RULES:
        return True
    if insight.rule_name in CONDITIONAL_RULES:
        return is_elevated(insight, thresholds)
    return insight.insight_type == "check_in"


def needs_attention(insight: Insight, thresholds: TeacherThresholdSettings) -> bool:
    return insight.status == "active" and is_attention_kind(insight, thresholds)


def attention_category(insight: Insight) -> str:
    if insight.rule_name in NEEDS_SUPPORT_RULES:
        return "Needs support"
    if insight.rule_name in CHECK_IN_RULES or insight.insight_type == "check_in":
        return "Check-in"
    return "Needs support"


def _group_phrase(signals: Mapping) -> str:
    threshold = signals.get("threshold_percent")
    if threshold is None:
        threshold = signals.get("threshold")
    if threshold is None:
        threshold = signals.get("average_score")
    threshold = _number(threshold)
    if threshold is not None:
        return f"Part of group below {round(threshold)}%"
    count = _number(signals.get("group_count"))
    if count is None:
        count = _number(signals.get("student_count"))
    if count is not None:
        return f"One of {int(count)} struggling"
    return "Group trend detected"


def attention_phrase(insight: Insight, thresholds: TeacherThresholdSettings) -> str:
    signals = insight.signals
    if insight.rule_name == "group-support":
        return _group_phrase(signals)

    score = _number(signals.get("score"))
    hint_rate = _number(signals.get("hint_usage_rate"))
    help_requests = _number(signals.get("help_request_count"))
    high_hints = hint_rate is not None and hint_rate > thresholds.needs_support_hint_threshold

    if score is not None and high_hints:
        return f"Scored {round(score)}% with high hints"
    if score is not None:
        return f"Scored {round(score)}%"
    if signals.get("coach_intent") == "support-seeking":
        return "Seeking help frequently"
    if high_hints:
        return f"High hint usage ({round(hint_rate * 100)}%)"
    if help_requests is not None and help_requests >= thresholds.escalation_help_requests:
        return f"Repeated help requests ({int(help_requests)})"
    return "Review suggested"


def attention_reason(insight: Insight, thresholds: TeacherThresholdSettings) -> str:
    return f"{attention_category(insight)} · {attention_phrase(insight, thresholds)}"


def _by_priority(insights: Iterable[Insight]) -> List[Insight]:
    return sorted(insights, key=lambda i: (-i.priority, i.created_at, i.id))


@dataclass
class StudentAttentionStatus:
    student_id: str
    needs_attention: bool
    reason: Optional[str] = None
    assignment_id: Optional[str] = None
    active_ids: List[str] = field(default_factory=list)
    pending_ids: List[str] = field(default_factory=list)
    resolved_ids: List[str] = field(default_factory=list)


@dataclass
class AssignmentAttentionSummary:
    assignment_id: str
    needing_attention: int = 0
    pending: int = 0
    resolved: int = 0


@dataclass
class DashboardAttentionState:
    students: List[StudentAttentionStatus] = field(default_factory=list)
    needs_attention_count: int = 0
    pending_count: int = 0
    assignments: Dict[str, AssignmentAttentionSummary] = field(default_factory=dict)


class AttentionClassifier:
    def __init__(self, thresholds: TeacherThresholdSettings):
        self.thresholds = thresholds

    def student_status(self, student_id: str, insights: Sequence[Insight]) -> StudentAttentionStatus:
        relevant = [
            insight
            for insight in insights
            if student_id in insight.student_ids and is_attention_kind(insight, self.thresholds)
        ]
        active = _by_priority(i for i in relevant if i.status == "active")
        status = StudentAttentionStatus(
            student_id=student_id,
            needs_attention=bool(active),
            active_ids=[i.id for i in active],
            pending_ids=[i.id for i in relevant if i.status == "pending"],
            resolved_ids=[i.id for i in relevant if i.status == "resolved"],
        )
        if active:
            status.reason = attention_reason(active[0], self.thresholds)
            status.assignment_id = active[0].assignment_id
        return status

    def students_needing_attention(self, insights: Sequence[Insight]) -> List[StudentAttentionStatus]:
        student_ids = sorted({
            student_id
            for insight in insights
            if needs_attention(insight, self.thresholds)
            for student_id in insight.student_ids
        })
        statuses = [self.student_status(student_id, insights) for student_id in student_ids]
        return sorted(statuses, key=lambda s: (-len(s.active_ids), s.student_id))

    def assignment_summary(self, assignment_id: str, insights: Sequence[Insight]) -> AssignmentAttentionSummary:
        needing: set = set()
        pending: set = set()
        resolved: set = set()
        for insight in insights:
            if insight.assignment_id != assignment_id or not is_attention_kind(insight, self.thresholds):
                continue
            if insight.status == "active":
                needing.update(insight.student_ids)
            elif insight.status == "pending":
                pending.update(insight.student_ids)
            elif insight.status == "resolved":
                resolved.update(insight.student_ids)
        return AssignmentAttentionSummary(
            assignment_id=assignment_id,
            needing_attention=len(needing),
            pending=len(pending),
            resolved=len(resolved),
        )

    def dashboard_state(self, insights: Sequence[Insight]) -> DashboardAttentionState:
        students = self.students_needing_attention(insights)
        assignment_ids = sorted({
            insight.assignment_id
            for insight in insights
            if insight.assignment_id and is_attention_kind(insight, self.thresholds)
        })
        pending_students = {
            student_id
            for insight in insights
            if insight.status == "pending" and is_attention_kind(insight, self.thresholds)
            for student_id in insight.student_ids
        }
        return DashboardAttentionState(
            students=students,
            needs_attention_count=len(students),
            pending_count=len(pending_students),
            assignments={aid: self.assignment_summary(aid, insights) for aid in assignment_ids},
        )

    def students_to_remove(self, student_ids: Iterable[str], insights: Sequence[Insight]) -> List[str]:
        """Students currently shown as needing attention who no longer qualify."""
        still_flagged = {
            student_id
            for insight in insights
            if needs_attention(insight, self.thresholds)
            for student_id in insight.student_ids
        }
        return [student_id for student_id in student_ids if student_id not in still_flagged]
