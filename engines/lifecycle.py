"""Insight status state machine and the store-level transitions built on it."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

from schemas import ActionOutcome, Insight, utcnow

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "active": frozenset({"pending", "resolved", "dismissed", "reviewed"}),
    "pending": frozenset({"resolved", "dismissed", "active"}),
    "resolved": frozenset({"active"}),
    "dismissed": frozenset({"active"}),
    "reviewed": frozenset({"active"}),
}

FEEDBACK_VALUES = frozenset({"helpful", "not-helpful"})


class InvalidTransitionError(ValueError):
    def __init__(self, insight_id: str, current: str, target: str):
        super().__init__(f"insight {insight_id} cannot move from {current} to {target}")
        self.insight_id = insight_id
        self.current = current
        self.target = target


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition(insight: Insight, target: str) -> Insight:
    if not can_transition(insight.status, target):
        raise InvalidTransitionError(insight.id, insight.status, target)
    insight.status = target
    return insight


class InsightLifecycle:
    """Applies lifecycle transitions to stored insights.

    Every method returns ``None`` when the insight does not exist and raises
    InvalidTransitionError when the move is not allowed from the current status.
    """

    def __init__(self, insights, outcomes):
        self.insights = insights
        self.outcomes = outcomes

    def _record_outcome(self, insight: Insight, action_type: str, acted_by: str,
                        resolution_status: str, now: datetime, metadata: Optional[dict] = None) -> ActionOutcome:
        outcome = ActionOutcome(
            insight_id=insight.id,
            action_type=action_type,
            acted_by=acted_by,
            acted_at=now,
            affected_student_ids=list(insight.student_ids),
            affected_assignment_id=insight.assignment_id,
            resolution_status=resolution_status,
            metadata=metadata or {},
        )
        return self.outcomes.save(outcome)

    def mark_reviewed(self, insight_id: str, reviewed_by: str, now: Optional[datetime] = None) -> Optional[Insight]:
        now = now or utcnow()
        insight = self.insights.load(insight_id)
        if insight is None:
            return None
        transition(insight, "reviewed")
        outcome = self._record_outcome(insight, "mark_reviewed", reviewed_by, "completed", now)
        insight.reviewed_at = now
        insight.reviewed_by = reviewed_by
        insight.outcome_id = outcome.id
        return self.insights.save(insight)

    def dismiss(self, insight_id: str, dismissed_by: str, now: Optional[datetime] = None) -> Optional[Insight]:
        now = now or utcnow()
        insight = self.insights.load(insight_id)
        if insight is None:
            return None
        transition(insight, "dismissed")
        outcome = self._record_outcome(insight, "dismiss", dismissed_by, "completed", now)
        insight.reviewed_at = now
        insight.reviewed_by = dismissed_by
        insight.outcome_id = outcome.id
        return self.insights.save(insight)

    def mark_pending(self, insight_id: str, outcome_id: str, now: Optional[datetime] = None) -> Optional[Insight]:
        now = now or utcnow()
        insight = self.insights.load(insight_id)
        if insight is None:
            return None
        transition(insight, "pending")
        insight.outcome_id = outcome_id
        insight.resolution_status = "pending"
        insight.reviewed_at = now
        return self.insights.save(insight)

    def mark_resolved(self, insight_id: str, outcome_id: Optional[str], resolution_status: str = "completed",
                      now: Optional[datetime] = None) -> Optional[Insight]:
        now = now or utcnow()
        insight = self.insights.load(insight_id)
        if insight is None:
            return None
        transition(insight, "resolved")
        insight.outcome_id = outcome_id
        insight.resolution_status = resolution_status
        insight.resolved_at = now
        insight.reviewed_at = insight.reviewed_at or now
        return self.insights.save(insight)

    def reactivate(self, insight_id: str) -> Optional[Insight]:
        """Return an insight to the active list, clearing everything a teacher action set."""
        insight = self.insights.load(insight_id)
        if insight is None:
            return None
        if insight.status == "active":
            return insight
        transition(insight, "active")
        insight.reviewed_at = None
        insight.reviewed_by = None
        insight.resolved_at = None
        insight.outcome_id = None
        insight.resolution_status = None
        insight.submitted_actions = []
        logger.info("Reactivated insight %s", insight_id)
        return self.insights.save(insight)

    def add_feedback(self, insight_id: str, feedback: str, note: Optional[str] = None) -> Optional[Insight]:
        if feedback not in FEEDBACK_VALUES:
            raise ValueError(f"feedback must be one of: {', '.join(sorted(FEEDBACK_VALUES))}")
        insight = self.insights.load(insight_id)
        if insight is None:
            return None
        insight.feedback = feedback
        insight.feedback_note = note
        return self.insights.save(insight)

    def resolve_for_review(self, student_id: str, assignment_id: str,
                           now: Optional[datetime] = None) -> List[Insight]:
        """Resolve every active insight scoped to this exact student and assignment."""
        now = now or utcnow()
        resolved: List[Insight] = []
        for insight in self.insights.get_by_status("active"):
            if student_id not in insight.student_ids or insight.assignment_id != assignment_id:
                continue
            transition(insight, "resolved")
            insight.resolution_status = "completed"
            insight.resolved_at = now
            insight.reviewed_at = now
            resolved.append(insight)
        self.insights.save_many(resolved)
        if resolved:
            logger.info(
                "Resolved %s insights for student %s on %s after review",
                len(resolved), student_id, assignment_id,
            )
        return resolved

    def resolve_pending_for_retry(self, student_id: str, assignment_id: str,
                                  now: Optional[datetime] = None) -> List[Insight]:
        """Close pending follow-ups once the student has completed the reassigned work."""
        now = now or utcnow()
        resolved: List[Insight] = []
        for insight in self.insights.get_by_status("pending"):
            if student_id not in insight.student_ids or insight.assignment_id != assignment_id:
                continue
            transition(insight, "resolved")
            insight.resolution_status = "completed"
            insight.resolved_at = now
            resolved.append(insight)
        self.insights.save_many(resolved)
        return resolved
