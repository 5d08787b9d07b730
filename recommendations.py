"""Insight generation and the query surface the teacher dashboard reads from.

``InsightService`` wires the engines together around one set of stores:
refresh runs aggregation, detection, de-duplication and scoring, and the
remaining methods expose the stored insights, their statistics and the
derived attention state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from db import Stores
from schemas import Insight, utcnow

from engines.action_handlers import InsightActionService, TeacherActions
from engines.aggregation import PerformanceAggregator
from engines.attention import AttentionClassifier, DashboardAttentionState, StudentAttentionStatus
from engines.dedup import DeduplicationGuard
from engines.detection_rules import DetectionResult, DetectionRuleEngine
from engines.lifecycle import InsightLifecycle
from engines.review_sync import ReviewSynchronizer
from engines.scoring import score_insight
from engines.validation import ThresholdSettingsService
from teacher_todos import TodoService

logger = logging.getLogger(__name__)

MAX_ACTIVE_RECOMMENDATIONS = 5
PRUNE_AFTER_DAYS = 30


@dataclass
class RefreshResult:
    detection: DetectionResult
    pruned: int = 0
    cleared: int = 0
    rescored: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "generated": len(self.detection.generated),
            "skipped_duplicates": self.detection.skipped_duplicates,
            "filtered_by_constraint": self.detection.filtered_by_constraint,
            "failures": self.detection.failures,
            "pruned": self.pruned,
            "cleared": self.cleared,
            "rescored": self.rescored,
            "insight_ids": [insight.id for insight in self.detection.generated],
        }


class InsightService:
    def __init__(self, stores: Stores, max_active: int = MAX_ACTIVE_RECOMMENDATIONS,
                 prune_after_days: int = PRUNE_AFTER_DAYS):
        self.stores = stores
        self.max_active = max_active
        self.prune_after_days = prune_after_days
        self.thresholds = ThresholdSettingsService(stores.settings)
        self.lifecycle = InsightLifecycle(stores.insights, stores.outcomes)
        self.synchronizer = ReviewSynchronizer(stores.assignments, stores.todos, stores.sessions, self.lifecycle)
        self.teacher_actions = TeacherActions(stores.badges, stores.sessions, self.synchronizer)
        self.actions = InsightActionService(
            stores.insights,
            stores.outcomes,
            self.lifecycle,
            self.synchronizer,
            self.teacher_actions,
            classes=stores.classes,
        )
        self.todos = TodoService(stores.todos, self.synchronizer)

    # -- generation --------------------------------------------------------

    def refresh(self, teacher_id: str, clear_active: bool = False,
                coach_intents: Optional[Mapping[str, str]] = None,
                now: Optional[datetime] = None) -> RefreshResult:
        now = now or utcnow()
        stores = self.stores
        pruned = stores.insights.prune_old(self.prune_after_days, now=now)
        cleared = stores.insights.clear_active() if clear_active else 0
        rescored = self.rescore_active(now=now)

        thresholds = self.thresholds.get(teacher_id)
        aggregator = PerformanceAggregator(thresholds)
        rosters = stores.classes.get_all()
        performance = aggregator.student_performance(stores.sessions.get_all(), rosters, coach_intents)
        aggregates = aggregator.assignment_aggregates(performance, stores.assignments.get_all(), rosters, now=now)

        engine = DetectionRuleEngine(DeduplicationGuard(stores.insights))
        detection = engine.detect(performance, aggregates, thresholds, now=now)
        stores.insights.save_many(detection.generated)
        logger.info(
            "Refresh for %s: %s new insights, %s pruned, %s cleared",
            teacher_id, len(detection.generated), pruned, cleared,
        )
        return RefreshResult(detection=detection, pruned=pruned, cleared=cleared, rescored=rescored)

    def rescore_active(self, now: Optional[datetime] = None) -> int:
        """Recompute priorities so the recency bonus and staleness penalty stay current."""
        changed = []
        for insight in self.stores.insights.get_by_status("active"):
            before = insight.priority
            if score_insight(insight, now=now).priority != before:
                changed.append(insight)
        self.stores.insights.save_many(changed)
        return len(changed)

    # -- queries -----------------------------------------------------------

    def get(self, insight_id: str) -> Optional[Insight]:
        return self.stores.insights.load(insight_id)

    def get_active(self, limit: Optional[int] = None) -> List[Insight]:
        return self.stores.insights.get_active(limit if limit is not None else self.max_active)

    def list(self, status: Optional[str] = None, student_id: Optional[str] = None,
             assignment_id: Optional[str] = None) -> List[Insight]:
        store = self.stores.insights
        if student_id:
            insights = store.get_by_student(student_id)
        elif assignment_id:
            insights = store.get_by_assignment(assignment_id)
        else:
            insights = store.get_all()
        if status:
            insights = [insight for insight in insights if insight.status == status]
        if assignment_id:
            insights = [insight for insight in insights if insight.assignment_id == assignment_id]
        return sorted(insights, key=lambda i: (-i.priority, i.created_at, i.id))

    def stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        insights = self.stores.insights.get_all()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        acted = [i for i in insights if i.status != "active"]
        with_feedback = [i for i in insights if i.feedback]
        return {
            "total_active": sum(1 for i in insights if i.status == "active"),
            "total_pending": sum(1 for i in insights if i.status == "pending"),
            "total_resolved": sum(1 for i in insights if i.status == "resolved"),
            "total_dismissed": sum(1 for i in insights if i.status == "dismissed"),
            "reviewed_today": sum(1 for i in acted if i.reviewed_at and i.reviewed_at >= start_of_day),
            "feedback_rate": (len(with_feedback) / len(insights)) if insights else 0.0,
        }

    def attention(self, teacher_id: str) -> DashboardAttentionState:
        classifier = AttentionClassifier(self.thresholds.get(teacher_id))
        return classifier.dashboard_state(self.stores.insights.get_all())

    def student_attention(self, teacher_id: str, student_id: str) -> StudentAttentionStatus:
        classifier = AttentionClassifier(self.thresholds.get(teacher_id))
        return classifier.student_status(student_id, self.stores.insights.get_all())

    def prune(self, days: Optional[int] = None, now: Optional[datetime] = None) -> int:
        return self.stores.insights.prune_old(days if days is not None else self.prune_after_days, now=now)
