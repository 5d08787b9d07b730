from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from schemas import TeacherThresholdSettings


@dataclass
class InsightCandidate:
    insight_type: str
    rule_name: str
    student_ids: List[str]
    assignment_id: Optional[str]
    summary: str
    confidence: str
    confidence_score: float
    evidence: List[str] = field(default_factory=list)
    suggested_actions: List[str] = field(default_factory=list)
    signals: Dict[str, Any] = field(default_factory=dict)


class DetectionRule:
    name: str = ""
    insight_type: str = ""
    # "student" rules see StudentPerformanceData, "assignment" rules see AssignmentAggregateData
    scope: str = "student"

    def evaluate(self, data: Any, thresholds: TeacherThresholdSettings, context: Dict[str, Any]) -> Optional[InsightCandidate]:
        raise NotImplementedError
