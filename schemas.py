"""Pydantic schemas for insights, their outcomes and the records they keep in sync."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

__all__ = [
    "InsightType",
    "InsightStatus",
    "ConfidenceBand",
    "ResolutionStatus",
    "ActionType",
    "ReviewState",
    "TodoStatus",
    "SubmittedAction",
    "Insight",
    "ActionOutcome",
    "TeacherTodo",
    "StudentAssignment",
    "TeacherThresholdSettings",
    "NoteEntry",
    "Session",
    "Badge",
    "ClassRoster",
    "StudentPerformanceData",
    "AssignmentAggregateData",
    "utcnow",
    "new_id",
]

InsightType = Literal["check_in", "challenge_opportunity", "celebrate_progress", "monitor"]
InsightStatus = Literal["active", "pending", "resolved", "dismissed", "reviewed"]
ConfidenceBand = Literal["high", "medium", "low"]
ResolutionStatus = Literal["completed", "pending", "follow_up_needed"]
ActionType = Literal["reassign", "award_badge", "add_note", "dismiss", "mark_reviewed"]
ReviewState = Literal["not_started", "pending_review", "reviewed", "followup_scheduled", "resolved"]
TodoStatus = Literal["open", "done", "superseded"]
CoachIntent = Literal["support-seeking", "enrichment-seeking", "mixed"]
FeedbackValue = Literal["helpful", "not-helpful"]
BadgeType = Literal[
    "progress_star",
    "mastery_badge",
    "focus_badge",
    "creativity_badge",
    "collaboration_badge",
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


def _dedupe_ids(values: List[str]) -> List[str]:
    seen: set[str] = set()
    ordered: List[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


class SubmittedAction(BaseModel):
    action_key: str
    label: str
    submitted_at: datetime = Field(default_factory=utcnow)
    submitted_by: str | None = None


class Insight(BaseModel):
    """A single teacher-facing recommendation together with its lifecycle state."""

    id: str = Field(default_factory=new_id)
    insight_type: InsightType
    rule_name: str = Field(description="Detection rule that produced the insight; kept for the audit trail.")
    signals: Dict[str, Any] = Field(default_factory=dict)
    generated_at: datetime = Field(default_factory=utcnow)
    student_ids: List[str] = Field(default_factory=list)
    assignment_id: str | None = None
    summary: str
    evidence: List[str] = Field(default_factory=list)
    suggested_actions: List[str] = Field(default_factory=list)
    priority: int = Field(default=50, ge=1, le=100)
    confidence: ConfidenceBand = "medium"
    confidence_score: float = Field(default=0.7, ge=0.7, le=1.0)
    status: InsightStatus = "active"
    created_at: datetime = Field(default_factory=utcnow)
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    resolved_at: datetime | None = None
    outcome_id: str | None = None
    resolution_status: ResolutionStatus | None = None
    feedback: FeedbackValue | None = None
    feedback_note: str | None = None
    submitted_actions: List[SubmittedAction] = Field(default_factory=list)

    @field_validator("student_ids")
    @classmethod
    def _unique_students(cls, value: List[str]) -> List[str]:
        return _dedupe_ids(value)


class ActionOutcome(BaseModel):
    """Immutable record of one teacher action taken on an insight."""

    id: str = Field(default_factory=new_id)
    insight_id: str
    action_type: ActionType
    acted_by: str
    acted_at: datetime = Field(default_factory=utcnow)
    affected_student_ids: List[str] = Field(default_factory=list)
    affected_assignment_id: str | None = None
    resolution_status: ResolutionStatus
    metadata: Dict[str, Any] = Field(default_factory=dict)


class TeacherTodo(BaseModel):
    id: str = Field(default_factory=new_id)
    teacher_id: str
    insight_id: str | None = None
    action_key: str
    label: str
    class_id: str | None = None
    class_name: str | None = None
    subject: str | None = None
    assignment_id: str | None = None
    assignment_title: str | None = None
    student_ids: List[str] = Field(default_factory=list)
    student_names: List[str] = Field(default_factory=list)
    status: TodoStatus = "open"
    created_at: datetime = Field(default_factory=utcnow)
    done_at: datetime | None = None
    superseded_at: datetime | None = None


class StudentAssignment(BaseModel):
    """Per-student projection of an assignment, including its derived review state."""

    assignment_id: str
    student_id: str
    class_id: str | None = None
    assignment_title: str | None = None
    assigned_at: datetime = Field(default_factory=utcnow)
    assigned_by: str | None = None
    completed_at: datetime | None = None
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    review_state: ReviewState = "not_started"
    todo_ids: List[str] = Field(default_factory=list)
    badge_ids: List[str] = Field(default_factory=list)
    attempts: int = 1
    last_action_at: datetime | None = None

    @property
    def id(self) -> str:
        return StudentAssignment.key(self.assignment_id, self.student_id)

    @staticmethod
    def key(assignment_id: str, student_id: str) -> str:
        return f"{assignment_id}:{student_id}"


class TeacherThresholdSettings(BaseModel):
    needs_support_score: float = 40
    needs_support_hint_threshold: float = 0.5
    developing_upper: float = 70
    developing_hint_min: float = 0.2
    developing_hint_max: float = 0.5
    strong_threshold: float = 90
    escalation_help_requests: int = 3
    heavy_hint_usage: float = 0.6
    minimal_hint_usage: float = 0.1
    min_group_size: int = 2
    significant_improvement: float = 20
    monitor_min_days: int = 5


class NoteEntry(BaseModel):
    kind: Literal["system", "teacher"]
    text: str
    created_at: datetime = Field(default_factory=utcnow)
    todo_id: str | None = None


class Session(BaseModel):
    id: str = Field(default_factory=new_id)
    student_id: str
    student_name: str | None = None
    assignment_id: str
    assignment_title: str | None = None
    status: Literal["in_progress", "completed"] = "completed"
    score: float | None = Field(default=None, ge=0, le=100)
    responses: List[Dict[str, Any]] = Field(default_factory=list)
    coach_intent: CoachIntent | None = None
    help_request_count: int = 0
    previous_score: float | None = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    notes: List[NoteEntry] = Field(default_factory=list)

    def hint_usage_rate(self) -> float:
        if not self.responses:
            return 0.0
        used = sum(1 for response in self.responses if response.get("hint_used"))
        return used / len(self.responses)


class Badge(BaseModel):
    id: str = Field(default_factory=new_id)
    student_id: str
    badge_type: BadgeType
    message: str | None = None
    assignment_id: str | None = None
    awarded_by: str
    issued_at: datetime = Field(default_factory=utcnow)


class ClassRoster(BaseModel):
    id: str
    name: str
    subject: str | None = None
    student_ids: List[str] = Field(default_factory=list)
    student_names: Dict[str, str] = Field(default_factory=dict)


class StudentPerformanceData(BaseModel):
    """Per-student, per-assignment signals consumed by the detection rules."""

    student_id: str
    student_name: str
    assignment_id: str
    assignment_title: str
    class_id: str | None = None
    score: float = Field(ge=0, le=100)
    hint_usage_rate: float = Field(default=0.0, ge=0, le=1)
    coach_intent: CoachIntent | None = None
    has_teacher_note: bool = False
    previous_score: float | None = None
    help_request_count: int = 0
    completed_at: datetime | None = None


class AssignmentAggregateData(BaseModel):
    assignment_id: str
    assignment_title: str
    class_id: str | None = None
    class_name: str | None = None
    student_count: int = 0
    completed_count: int = 0
    average_score: float = 0.0
    students_needing_support: List[str] = Field(default_factory=list)
    days_since_assigned: int = 0
