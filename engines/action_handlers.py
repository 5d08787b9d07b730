"""Teacher actions on insights: one-click actions and checklist submission."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from schemas import ActionOutcome, Badge, Insight, NoteEntry, SubmittedAction, TeacherTodo, utcnow

from engines.lifecycle import InvalidTransitionError, can_transition
from engines.validation import ValidationError

logger = logging.getLogger(__name__)

VALID_BADGE_TYPES = frozenset({
    "progress_star",
    "mastery_badge",
    "focus_badge",
    "creativity_badge",
    "collaboration_badge",
})


class ActionValidationError(ValidationError):
    """Raised when an action request is malformed."""
    pass


@dataclass(frozen=True)
class ChecklistAction:
    key: str
    label: str
    system: bool = False
    creates_pending: bool = False
    action_type: Optional[str] = None


CHECKLIST_ACTIONS: Dict[str, ChecklistAction] = {
    action.key: action
    for action in (
        ChecklistAction("reassign_student", "Reassign the work", system=True, creates_pending=True, action_type="reassign"),
        ChecklistAction("assign_practice", "Assign targeted practice", system=True, creates_pending=True, action_type="reassign"),
        ChecklistAction("award_badge", "Award a badge", system=True, action_type="award_badge"),
        ChecklistAction("add_note", "Add a note for the student"),
        ChecklistAction("review_responses", "Review their responses"),
        ChecklistAction("one_on_one_checkin", "Hold a one-on-one check-in"),
        ChecklistAction("small_group_review", "Run a small-group review"),
        ChecklistAction("targeted_practice", "Prepare targeted practice"),
        ChecklistAction("extension_activity", "Offer an extension activity"),
        ChecklistAction("acknowledge_progress", "Acknowledge their progress"),
    )
}


@dataclass
class ChecklistResult:
    insight: Insight
    outcome: ActionOutcome
    todos: List[TeacherTodo] = field(default_factory=list)
    executed: List[str] = field(default_factory=list)


class TeacherActions:
    """Side effects on student records that teacher actions trigger."""

    def __init__(self, badges, sessions, synchronizer):
        self.badges = badges
        self.sessions = sessions
        self.synchronizer = synchronizer

    def award_badge(self, student_id: str, badge_type: str, awarded_by: str,
                    assignment_id: Optional[str] = None, message: Optional[str] = None,
                    now: Optional[datetime] = None) -> Badge:
        if badge_type not in VALID_BADGE_TYPES:
            raise ActionValidationError(f"Invalid badge type: {badge_type}")
        badge = Badge(
            student_id=student_id,
            badge_type=badge_type,
            message=message,
            assignment_id=assignment_id,
            awarded_by=awarded_by,
            issued_at=now or utcnow(),
        )
        self.badges.save(badge)
        if assignment_id:
            self.synchronizer.attach_badge(assignment_id, student_id, badge.id)
        return badge

    def push_back_work(self, assignment_id: Optional[str], student_id: str,
                       now: Optional[datetime] = None) -> bool:
        if not assignment_id:
            return False
        return self.synchronizer.push_back(assignment_id, student_id, now=now) is not None

    def add_teacher_note(self, assignment_id: Optional[str], student_id: str, text: str,
                         now: Optional[datetime] = None) -> bool:
        if not assignment_id:
            return False
        session = self.sessions.latest_completed(assignment_id, student_id)
        if session is None:
            return False
        session.notes.append(NoteEntry(kind="teacher", text=text, created_at=now or utcnow()))
        self.sessions.save(session)
        return True


class InsightActionService:
    def __init__(self, insights, outcomes, lifecycle, synchronizer, actions: TeacherActions, classes=None):
        self.insights = insights
        self.outcomes = outcomes
        self.lifecycle = lifecycle
        self.synchronizer = synchronizer
        self.actions = actions
        self.classes = classes

    def _require_transition(self, insight: Insight, target: str) -> None:
        if not can_transition(insight.status, target):
            raise InvalidTransitionError(insight.id, insight.status, target)

    def _outcome(self, insight: Insight, action_type: str, acted_by: str, resolution_status: str,
                 now: datetime, metadata: Optional[dict] = None) -> ActionOutcome:
        return self.outcomes.save(
            ActionOutcome(
                insight_id=insight.id,
                action_type=action_type,
                acted_by=acted_by,
                acted_at=now,
                affected_student_ids=list(insight.student_ids),
                affected_assignment_id=insight.assignment_id,
                resolution_status=resolution_status,
                metadata=metadata or {},
            )
        )

    def reassign(self, insight_id: str, acted_by: str, now: Optional[datetime] = None) -> Optional[Insight]:
        now = now or utcnow()
        insight = self.insights.load(insight_id)
        if insight is None:
            return None
        self._require_transition(insight, "pending")
        for student_id in insight.student_ids:
            self.actions.push_back_work(insight.assignment_id, student_id, now=now)
        outcome = self._outcome(
            insight, "reassign", acted_by, "pending", now,
            {"previous_score": insight.signals.get("score")},
        )
        return self.lifecycle.mark_pending(insight_id, outcome.id, now=now)

    def award_badge(self, insight_id: str, badge_type: str, acted_by: str,
                    message: Optional[str] = None, now: Optional[datetime] = None) -> Optional[Insight]:
        now = now or utcnow()
        if badge_type not in VALID_BADGE_TYPES:
            raise ActionValidationError(f"Invalid badge type: {badge_type}")
        insight = self.insights.load(insight_id)
        if insight is None:
            return None
        self._require_transition(insight, "resolved")
        badge_ids = [
            self.actions.award_badge(student_id, badge_type, acted_by, insight.assignment_id, message, now=now).id
            for student_id in insight.student_ids
        ]
        outcome = self._outcome(
            insight, "award_badge", acted_by, "completed", now,
            {"badge_type": badge_type, "badge_message": message, "badge_ids": badge_ids},
        )
        return self.lifecycle.mark_resolved(insight_id, outcome.id, "completed", now=now)

    def add_note(self, insight_id: str, note_text: str, acted_by: str,
                 now: Optional[datetime] = None) -> Optional[Insight]:
        now = now or utcnow()
        if not note_text or not note_text.strip():
            raise ActionValidationError("note_text is required")
        insight = self.insights.load(insight_id)
        if insight is None:
            return None
        self._require_transition(insight, "resolved")
        for student_id in insight.student_ids:
            self.actions.add_teacher_note(insight.assignment_id, student_id, note_text.strip(), now=now)
        outcome = self._outcome(
            insight, "add_note", acted_by, "follow_up_needed", now, {"note_text": note_text.strip()},
        )
        return self.lifecycle.mark_resolved(insight_id, outcome.id, "follow_up_needed", now=now)

    def _validate_checklist(self, action_keys: Sequence[str], badge_type: Optional[str]) -> List[str]:
        keys = [key for key in dict.fromkeys(k.strip() for k in action_keys if k) if key]
        if not keys:
            raise ActionValidationError("At least one action must be selected")
        unknown = [key for key in keys if key not in CHECKLIST_ACTIONS]
        if unknown:
            raise ActionValidationError(f"Unknown action keys: {', '.join(unknown)}")
        if "award_badge" in keys and badge_type not in VALID_BADGE_TYPES:
            raise ActionValidationError(f"Invalid badge type: {badge_type}")
        return keys

    def _todo_context(self, insight: Insight) -> dict:
        signals = insight.signals
        names = signals.get("student_names") or (
            [signals["student_name"]] if signals.get("student_name") else []
        )
        context = {
            "class_id": None,
            "class_name": signals.get("class_name"),
            "subject": None,
            "assignment_id": insight.assignment_id,
            "assignment_title": signals.get("assignment_title"),
            "student_ids": list(insight.student_ids),
            "student_names": list(names),
        }
        if self.classes is not None and insight.student_ids:
            roster = next(
                (r for r in self.classes.get_all() if insight.student_ids[0] in r.student_ids),
                None,
            )
            if roster is not None:
                context["class_id"] = roster.id
                context["class_name"] = context["class_name"] or roster.name
                context["subject"] = roster.subject
        return context

    def submit_checklist(
        self,
        insight_id: str,
        action_keys: Sequence[str],
        teacher_id: str,
        note_text: Optional[str] = None,
        badge_type: Optional[str] = None,
        badge_message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[ChecklistResult]:
        """Run the system actions, turn the rest into to-dos and settle the insight.

        Everything is validated before the first side effect.
        """
        now = now or utcnow()
        keys = self._validate_checklist(action_keys, badge_type)
        insight = self.insights.load(insight_id)
        if insight is None:
            return None

        chosen = [CHECKLIST_ACTIONS[key] for key in keys]
        creates_pending = any(action.system and action.creates_pending for action in chosen)
        target = "pending" if creates_pending else "resolved"
        self._require_transition(insight, target)

        executed: List[str] = []
        metadata: dict = {"action_keys": keys}
        for action in chosen:
            if not action.system:
                continue
            if action.key == "reassign_student":
                if insight.student_ids:
                    self.actions.push_back_work(insight.assignment_id, insight.student_ids[0], now=now)
                metadata["previous_score"] = insight.signals.get("score")
            elif action.key == "assign_practice":
                for student_id in insight.student_ids:
                    self.actions.push_back_work(insight.assignment_id, student_id, now=now)
            elif action.key == "award_badge":
                metadata["badge_ids"] = [
                    self.actions.award_badge(
                        student_id, badge_type, teacher_id, insight.assignment_id, badge_message, now=now
                    ).id
                    for student_id in insight.student_ids
                ]
                metadata["badge_type"] = badge_type
            executed.append(action.key)

        context = self._todo_context(insight)
        todos = self.synchronizer.create_todos(
            TeacherTodo(
                teacher_id=teacher_id,
                insight_id=insight.id,
                action_key=action.key,
                label=action.label,
                created_at=now,
                **context,
            )
            for action in chosen
            if not action.system
        )
        metadata["todo_ids"] = [todo.id for todo in todos]
        if note_text:
            metadata["note_text"] = note_text

        first_system = next((CHECKLIST_ACTIONS[key] for key in executed), None)
        outcome = self._outcome(
            insight,
            first_system.action_type if first_system else "mark_reviewed",
            teacher_id,
            "pending" if creates_pending else "completed",
            now,
            metadata,
        )
        if creates_pending:
            self.lifecycle.mark_pending(insight.id, outcome.id, now=now)
        else:
            self.lifecycle.mark_resolved(insight.id, outcome.id, "completed", now=now)

        submitted = [
            SubmittedAction(action_key=action.key, label=action.label, submitted_at=now, submitted_by=teacher_id)
            for action in chosen
        ]
        updated = self.insights.update(insight.id, lambda record: record.submitted_actions.extend(submitted))
        logger.info(
            "Checklist on insight %s: %s system actions, %s to-dos, status %s",
            insight.id, len(executed), len(todos), updated.status,
        )
        return ChecklistResult(insight=updated, outcome=outcome, todos=todos, executed=executed)

    def submit_review_actions(
        self,
        assignment_id: str,
        student_id: str,
        teacher_id: str,
        badge_type: Optional[str] = None,
        badge_message: Optional[str] = None,
        todo_label: Optional[str] = None,
        todo_action_key: str = "review_followup",
        now: Optional[datetime] = None,
    ):
        """Review a student's work, optionally awarding a badge and scheduling a follow-up."""
        now = now or utcnow()
        if badge_type is not None and badge_type not in VALID_BADGE_TYPES:
            raise ActionValidationError(f"Invalid badge type: {badge_type}")
        record = self.synchronizer.assignments.load_pair(assignment_id, student_id)
        if record is None:
            return None

        if badge_type:
            self.actions.award_badge(student_id, badge_type, teacher_id, assignment_id, badge_message, now=now)
        if todo_label and todo_label.strip():
            self.synchronizer.create_todos([
                TeacherTodo(
                    teacher_id=teacher_id,
                    action_key=todo_action_key,
                    label=todo_label.strip(),
                    class_id=record.class_id,
                    assignment_id=assignment_id,
                    assignment_title=record.assignment_title,
                    student_ids=[student_id],
                    created_at=now,
                )
            ])
        return self.synchronizer.mark_reviewed(assignment_id, student_id, teacher_id, now=now)
