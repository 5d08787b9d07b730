"""Keeps assignment review state, teacher to-dos and session notes consistent."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from schemas import NoteEntry, Session, StudentAssignment, TeacherTodo, utcnow

logger = logging.getLogger(__name__)

REVIEW_STATE_LABELS = {
    "not_started": "Not started",
    "pending_review": "Awaiting review",
    "reviewed": "Reviewed",
    "followup_scheduled": "Follow-up scheduled",
    "resolved": "Reviewed",
}


def derive_review_state(
    completed: bool,
    reviewed: bool,
    open_todo_count: int,
    done_todo_count: int,
    has_badge: bool,
) -> str:
    """Single source of truth for a student's review state on one assignment.

    Follow-up work outranks completion, so a pushed-back student with an open
    to-do still reads as follow-up scheduled.
    """
    if open_todo_count > 0:
        return "followup_scheduled"
    if has_badge or done_todo_count > 0:
        return "resolved"
    if reviewed:
        return "reviewed"
    if completed:
        return "pending_review"
    return "not_started"


def review_state_label(state: str) -> str:
    return REVIEW_STATE_LABELS.get(state, "Not started")


def format_note(entry: NoteEntry) -> str:
    if entry.kind == "system":
        return f"[System · {entry.created_at.date().isoformat()}] {entry.text}"
    return entry.text


def render_notes(session: Session, audience: str = "educator") -> List[str]:
    """Educators see every note; students only see what the teacher wrote."""
    if audience == "student":
        return [entry.text for entry in session.notes if entry.kind == "teacher"]
    return [format_note(entry) for entry in session.notes]


def todo_pairs(todo: TeacherTodo) -> List[Tuple[str, str]]:
    if not todo.assignment_id:
        return []
    return [(todo.assignment_id, student_id) for student_id in todo.student_ids]


class ReviewSynchronizer:
    def __init__(self, assignments, todos, sessions, lifecycle):
        self.assignments = assignments
        self.todos = todos
        self.sessions = sessions
        self.lifecycle = lifecycle

    # -- review state --------------------------------------------------

    def recompute(self, record: StudentAssignment) -> StudentAssignment:
        open_count = done_count = 0
        for todo_id in record.todo_ids:
            todo = self.todos.load(todo_id)
            if todo is None:
                continue
            if todo.status == "open":
                open_count += 1
            elif todo.status == "done":
                done_count += 1
        record.review_state = derive_review_state(
            completed=record.completed_at is not None,
            reviewed=record.reviewed_at is not None,
            open_todo_count=open_count,
            done_todo_count=done_count,
            has_badge=bool(record.badge_ids),
        )
        return record

    def refresh_state(self, assignment_id: str, student_id: str) -> Optional[StudentAssignment]:
        record = self.assignments.load_pair(assignment_id, student_id)
        if record is None:
            return None
        return self.assignments.save(self.recompute(record))

    def _ensure_record(self, assignment_id: str, student_id: str, now: datetime) -> StudentAssignment:
        record = self.assignments.load_pair(assignment_id, student_id)
        if record is None:
            record = StudentAssignment(assignment_id=assignment_id, student_id=student_id, assigned_at=now)
        return record

    def assign(self, assignment_id: str, student_ids: Sequence[str], assigned_by: str,
               class_id: Optional[str] = None, title: Optional[str] = None,
               now: Optional[datetime] = None) -> List[StudentAssignment]:
        now = now or utcnow()
        records = []
        for student_id in student_ids:
            record = self._ensure_record(assignment_id, student_id, now)
            record.assigned_by = assigned_by
            record.class_id = class_id or record.class_id
            record.assignment_title = title or record.assignment_title
            records.append(self.recompute(record))
        self.assignments.save_many(records)
        return records

    def record_completion(self, session: Session, now: Optional[datetime] = None) -> StudentAssignment:
        """Store a finished session and mark the student's assignment complete."""
        now = now or utcnow()
        session.status = "completed"
        session.completed_at = session.completed_at or now
        self.sessions.save(session)

        record = self._ensure_record(session.assignment_id, session.student_id, now)
        record.completed_at = session.completed_at
        record.assignment_title = record.assignment_title or session.assignment_title
        record.last_action_at = now
        self.assignments.save(self.recompute(record))
        self.lifecycle.resolve_pending_for_retry(session.student_id, session.assignment_id, now=now)
        return record

    def mark_reviewed(self, assignment_id: str, student_id: str, reviewed_by: str,
                      now: Optional[datetime] = None) -> Optional[StudentAssignment]:
        now = now or utcnow()
        record = self.assignments.load_pair(assignment_id, student_id)
        if record is None:
            return None
        record.reviewed_at = now
        record.reviewed_by = reviewed_by
        record.last_action_at = now
        self.assignments.save(self.recompute(record))
        self.lifecycle.resolve_for_review(student_id, assignment_id, now=now)
        return record

    def reopen_review(self, assignment_id: str, student_id: str,
                      now: Optional[datetime] = None) -> Optional[StudentAssignment]:
        """Undo a review: linked to-dos are superseded and badge links dropped."""
        now = now or utcnow()
        record = self.assignments.load_pair(assignment_id, student_id)
        if record is None:
            return None
        for todo_id in record.todo_ids:
            self.supersede_todo(todo_id, now=now, refresh=False)
        record.reviewed_at = None
        record.reviewed_by = None
        record.badge_ids = []
        record.last_action_at = now
        logger.info("Reopened review for %s on %s", student_id, assignment_id)
        return self.assignments.save(self.recompute(record))

    def push_back(self, assignment_id: str, student_id: str,
                  now: Optional[datetime] = None) -> Optional[StudentAssignment]:
        now = now or utcnow()
        record = self.assignments.load_pair(assignment_id, student_id)
        if record is None:
            return None
        record.attempts += 1
        record.completed_at = None
        record.reviewed_at = None
        record.reviewed_by = None
        record.last_action_at = now
        return self.assignments.save(self.recompute(record))

    def attach_badge(self, assignment_id: str, student_id: str, badge_id: str) -> Optional[StudentAssignment]:
        record = self.assignments.load_pair(assignment_id, student_id)
        if record is None:
            return None
        if badge_id not in record.badge_ids:
            record.badge_ids.append(badge_id)
        return self.assignments.save(self.recompute(record))

    # -- to-dos ------------------------------------------------------------

    def create_todos(self, todos: Iterable[TeacherTodo]) -> List[TeacherTodo]:
        """Persist new to-dos and link them to every (assignment, student) pair they cover."""
        created = list(todos)
        self.todos.save_many(created)
        for todo in created:
            for assignment_id, student_id in todo_pairs(todo):
                record = self.assignments.load_pair(assignment_id, student_id)
                if record is None:
                    continue
                if todo.id not in record.todo_ids:
                    record.todo_ids.append(todo.id)
                self.assignments.save(self.recompute(record))
        return created

    def _refresh_pairs(self, todo: TeacherTodo) -> None:
        for assignment_id, student_id in todo_pairs(todo):
            self.refresh_state(assignment_id, student_id)

    def complete_todo(self, todo_id: str, now: Optional[datetime] = None) -> Optional[TeacherTodo]:
        now = now or utcnow()
        todo = self.todos.load(todo_id)
        if todo is None:
            return None
        if todo.status == "done":
            return todo
        if todo.status == "superseded":
            raise ValueError(f"to-do {todo_id} has been superseded")
        todo.status = "done"
        todo.done_at = now
        self.todos.save(todo)

        for assignment_id, student_id in todo_pairs(todo):
            session = self.sessions.latest_completed(assignment_id, student_id)
            if session is not None:
                session.notes.append(NoteEntry(kind="system", text=todo.label, created_at=now, todo_id=todo.id))
                self.sessions.save(session)
        self._refresh_pairs(todo)
        logger.info("Completed to-do %s (%s)", todo.id, todo.label)
        return todo

    def reopen_todo(self, todo_id: str) -> Optional[TeacherTodo]:
        todo = self.todos.load(todo_id)
        if todo is None:
            return None
        if todo.status == "open":
            return todo
        if todo.status == "superseded":
            raise ValueError(f"to-do {todo_id} has been superseded")
        todo.status = "open"
        todo.done_at = None
        self.todos.save(todo)

        for assignment_id, student_id in todo_pairs(todo):
            session = self.sessions.latest_completed(assignment_id, student_id)
            if session is not None and self._remove_system_note(session, todo):
                self.sessions.save(session)
        self._refresh_pairs(todo)
        return todo

    @staticmethod
    def _remove_system_note(session: Session, todo: TeacherTodo) -> bool:
        # Newest system note for this to-do goes; label match covers notes without a to-do id.
        # Teacher-written notes are never touched.
        system = [i for i, entry in enumerate(session.notes) if entry.kind == "system"]
        by_id = [i for i in system if session.notes[i].todo_id == todo.id]
        by_label = [i for i in system if session.notes[i].todo_id is None and session.notes[i].text == todo.label]
        matches = by_id or by_label
        if not matches:
            return False
        del session.notes[matches[-1]]
        return True

    def supersede_todo(self, todo_id: str, now: Optional[datetime] = None,
                       refresh: bool = True) -> Optional[TeacherTodo]:
        now = now or utcnow()
        todo = self.todos.load(todo_id)
        if todo is None:
            return None
        if todo.status != "superseded":
            todo.status = "superseded"
            todo.superseded_at = now
            self.todos.save(todo)
        if refresh:
            self._refresh_pairs(todo)
        return todo

    def delete_todo(self, todo_id: str, reactivate_insight: bool = False) -> bool:
        todo = self.todos.load(todo_id)
        if todo is None:
            return False
        self.todos.delete(todo_id)
        for assignment_id, student_id in todo_pairs(todo):
            record = self.assignments.load_pair(assignment_id, student_id)
            if record is None:
                continue
            record.todo_ids = [tid for tid in record.todo_ids if tid != todo_id]
            self.assignments.save(self.recompute(record))

        if reactivate_insight and todo.insight_id:
            remaining = [t for t in self.todos.get_for_insight(todo.insight_id) if t.status != "superseded"]
            if not remaining:
                self.lifecycle.reactivate(todo.insight_id)
        return True
