"""Aggregate completed sessions into per-student and per-assignment performance views."""

from __future__ import annotations

import statistics
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from schemas import (
    AssignmentAggregateData,
    ClassRoster,
    Session,
    StudentAssignment,
    StudentPerformanceData,
    TeacherThresholdSettings,
    utcnow,
)


def _completion_time(session: Session) -> datetime:
    return session.completed_at or session.started_at


def _latest_by_pair(sessions: Iterable[Session]) -> Dict[Tuple[str, str], List[Session]]:
    grouped: Dict[Tuple[str, str], List[Session]] = defaultdict(list)
    for session in sessions:
        if session.status != "completed" or session.score is None:
            continue
        grouped[(session.student_id, session.assignment_id)].append(session)
    for history in grouped.values():
        history.sort(key=_completion_time, reverse=True)
    return grouped


def display_name(student_id: str, names: Mapping[str, str]) -> str:
    return names.get(student_id) or f"Student {student_id[:6]}"


class PerformanceAggregator:
    """Builds the inputs for the detection rules.

    ``sessions`` are the raw session records, ``rosters`` give class names and
    membership and ``assignments`` supply when each student received the work.
    Coach intent can be overridden per student with ``coach_intents``.
    """

    def __init__(self, thresholds: TeacherThresholdSettings):
        self.thresholds = thresholds

    def student_performance(
        self,
        sessions: Sequence[Session],
        rosters: Sequence[ClassRoster] = (),
        coach_intents: Optional[Mapping[str, str]] = None,
    ) -> List[StudentPerformanceData]:
        names = self._roster_names(rosters)
        class_of = {sid: roster.id for roster in rosters for sid in roster.student_ids}
        intents = dict(coach_intents or {})

        results: List[StudentPerformanceData] = []
        for (student_id, assignment_id), history in _latest_by_pair(sessions).items():
            latest = history[0]
            previous = latest.previous_score
            if previous is None and len(history) > 1:
                previous = history[1].score
            has_note = any(note.kind == "teacher" for session in history for note in session.notes)
            results.append(
                StudentPerformanceData(
                    student_id=student_id,
                    student_name=latest.student_name or display_name(student_id, names),
                    assignment_id=assignment_id,
                    assignment_title=latest.assignment_title or assignment_id,
                    class_id=class_of.get(student_id),
                    score=latest.score,
                    hint_usage_rate=latest.hint_usage_rate(),
                    coach_intent=intents.get(student_id, latest.coach_intent),
                    has_teacher_note=has_note,
                    previous_score=previous,
                    help_request_count=latest.help_request_count,
                    completed_at=latest.completed_at,
                )
            )
        return results

    def assignment_aggregates(
        self,
        performance: Sequence[StudentPerformanceData],
        assignments: Sequence[StudentAssignment] = (),
        rosters: Sequence[ClassRoster] = (),
        now: Optional[datetime] = None,
    ) -> List[AssignmentAggregateData]:
        now = now or utcnow()
        rosters_by_id = {roster.id: roster for roster in rosters}

        by_assignment: Dict[str, List[StudentPerformanceData]] = defaultdict(list)
        for item in performance:
            by_assignment[item.assignment_id].append(item)

        assigned: Dict[str, List[StudentAssignment]] = defaultdict(list)
        for record in assignments:
            assigned[record.assignment_id].append(record)

        aggregates: List[AssignmentAggregateData] = []
        for assignment_id in sorted(set(by_assignment) | set(assigned)):
            items = by_assignment.get(assignment_id, [])
            records = assigned.get(assignment_id, [])
            class_id = next((r.class_id for r in records if r.class_id), None)
            if class_id is None:
                class_id = next((i.class_id for i in items if i.class_id), None)
            roster = rosters_by_id.get(class_id) if class_id else None

            student_ids = {r.student_id for r in records} | {i.student_id for i in items}
            if roster and not records:
                student_ids |= set(roster.student_ids)

            title = next((i.assignment_title for i in items), None)
            title = title or next((r.assignment_title for r in records if r.assignment_title), assignment_id)

            days = 0
            if records:
                first_assigned = min(r.assigned_at for r in records)
                days = max(0, (now - first_assigned).days)

            aggregates.append(
                AssignmentAggregateData(
                    assignment_id=assignment_id,
                    assignment_title=title,
                    class_id=class_id,
                    class_name=roster.name if roster else None,
                    student_count=len(student_ids),
                    completed_count=len(items),
                    average_score=statistics.fmean(i.score for i in items) if items else 0.0,
                    students_needing_support=[
                        i.student_id for i in items if i.score < self.thresholds.needs_support_score
                    ],
                    days_since_assigned=days,
                )
            )
        return aggregates

    @staticmethod
    def _roster_names(rosters: Sequence[ClassRoster]) -> Dict[str, str]:
        names: Dict[str, str] = {}
        for roster in rosters:
            names.update(roster.student_names)
        return names
