"""Teacher to-do list: creation, counting and the grouped views used by the dashboard."""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional, Sequence

from schemas import TeacherTodo

DEFAULT_GROUP = "General"


def todo_counts(todos: Iterable[TeacherTodo]) -> Dict[str, int]:
    """Open/done totals.  Superseded to-dos are history and never counted."""
    counts = {"open": 0, "done": 0}
    for todo in todos:
        if todo.status in counts:
            counts[todo.status] += 1
    counts["total"] = counts["open"] + counts["done"]
    return counts


def group_todos_by_class(todos: Iterable[TeacherTodo]) -> Dict[str, Dict[str, Dict[str, List[TeacherTodo]]]]:
    """Nest live to-dos as class -> subject -> assignment, classes in name order."""
    nested: Dict[str, Dict[str, Dict[str, List[TeacherTodo]]]] = {}
    for todo in todos:
        if todo.status == "superseded":
            continue
        class_name = todo.class_name or DEFAULT_GROUP
        subject = todo.subject or DEFAULT_GROUP
        assignment = todo.assignment_title or todo.assignment_id or DEFAULT_GROUP
        nested.setdefault(class_name, {}).setdefault(subject, {}).setdefault(assignment, []).append(todo)

    ordered: Dict[str, Dict[str, Dict[str, List[TeacherTodo]]]] = OrderedDict()
    for class_name in sorted(nested, key=str.lower):
        subjects = nested[class_name]
        ordered[class_name] = OrderedDict(
            (subject, OrderedDict(sorted(subjects[subject].items(), key=lambda kv: kv[0].lower())))
            for subject in sorted(subjects, key=str.lower)
        )
    return ordered


def group_todos_by_student(todos: Iterable[TeacherTodo]) -> Dict[str, List[TeacherTodo]]:
    grouped: Dict[str, List[TeacherTodo]] = {}
    for todo in todos:
        if todo.status == "superseded":
            continue
        for student_id in todo.student_ids or [DEFAULT_GROUP]:
            grouped.setdefault(student_id, []).append(todo)
    return grouped


class TodoService:
    def __init__(self, todos, synchronizer):
        self.todos = todos
        self.synchronizer = synchronizer

    def create(self, todo: TeacherTodo) -> TeacherTodo:
        return self.synchronizer.create_todos([todo])[0]

    def create_batch(self, teacher_id: str, items: Sequence[Dict[str, Any]],
                     insight_id: Optional[str] = None) -> List[TeacherTodo]:
        """Create several to-dos sharing a teacher and (optionally) an originating insight."""
        todos = [
            TeacherTodo(teacher_id=teacher_id, insight_id=item.get("insight_id", insight_id), **{
                key: value for key, value in item.items() if key not in {"teacher_id", "insight_id"}
            })
            for item in items
        ]
        return self.synchronizer.create_todos(todos)

    def list(self, teacher_id: str, status: Optional[str] = None) -> List[TeacherTodo]:
        todos = self.todos.get_for_teacher(teacher_id, status)
        return sorted(todos, key=lambda todo: (todo.created_at, todo.id))

    def get(self, todo_id: str) -> Optional[TeacherTodo]:
        return self.todos.load(todo_id)

    def complete(self, todo_id: str) -> Optional[TeacherTodo]:
        return self.synchronizer.complete_todo(todo_id)

    def reopen(self, todo_id: str) -> Optional[TeacherTodo]:
        return self.synchronizer.reopen_todo(todo_id)

    def supersede(self, todo_id: str) -> Optional[TeacherTodo]:
        return self.synchronizer.supersede_todo(todo_id)

    def delete(self, todo_id: str, reactivate_insight: bool = False) -> bool:
        return self.synchronizer.delete_todo(todo_id, reactivate_insight=reactivate_insight)

    def counts(self, teacher_id: str) -> Dict[str, int]:
        return todo_counts(self.todos.get_for_teacher(teacher_id))

    def grouped(self, teacher_id: str, by: str = "class") -> Dict[str, Any]:
        todos = self.list(teacher_id)
        if by == "student":
            return group_todos_by_student(todos)
        return group_todos_by_class(todos)
