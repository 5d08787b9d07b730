"""SQLite-backed record stores.

Every collection is kept as JSON documents in a single ``records`` table and
accessed through a small store object.  Stores are created per database file
and passed to the engines that need them; nothing in here is a module-level
singleton.
"""

import json
import logging
import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel

from db_pool import SQLiteConnectionPool
from schemas import (
    ActionOutcome,
    Badge,
    ClassRoster,
    Insight,
    Session,
    StudentAssignment,
    TeacherTodo,
    utcnow,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class Database:
    """Owns the connection pool for one SQLite file."""

    def __init__(self, path: str, max_connections: int = 10):
        self.path = path
        self._pool = SQLiteConnectionPool(path, max_connections=max_connections)

    def _conn(self):
        return self._pool.get_connection()

    def _exec(self, sql: str, params: Iterable = ()):
        with self._pool.get_connection() as con:
            cur = con.execute(sql, params)
            con.commit()
            return cur

    def _executemany(self, sql: str, rows: Sequence[Sequence[Any]]) -> None:
        with self._pool.get_connection() as con:
            con.executemany(sql, rows)
            con.commit()

    def _query(self, sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
        with self._pool.get_connection() as con:
            cur = con.execute(sql, params)
            return cur.fetchall()

    def init(self) -> None:
        self._exec(
            """
            CREATE TABLE IF NOT EXISTS records (
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                payload TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (collection, id)
            )
            """
        )
        self._exec("CREATE INDEX IF NOT EXISTS idx_records_collection ON records(collection)")

    def close(self) -> None:
        self._pool.close_all()


class RecordStore(Generic[ModelT]):
    """Key-value collection of pydantic records."""

    collection: str = ""
    model: Type[ModelT]

    def __init__(self, database: Database):
        self.database = database

    def _key(self, record: ModelT) -> str:
        return record.id  # type: ignore[attr-defined]

    def _decode(self, payload: str) -> ModelT:
        return self.model.model_validate_json(payload)

    def load(self, record_id: str) -> Optional[ModelT]:
        rows = self.database._query(
            "SELECT payload FROM records WHERE collection=? AND id=?",
            (self.collection, record_id),
        )
        if not rows:
            return None
        return self._decode(rows[0]["payload"])

    def save(self, record: ModelT) -> ModelT:
        self.database._exec(
            """
            INSERT INTO records (collection, id, payload, updated_at)
            VALUES (?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(collection, id) DO UPDATE SET
                payload=excluded.payload,
                updated_at=CURRENT_TIMESTAMP
            """,
            (self.collection, self._key(record), record.model_dump_json()),
        )
        return record

    def save_many(self, records: Sequence[ModelT]) -> None:
        if not records:
            return
        self.database._executemany(
            """
            INSERT INTO records (collection, id, payload, updated_at)
            VALUES (?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(collection, id) DO UPDATE SET
                payload=excluded.payload,
                updated_at=CURRENT_TIMESTAMP
            """,
            [(self.collection, self._key(record), record.model_dump_json()) for record in records],
        )

    def delete(self, record_id: str) -> bool:
        cur = self.database._exec(
            "DELETE FROM records WHERE collection=? AND id=?",
            (self.collection, record_id),
        )
        return cur.rowcount > 0

    def get_all(self) -> List[ModelT]:
        rows = self.database._query(
            "SELECT payload FROM records WHERE collection=? ORDER BY rowid",
            (self.collection,),
        )
        return [self._decode(row["payload"]) for row in rows]

    def filter(self, predicate: Callable[[ModelT], bool]) -> List[ModelT]:
        return [record for record in self.get_all() if predicate(record)]

    def update(self, record_id: str, mutate: Callable[[ModelT], None]) -> Optional[ModelT]:
        """Load, mutate in place and save one record.  Returns None if it does not exist."""
        record = self.load(record_id)
        if record is None:
            return None
        mutate(record)
        return self.save(record)


def active_sort_key(insight: Insight):
    return (-insight.priority, insight.created_at, insight.id)


class InsightStore(RecordStore[Insight]):
    collection = "insights"
    model = Insight

    def get_active(self, limit: Optional[int] = None) -> List[Insight]:
        active = sorted(self.get_by_status("active"), key=active_sort_key)
        return active[:limit] if limit is not None else active

    def get_by_status(self, status: str) -> List[Insight]:
        return self.filter(lambda insight: insight.status == status)

    def get_by_assignment(self, assignment_id: str) -> List[Insight]:
        return self.filter(lambda insight: insight.assignment_id == assignment_id)

    def get_by_student(self, student_id: str) -> List[Insight]:
        return self.filter(lambda insight: student_id in insight.student_ids)

    def get_by_resolution(self, resolution_status: str) -> List[Insight]:
        return self.filter(lambda insight: insight.resolution_status == resolution_status)

    def get_recent(self, limit: int = 20) -> List[Insight]:
        ordered = sorted(self.get_all(), key=lambda insight: (insight.created_at, insight.id), reverse=True)
        return ordered[:limit]

    def has_pending_for(self, student_id: str, assignment_id: str) -> bool:
        return any(
            insight.status == "pending"
            and student_id in insight.student_ids
            and insight.assignment_id == assignment_id
            for insight in self.get_all()
        )

    def prune_old(self, days: int = 30, now: Optional[datetime] = None) -> int:
        """Delete terminal insights whose last review (or creation) is older than ``days``."""
        cutoff = (now or utcnow()) - timedelta(days=days)
        removed = 0
        for insight in self.get_all():
            if insight.status not in {"resolved", "dismissed", "reviewed"}:
                continue
            reference = insight.reviewed_at or insight.resolved_at or insight.created_at
            if reference < cutoff and self.delete(insight.id):
                removed += 1
        if removed:
            logger.info("Pruned %s insights older than %s days", removed, days)
        return removed

    def clear_active(self) -> int:
        removed = 0
        for insight in self.get_by_status("active"):
            if self.delete(insight.id):
                removed += 1
        return removed


class OutcomeStore(RecordStore[ActionOutcome]):
    """Append-only log of teacher actions."""

    collection = "outcomes"
    model = ActionOutcome

    def save(self, record: ActionOutcome) -> ActionOutcome:
        if self.load(record.id) is not None:
            raise ValueError(f"outcome {record.id} already recorded")
        return super().save(record)

    def save_many(self, records: Sequence[ActionOutcome]) -> None:
        for record in records:
            self.save(record)

    def update(self, record_id, mutate):
        raise ValueError("outcomes are immutable")

    def get_for_insight(self, insight_id: str) -> List[ActionOutcome]:
        return self.filter(lambda outcome: outcome.insight_id == insight_id)


class TodoStore(RecordStore[TeacherTodo]):
    collection = "teacher_todos"
    model = TeacherTodo

    def get_for_teacher(self, teacher_id: str, status: Optional[str] = None) -> List[TeacherTodo]:
        return self.filter(
            lambda todo: todo.teacher_id == teacher_id and (status is None or todo.status == status)
        )

    def get_for_insight(self, insight_id: str) -> List[TeacherTodo]:
        return self.filter(lambda todo: todo.insight_id == insight_id)


class AssignmentStore(RecordStore[StudentAssignment]):
    collection = "student_assignments"
    model = StudentAssignment

    def load_pair(self, assignment_id: str, student_id: str) -> Optional[StudentAssignment]:
        return self.load(StudentAssignment.key(assignment_id, student_id))

    def get_for_assignment(self, assignment_id: str) -> List[StudentAssignment]:
        return self.filter(lambda record: record.assignment_id == assignment_id)

    def get_for_student(self, student_id: str) -> List[StudentAssignment]:
        return self.filter(lambda record: record.student_id == student_id)


class SessionStore(RecordStore[Session]):
    collection = "sessions"
    model = Session

    def get_completed(self) -> List[Session]:
        return self.filter(lambda session: session.status == "completed")

    def latest_completed(self, assignment_id: str, student_id: str) -> Optional[Session]:
        candidates = [
            session
            for session in self.get_completed()
            if session.assignment_id == assignment_id and session.student_id == student_id
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda session: session.completed_at or session.started_at)


class BadgeStore(RecordStore[Badge]):
    collection = "badges"
    model = Badge

    def get_for_student(self, student_id: str) -> List[Badge]:
        return self.filter(lambda badge: badge.student_id == student_id)


class ClassStore(RecordStore[ClassRoster]):
    collection = "classes"
    model = ClassRoster


class SettingsStore:
    """Per-teacher threshold overrides, stored as plain JSON objects."""

    collection = "threshold_settings"

    def __init__(self, database: Database):
        self.database = database

    def load(self, teacher_id: str) -> Optional[Dict[str, Any]]:
        rows = self.database._query(
            "SELECT payload FROM records WHERE collection=? AND id=?",
            (self.collection, teacher_id),
        )
        if not rows:
            return None
        return json.loads(rows[0]["payload"])

    def save(self, teacher_id: str, overrides: Dict[str, Any]) -> None:
        self.database._exec(
            """
            INSERT INTO records (collection, id, payload, updated_at)
            VALUES (?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(collection, id) DO UPDATE SET
                payload=excluded.payload,
                updated_at=CURRENT_TIMESTAMP
            """,
            (self.collection, teacher_id, json.dumps(overrides)),
        )

    def delete(self, teacher_id: str) -> bool:
        cur = self.database._exec(
            "DELETE FROM records WHERE collection=? AND id=?",
            (self.collection, teacher_id),
        )
        return cur.rowcount > 0


@dataclass
class Stores:
    database: Database
    insights: InsightStore
    outcomes: OutcomeStore
    todos: TodoStore
    assignments: AssignmentStore
    sessions: SessionStore
    badges: BadgeStore
    classes: ClassStore
    settings: SettingsStore


def open_stores(path: Optional[str] = None) -> Stores:
    """Open (and initialise) every store backed by the SQLite file at ``path``."""
    database = Database(path or os.getenv("DB_PATH", "data.db"))
    database.init()
    return Stores(
        database=database,
        insights=InsightStore(database),
        outcomes=OutcomeStore(database),
        todos=TodoStore(database),
        assignments=AssignmentStore(database),
        sessions=SessionStore(database),
        badges=BadgeStore(database),
        classes=ClassStore(database),
        settings=SettingsStore(database),
    )
