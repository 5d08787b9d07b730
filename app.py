# app.py — Classroom Insights v1.0.0
# - Recommendation generation, lifecycle actions and checklist submission
# - Teacher to-dos kept in sync with assignment review state
# - Attention dashboard derived from active insights

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Callable, Dict, List, Literal, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from db import open_stores
from engines.lifecycle import InvalidTransitionError
from engines.review_sync import render_notes, review_state_label
from engines.validation import ValidationError
from env_validation import configure_logging, get_env_bool, get_env_int, validate_environment
from recommendations import InsightService
from schemas import ClassRoster, Session, TeacherTodo

logger = logging.getLogger(__name__)

_service: Optional[InsightService] = None


def get_service() -> InsightService:
    global _service
    if _service is None:
        _service = InsightService(
            open_stores(os.getenv("DB_PATH", "data.db")),
            max_active=get_env_int("MAX_ACTIVE_RECOMMENDATIONS", 5),
            prune_after_days=get_env_int("PRUNE_AFTER_DAYS", 30),
        )
    return _service


def _default_teacher() -> str:
    return os.getenv("DEFAULT_TEACHER_ID", "educator")


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        validate_environment()
        configure_logging()
        service = get_service()
        if get_env_bool("REFRESH_ON_STARTUP"):
            result = service.refresh(_default_teacher())
            logger.info("Startup refresh generated %s insights", len(result.detection.generated))
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="Classroom Insights v1.0.0", version="1.0.0", lifespan=_lifespan)


def _call(func: Callable[..., Any], *args, missing: str = "not found", **kwargs) -> Any:
    """Run a service call, mapping domain errors onto HTTP status codes."""
    try:
        result = func(*args, **kwargs)
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except (ValidationError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if result is None:
        raise HTTPException(status_code=404, detail=missing)
    return result


# ---------- Request bodies ----------
class RefreshBody(BaseModel):
    teacher_id: Optional[str] = None
    clear_active: bool = False
    coach_intents: Dict[str, Literal["support-seeking", "enrichment-seeking", "mixed"]] = Field(default_factory=dict)


class ActorBody(BaseModel):
    teacher_id: Optional[str] = None


class FeedbackBody(BaseModel):
    feedback: Literal["helpful", "not-helpful"]
    note: Optional[str] = None


class BadgeBody(ActorBody):
    badge_type: str
    message: Optional[str] = None


class NoteBody(ActorBody):
    note_text: str


class ChecklistBody(ActorBody):
    action_keys: List[str]
    note_text: Optional[str] = None
    badge_type: Optional[str] = None
    badge_message: Optional[str] = None


class TodoBody(BaseModel):
    teacher_id: Optional[str] = None
    insight_id: Optional[str] = None
    action_key: str = "custom"
    label: str
    class_id: Optional[str] = None
    class_name: Optional[str] = None
    subject: Optional[str] = None
    assignment_id: Optional[str] = None
    assignment_title: Optional[str] = None
    student_ids: List[str] = Field(default_factory=list)
    student_names: List[str] = Field(default_factory=list)


class TodoBatchBody(BaseModel):
    teacher_id: Optional[str] = None
    insight_id: Optional[str] = None
    items: List[Dict[str, Any]]


class AssignBody(ActorBody):
    student_ids: List[str]
    class_id: Optional[str] = None
    title: Optional[str] = None


class ReviewActionsBody(ActorBody):
    badge_type: Optional[str] = None
    badge_message: Optional[str] = None
    todo_label: Optional[str] = None


# ---------- Recommendations ----------
@app.get("/recommendations")
def list_recommendations(status: Optional[str] = None, student_id: Optional[str] = None,
                         assignment_id: Optional[str] = None, limit: Optional[int] = None):
    service = get_service()
    if status == "active" and not student_id and not assignment_id:
        return service.get_active(limit)
    insights = service.list(status=status, student_id=student_id, assignment_id=assignment_id)
    return insights[:limit] if limit else insights


@app.post("/recommendations/refresh")
def refresh_recommendations(body: RefreshBody):
    service = get_service()
    result = service.refresh(
        body.teacher_id or _default_teacher(),
        clear_active=body.clear_active,
        coach_intents=body.coach_intents,
    )
    return result.as_dict()


@app.get("/recommendations/stats")
def recommendation_stats():
    return get_service().stats()


@app.get("/recommendations/settings/thresholds")
def get_thresholds(teacher_id: Optional[str] = None):
    return get_service().thresholds.get(teacher_id or _default_teacher())


@app.put("/recommendations/settings/thresholds")
def update_thresholds(updates: Dict[str, Any], teacher_id: Optional[str] = None):
    service = get_service()
    return _call(service.thresholds.update, teacher_id or _default_teacher(), updates)


@app.post("/recommendations/settings/thresholds/reset")
def reset_thresholds(teacher_id: Optional[str] = None):
    return get_service().thresholds.reset(teacher_id or _default_teacher())


@app.get("/recommendations/{insight_id}")
def get_recommendation(insight_id: str):
    return _call(get_service().get, insight_id, missing="recommendation not found")


@app.post("/recommendations/{insight_id}/review")
def review_recommendation(insight_id: str, body: ActorBody):
    service = get_service()
    return _call(service.lifecycle.mark_reviewed, insight_id, body.teacher_id or _default_teacher(),
                 missing="recommendation not found")


@app.post("/recommendations/{insight_id}/dismiss")
def dismiss_recommendation(insight_id: str, body: ActorBody):
    service = get_service()
    return _call(service.lifecycle.dismiss, insight_id, body.teacher_id or _default_teacher(),
                 missing="recommendation not found")


@app.post("/recommendations/{insight_id}/reactivate")
def reactivate_recommendation(insight_id: str):
    return _call(get_service().lifecycle.reactivate, insight_id, missing="recommendation not found")


@app.post("/recommendations/{insight_id}/feedback")
def recommendation_feedback(insight_id: str, body: FeedbackBody):
    service = get_service()
    return _call(service.lifecycle.add_feedback, insight_id, body.feedback, body.note,
                 missing="recommendation not found")


@app.get("/recommendations/{insight_id}/outcomes")
def recommendation_outcomes(insight_id: str):
    service = get_service()
    _call(service.get, insight_id, missing="recommendation not found")
    return service.stores.outcomes.get_for_insight(insight_id)


@app.post("/recommendations/{insight_id}/actions/reassign")
def reassign_recommendation(insight_id: str, body: ActorBody):
    service = get_service()
    return _call(service.actions.reassign, insight_id, body.teacher_id or _default_teacher(),
                 missing="recommendation not found")


@app.post("/recommendations/{insight_id}/actions/award-badge")
def award_badge(insight_id: str, body: BadgeBody):
    service = get_service()
    return _call(service.actions.award_badge, insight_id, body.badge_type,
                 body.teacher_id or _default_teacher(), message=body.message,
                 missing="recommendation not found")


@app.post("/recommendations/{insight_id}/actions/add-note")
def add_note(insight_id: str, body: NoteBody):
    service = get_service()
    return _call(service.actions.add_note, insight_id, body.note_text,
                 body.teacher_id or _default_teacher(), missing="recommendation not found")


@app.post("/recommendations/{insight_id}/actions/submit-checklist")
def submit_checklist(insight_id: str, body: ChecklistBody):
    service = get_service()
    result = _call(
        service.actions.submit_checklist,
        insight_id,
        body.action_keys,
        body.teacher_id or _default_teacher(),
        note_text=body.note_text,
        badge_type=body.badge_type,
        badge_message=body.badge_message,
        missing="recommendation not found",
    )
    return {
        "recommendation": result.insight,
        "outcome": result.outcome,
        "todos": result.todos,
        "executed": result.executed,
    }


# ---------- Teacher to-dos ----------
@app.get("/teacher-todos")
def list_todos(teacher_id: Optional[str] = None, status: Optional[str] = None,
               group_by: Optional[Literal["class", "student"]] = None):
    service = get_service()
    teacher = teacher_id or _default_teacher()
    if group_by:
        return service.todos.grouped(teacher, by=group_by)
    return service.todos.list(teacher, status)


@app.get("/teacher-todos/stats/counts")
def todo_counts(teacher_id: Optional[str] = None):
    return get_service().todos.counts(teacher_id or _default_teacher())


@app.post("/teacher-todos")
def create_todo(body: TodoBody):
    payload = body.model_dump()
    payload["teacher_id"] = body.teacher_id or _default_teacher()
    return _call(get_service().todos.create, TeacherTodo(**payload))


@app.post("/teacher-todos/batch")
def create_todo_batch(body: TodoBatchBody):
    service = get_service()
    return _call(service.todos.create_batch, body.teacher_id or _default_teacher(), body.items,
                 insight_id=body.insight_id)


@app.get("/teacher-todos/{todo_id}")
def get_todo(todo_id: str):
    return _call(get_service().todos.get, todo_id, missing="todo not found")


@app.post("/teacher-todos/{todo_id}/complete")
def complete_todo(todo_id: str):
    return _call(get_service().todos.complete, todo_id, missing="todo not found")


@app.post("/teacher-todos/{todo_id}/reopen")
def reopen_todo(todo_id: str):
    return _call(get_service().todos.reopen, todo_id, missing="todo not found")


@app.delete("/teacher-todos/{todo_id}")
def delete_todo(todo_id: str, reactivate: bool = False):
    deleted = get_service().todos.delete(todo_id, reactivate_insight=reactivate)
    if not deleted:
        raise HTTPException(status_code=404, detail="todo not found")
    return {"status": "deleted", "id": todo_id}


# ---------- Assignments & sessions ----------
@app.post("/classes")
def upsert_class(body: ClassRoster):
    return get_service().stores.classes.save(body)


@app.post("/assignments/{assignment_id}/assign")
def assign_work(assignment_id: str, body: AssignBody):
    service = get_service()
    return service.synchronizer.assign(
        assignment_id,
        body.student_ids,
        body.teacher_id or _default_teacher(),
        class_id=body.class_id,
        title=body.title,
    )


@app.post("/sessions")
def record_session(body: Session):
    service = get_service()
    record = service.synchronizer.record_completion(body)
    return {"session_id": body.id, "assignment": record}


@app.get("/sessions/{session_id}/notes")
def session_notes(session_id: str, audience: Literal["educator", "student"] = "educator"):
    session = _call(get_service().stores.sessions.load, session_id, missing="session not found")
    return {"session_id": session_id, "notes": render_notes(session, audience)}


def _assignment_view(record) -> Dict[str, Any]:
    payload = record.model_dump(mode="json")
    payload["review_state_label"] = review_state_label(record.review_state)
    return payload


@app.get("/assignments/{assignment_id}/students/{student_id}")
def assignment_state(assignment_id: str, student_id: str):
    record = _call(get_service().stores.assignments.load_pair, assignment_id, student_id,
                   missing="assignment not found")
    return _assignment_view(record)


@app.post("/assignments/{assignment_id}/students/{student_id}/review")
def review_assignment(assignment_id: str, student_id: str, body: ActorBody):
    service = get_service()
    record = _call(service.synchronizer.mark_reviewed, assignment_id, student_id,
                   body.teacher_id or _default_teacher(), missing="assignment not found")
    return _assignment_view(record)


@app.post("/assignments/{assignment_id}/students/{student_id}/reopen-review")
def reopen_assignment_review(assignment_id: str, student_id: str):
    record = _call(get_service().synchronizer.reopen_review, assignment_id, student_id,
                   missing="assignment not found")
    return _assignment_view(record)


@app.post("/assignments/{assignment_id}/students/{student_id}/review-actions")
def assignment_review_actions(assignment_id: str, student_id: str, body: ReviewActionsBody):
    service = get_service()
    record = _call(
        service.actions.submit_review_actions,
        assignment_id,
        student_id,
        body.teacher_id or _default_teacher(),
        badge_type=body.badge_type,
        badge_message=body.badge_message,
        todo_label=body.todo_label,
        missing="assignment not found",
    )
    return _assignment_view(record)


@app.post("/assignments/{assignment_id}/students/{student_id}/push")
def push_assignment(assignment_id: str, student_id: str):
    record = _call(get_service().synchronizer.push_back, assignment_id, student_id,
                   missing="assignment not found")
    return _assignment_view(record)


# ---------- Attention ----------
@app.get("/attention")
def attention_dashboard(teacher_id: Optional[str] = None):
    return asdict(get_service().attention(teacher_id or _default_teacher()))


@app.get("/attention/students/{student_id}")
def student_attention(student_id: str, teacher_id: Optional[str] = None):
    return asdict(get_service().student_attention(teacher_id or _default_teacher(), student_id))
