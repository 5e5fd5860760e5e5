"""Task readiness, progress and completion routes."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from nextstep.api.deps import get_plan_or_404
from nextstep.api.schemas.plan import (
    CompletionRequest,
    CompletionResponse,
    NextTaskResponse,
    PlanTasksResponse,
    ProgressResponse,
)
from nextstep.core.context import bind_plan_id
from nextstep.db.deps import get_db
from nextstep.observability.tracing import log_metric, trace
from nextstep.services.plan_store import record_action, stored_completed_ids, stored_plan, write_plan_state
from nextstep.services.plan_views import (
    serialize_flat_tasks,
    serialize_optional_task,
    serialize_progress,
)
from nextstep.services.planner import (
    blocked_tasks,
    flatten_plan,
    get_next_ready_task,
    progress_snapshot,
    toggle_completion,
)

router = APIRouter()


@router.get("/plans/{plan_id}/tasks", response_model=PlanTasksResponse, tags=["progress"])
def list_plan_tasks(
    plan_id: UUID,
    http_request: Request,
    user_id: UUID = Query(..., description="User ID owning the plan"),
    db: Session = Depends(get_db),
) -> PlanTasksResponse:
    """Flattened tasks in document order with completion and readiness flags."""
    request_id = getattr(http_request.state, "request_id", None)
    record = get_plan_or_404(db, plan_id, user_id)
    completed = frozenset(stored_completed_ids(record))
    tasks = serialize_flat_tasks(flatten_plan(stored_plan(record)), completed)
    return PlanTasksResponse(plan_id=record.id, tasks=tasks, request_id=request_id or "")


@router.get("/plans/{plan_id}/next", response_model=NextTaskResponse, tags=["progress"])
def get_next_task(
    plan_id: UUID,
    http_request: Request,
    user_id: UUID = Query(..., description="User ID owning the plan"),
    db: Session = Depends(get_db),
) -> NextTaskResponse:
    """Return the next ready task, or null when everything is done or blocked."""
    request_id = getattr(http_request.state, "request_id", None)
    record = get_plan_or_404(db, plan_id, user_id)
    with bind_plan_id(plan_id), trace("plan.next", metadata={"route": f"/plans/{plan_id}/next"}, request_id=request_id):
        completed = frozenset(stored_completed_ids(record))
        flat = flatten_plan(stored_plan(record))
        next_task = get_next_ready_task(flat, completed)
        blocked = blocked_tasks(flat, completed)

    return NextTaskResponse(
        plan_id=record.id,
        next_task=serialize_optional_task(next_task, completed),
        blocked_count=len(blocked),
        request_id=request_id or "",
    )


@router.get("/plans/{plan_id}/progress", response_model=ProgressResponse, tags=["progress"])
def get_progress(
    plan_id: UUID,
    http_request: Request,
    user_id: UUID = Query(..., description="User ID owning the plan"),
    db: Session = Depends(get_db),
) -> ProgressResponse:
    request_id = getattr(http_request.state, "request_id", None)
    record = get_plan_or_404(db, plan_id, user_id)
    snapshot = progress_snapshot(flatten_plan(stored_plan(record)), stored_completed_ids(record))
    return ProgressResponse(plan_id=record.id, progress=serialize_progress(snapshot), request_id=request_id or "")


@router.post("/plans/{plan_id}/complete", response_model=CompletionResponse, tags=["progress"])
def update_task_completion(
    plan_id: UUID,
    payload: CompletionRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> CompletionResponse:
    """Mark a task complete or incomplete; omitting `completed` toggles it."""
    request_id = getattr(http_request.state, "request_id", None)
    metadata: Dict[str, Any] = {
        "route": f"/plans/{plan_id}/complete",
        "task_id": payload.task_id,
        "completed": payload.completed,
        "request_id": request_id,
    }

    changed = False
    start_time = datetime.now(timezone.utc)
    with bind_plan_id(plan_id):
        try:
            with trace("plan.task.complete", metadata=metadata, user_id=str(payload.user_id), request_id=request_id):
                record = get_plan_or_404(db, plan_id, payload.user_id, for_update=True)
                plan = stored_plan(record)
                current = stored_completed_ids(record)
                # Unknown ids may still be cleared so stale entries can be removed.
                if payload.task_id not in plan.task_ids() and payload.task_id not in current:
                    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found in plan")

                updated = toggle_completion(current, payload.task_id, payload.completed)
                if updated != current:
                    changed = True
                    write_plan_state(record, completed_ids=updated)
                    now_completed = payload.task_id in updated
                    record_action(
                        db,
                        record,
                        "task_completed" if now_completed else "task_uncompleted",
                        {"task_id": payload.task_id, "completed": now_completed, "request_id": request_id},
                        reason="Task completion toggled",
                    )
                db.commit()
        except HTTPException:
            db.rollback()
            raise
        except Exception:
            db.rollback()
            raise

    completed = frozenset(updated)
    flat = flatten_plan(plan)
    latency_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
    log_metric("task.complete.changed", 1 if changed else 0, metadata={"plan_id": str(plan_id)})
    log_metric("task.complete.latency_ms", latency_ms, metadata={"plan_id": str(plan_id)})

    return CompletionResponse(
        plan_id=plan_id,
        task_id=payload.task_id,
        completed=payload.task_id in completed,
        completed_task_ids=updated,
        progress=serialize_progress(progress_snapshot(flat, completed)),
        next_task=serialize_optional_task(get_next_ready_task(flat, completed), completed),
        request_id=request_id or "",
    )
