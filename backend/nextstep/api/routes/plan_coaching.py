"""Stuck-task micro-help and plain-language explanations for a stored plan."""
from __future__ import annotations

from typing import Callable, Optional, TypeVar
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Path, Request, status
from sqlalchemy.orm import Session

from nextstep.api.deps import get_plan_or_404
from nextstep.api.schemas.coaching import CoachingRequest, ExplanationResponse, MicroHelpResponse
from nextstep.core.context import bind_plan_id
from nextstep.core.errors import GenerationError
from nextstep.db.deps import get_db
from nextstep.observability.tracing import log_metric
from nextstep.services.coaching import explain_plan, explain_task, explain_week, generate_micro_help
from nextstep.services.llm_client import TextGenerator, get_text_generator
from nextstep.services.plan_store import stored_plan
from nextstep.services.planner import FlatTask, flatten_plan

router = APIRouter()

T = TypeVar("T")


def _find_task(flat_tasks, task_id: str) -> FlatTask:
    for task in flat_tasks:
        if task.id == task_id:
            return task
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found in plan")


def _coach(metric: str, plan_id: UUID, call: Callable[[], T]) -> T:
    success = False
    try:
        result = call()
        success = True
        return result
    except GenerationError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to generate coaching text. Please try again.",
        ) from exc
    finally:
        log_metric(metric, 1 if success else 0, metadata={"plan_id": str(plan_id)})


@router.post(
    "/plans/{plan_id}/tasks/{task_id}/micro-help",
    response_model=MicroHelpResponse,
    tags=["coaching"],
)
def task_micro_help(
    plan_id: UUID,
    task_id: str,
    payload: CoachingRequest,
    http_request: Request,
    db: Session = Depends(get_db),
    generator: Optional[TextGenerator] = Depends(get_text_generator),
) -> MicroHelpResponse:
    """Smaller first step and a 3-minute version of a task the user is stuck on."""
    request_id = getattr(http_request.state, "request_id", None)
    record = get_plan_or_404(db, plan_id, payload.user_id)
    with bind_plan_id(plan_id):
        task = _find_task(flatten_plan(stored_plan(record)), task_id)
        goal_text = record.goal_text
        db.rollback()
        micro_help = _coach(
            "coach.micro_help.success",
            plan_id,
            lambda: generate_micro_help(task, goal_text=goal_text, generator=generator, request_id=request_id),
        )

    return MicroHelpResponse(
        plan_id=plan_id,
        task_id=task.id,
        smaller_step=micro_help.smaller_step,
        three_minute_version=micro_help.three_minute_version,
        request_id=request_id or "",
    )


@router.post("/plans/{plan_id}/explain", response_model=ExplanationResponse, tags=["coaching"])
def explain_whole_plan(
    plan_id: UUID,
    payload: CoachingRequest,
    http_request: Request,
    db: Session = Depends(get_db),
    generator: Optional[TextGenerator] = Depends(get_text_generator),
) -> ExplanationResponse:
    request_id = getattr(http_request.state, "request_id", None)
    record = get_plan_or_404(db, plan_id, payload.user_id)
    with bind_plan_id(plan_id):
        plan = stored_plan(record)
        goal_text = record.goal_text
        db.rollback()
        explanation = _coach(
            "coach.explain.plan.success",
            plan_id,
            lambda: explain_plan(
                plan,
                total_tasks=len(flatten_plan(plan)),
                goal_text=goal_text,
                generator=generator,
                request_id=request_id,
            ),
        )

    return ExplanationResponse(plan_id=plan_id, scope="plan", explanation=explanation, request_id=request_id or "")


@router.post("/plans/{plan_id}/weeks/{week}/explain", response_model=ExplanationResponse, tags=["coaching"])
def explain_plan_week(
    plan_id: UUID,
    payload: CoachingRequest,
    http_request: Request,
    week: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    generator: Optional[TextGenerator] = Depends(get_text_generator),
) -> ExplanationResponse:
    request_id = getattr(http_request.state, "request_id", None)
    record = get_plan_or_404(db, plan_id, payload.user_id)
    with bind_plan_id(plan_id):
        target = next((item for item in stored_plan(record).weeks if item.week == week), None)
        if target is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Week not found in plan")
        goal_text = record.goal_text
        db.rollback()
        explanation = _coach(
            "coach.explain.week.success",
            plan_id,
            lambda: explain_week(target, goal_text=goal_text, generator=generator, request_id=request_id),
        )

    return ExplanationResponse(
        plan_id=plan_id,
        scope="week",
        week=week,
        explanation=explanation,
        request_id=request_id or "",
    )


@router.post("/plans/{plan_id}/tasks/{task_id}/explain", response_model=ExplanationResponse, tags=["coaching"])
def explain_plan_task(
    plan_id: UUID,
    task_id: str,
    payload: CoachingRequest,
    http_request: Request,
    db: Session = Depends(get_db),
    generator: Optional[TextGenerator] = Depends(get_text_generator),
) -> ExplanationResponse:
    request_id = getattr(http_request.state, "request_id", None)
    record = get_plan_or_404(db, plan_id, payload.user_id)
    with bind_plan_id(plan_id):
        task = _find_task(flatten_plan(stored_plan(record)), task_id)
        goal_text = record.goal_text
        db.rollback()
        explanation = _coach(
            "coach.explain.task.success",
            plan_id,
            lambda: explain_task(task, goal_text=goal_text, generator=generator, request_id=request_id),
        )

    return ExplanationResponse(
        plan_id=plan_id,
        scope="task",
        task_id=task.id,
        explanation=explanation,
        request_id=request_id or "",
    )
