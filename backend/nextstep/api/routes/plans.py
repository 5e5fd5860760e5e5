"""Plan generation, storage and listing routes."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from nextstep.api.deps import get_plan_or_404, validation_http_error
from nextstep.api.schemas.plan import (
    ArchiveRequest,
    ArchiveResponse,
    GeneratePlanRequest,
    GeneratePlanResponse,
    PlanDetailResponse,
    PlanListResponse,
    SavePlanRequest,
    SavePlanResponse,
)
from nextstep.core.config import settings
from nextstep.core.context import bind_plan_id
from nextstep.core.errors import GenerationError, PlanValidationError
from nextstep.db.deps import get_db
from nextstep.observability.tracing import log_metric, trace
from nextstep.services.llm_client import TextGenerator, get_text_generator
from nextstep.services.plan_generator import generate_plan
from nextstep.services.plan_schema import normalize_skill_level, parse_plan
from nextstep.services.plan_store import (
    create_plan_record,
    list_plan_records,
    record_action,
    set_archived,
    stored_completed_ids,
    stored_plan,
)
from nextstep.services.plan_views import build_plan_summary, serialize_optional_task, serialize_progress
from nextstep.services.planner import flatten_plan, get_next_ready_task, progress_snapshot

router = APIRouter()


@router.post("/plans/generate", response_model=GeneratePlanResponse, tags=["plans"])
def generate_plan_endpoint(
    payload: GeneratePlanRequest,
    http_request: Request,
    generator: Optional[TextGenerator] = Depends(get_text_generator),
) -> GeneratePlanResponse:
    """Generate a validated plan without storing it."""
    request_id = getattr(http_request.state, "request_id", None)
    try:
        skill_level = normalize_skill_level(payload.skill_level)
    except PlanValidationError as exc:
        raise validation_http_error(exc) from exc

    start_time = datetime.now(timezone.utc)
    success = False
    try:
        plan = generate_plan(
            payload.goal_text,
            hours_per_week=payload.hours_per_week or settings.default_hours_per_week,
            timeline_weeks=payload.timeline_weeks or settings.default_timeline_weeks,
            skill_level=skill_level,
            target_role=payload.target_role,
            generator=generator,
            request_id=request_id,
        )
        success = True
    except GenerationError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to generate plan. Please try again.",
        ) from exc
    finally:
        latency_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
        log_metric("plan.generate.success", 1 if success else 0)
        log_metric("plan.generate.request_latency_ms", latency_ms)

    return GeneratePlanResponse(plan=plan.to_document(), request_id=request_id or "")


@router.post("/plans", response_model=SavePlanResponse, status_code=status.HTTP_201_CREATED, tags=["plans"])
def save_plan(
    payload: SavePlanRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> SavePlanResponse:
    """Store a generated plan with an empty completion set."""
    request_id = getattr(http_request.state, "request_id", None)
    goal_text = payload.goal_text.strip()
    if not goal_text:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="goal_text is required")

    try:
        skill_level = normalize_skill_level(payload.skill_level)
        plan = parse_plan(payload.plan).unwrap()
    except PlanValidationError as exc:
        raise validation_http_error(exc) from exc

    metadata: Dict[str, Any] = {
        "route": "/plans",
        "user_id": str(payload.user_id),
        "request_id": request_id,
    }
    try:
        with trace("plan.save", metadata=metadata, user_id=str(payload.user_id), request_id=request_id):
            record = create_plan_record(
                db,
                user_id=payload.user_id,
                goal_text=goal_text,
                plan=plan,
                hours_per_week=payload.hours_per_week or settings.default_hours_per_week,
                timeline_weeks=payload.timeline_weeks or settings.default_timeline_weeks,
                skill_level=skill_level,
                target_role=(payload.target_role or "").strip() or None,
            )
            db.commit()
    except Exception:
        db.rollback()
        raise

    log_metric("plan.save.success", 1, metadata={"user_id": str(payload.user_id)})
    log_metric("plan.save.total_tasks", len(flatten_plan(plan)), metadata={"plan_id": str(record.id)})
    return SavePlanResponse(plan_id=record.id, request_id=request_id or "")


@router.get("/plans", response_model=PlanListResponse, tags=["plans"])
def list_plans(
    http_request: Request,
    user_id: UUID = Query(..., description="User ID owning the plans"),
    include_archived: bool = Query(True),
    db: Session = Depends(get_db),
) -> PlanListResponse:
    """List a user's plans, most recently updated first."""
    request_id = getattr(http_request.state, "request_id", None)
    with trace(
        "plan.list",
        metadata={"route": "/plans", "include_archived": include_archived},
        user_id=str(user_id),
        request_id=request_id,
    ):
        records = list_plan_records(db, user_id, include_archived=include_archived)
        summaries = [build_plan_summary(record) for record in records]

    log_metric("plan.list.count", len(summaries), metadata={"user_id": str(user_id)})
    return PlanListResponse(user_id=user_id, plans=summaries, request_id=request_id or "")


@router.get("/plans/{plan_id}", response_model=PlanDetailResponse, tags=["plans"])
def get_plan(
    plan_id: UUID,
    http_request: Request,
    user_id: UUID = Query(..., description="User ID owning the plan"),
    db: Session = Depends(get_db),
) -> PlanDetailResponse:
    """Load a stored plan with its completion state, progress and next step."""
    request_id = getattr(http_request.state, "request_id", None)
    record = get_plan_or_404(db, plan_id, user_id)
    with bind_plan_id(plan_id):
        plan = stored_plan(record)
        completed_ids = stored_completed_ids(record)
        completed = frozenset(completed_ids)
        flat = flatten_plan(plan)

    return PlanDetailResponse(
        plan_id=record.id,
        user_id=record.user_id,
        goal_text=record.goal_text,
        target_role=record.target_role,
        hours_per_week=record.hours_per_week,
        timeline_weeks=record.timeline_weeks,
        skill_level=record.skill_level,
        plan=plan.to_document(),
        completed_task_ids=completed_ids,
        archived=bool(record.archived),
        progress=serialize_progress(progress_snapshot(flat, completed)),
        next_task=serialize_optional_task(get_next_ready_task(flat, completed), completed),
        created_at=record.created_at,
        updated_at=record.updated_at,
        request_id=request_id or "",
    )


@router.post("/plans/{plan_id}/archive", response_model=ArchiveResponse, tags=["plans"])
def archive_plan(
    plan_id: UUID,
    payload: ArchiveRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> ArchiveResponse:
    """Archive or unarchive a plan."""
    request_id = getattr(http_request.state, "request_id", None)
    with bind_plan_id(plan_id):
        try:
            record = get_plan_or_404(db, plan_id, payload.user_id, for_update=True)
            changed = set_archived(record, payload.archived)
            if changed:
                record_action(
                    db,
                    record,
                    "plan_archived" if payload.archived else "plan_unarchived",
                    {"request_id": request_id},
                    reason="Plan archive flag changed",
                )
            db.commit()
        except HTTPException:
            db.rollback()
            raise
        except Exception:
            db.rollback()
            raise

    log_metric("plan.archive.changed", 1 if changed else 0, metadata={"plan_id": str(plan_id)})
    return ArchiveResponse(
        plan_id=record.id,
        archived=bool(record.archived),
        archived_at=record.archived_at,
        request_id=request_id or "",
    )
