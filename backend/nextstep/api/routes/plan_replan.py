"""Reroute endpoint: replace the remaining work of a plan."""
from __future__ import annotations

from time import perf_counter
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from nextstep.api.deps import get_plan_or_404, validation_http_error
from nextstep.api.schemas.plan import ReplanRequestPayload, ReplanResponse
from nextstep.core.context import bind_plan_id
from nextstep.core.errors import GenerationError, PlanValidationError, ReplanConflictError
from nextstep.db.deps import get_db
from nextstep.observability.tracing import log_metric, trace
from nextstep.services.llm_client import TextGenerator, get_text_generator
from nextstep.services.plan_generator import generate_replan_tasks
from nextstep.services.plan_store import record_action, stored_completed_ids, stored_plan, write_plan_state
from nextstep.services.plan_views import serialize_optional_task, serialize_progress
from nextstep.services.planner import flatten_plan, get_next_ready_task, progress_snapshot
from nextstep.services.replan import ReplanOutcome, ReplanRequest, run_replan

router = APIRouter()


@router.post("/plans/{plan_id}/replan", response_model=ReplanResponse, tags=["replan"])
def replan_plan(
    plan_id: UUID,
    payload: ReplanRequestPayload,
    http_request: Request,
    db: Session = Depends(get_db),
    generator: Optional[TextGenerator] = Depends(get_text_generator),
) -> ReplanResponse:
    """
    Replace incomplete tasks with a freshly generated batch.

    Generation runs outside the row lock. The merge is written only if the
    plan is still at the version the batch was generated from; any failure
    leaves the stored plan and completion set exactly as they were.
    """
    request_id = getattr(http_request.state, "request_id", None)
    metadata: Dict[str, Any] = {
        "route": f"/plans/{plan_id}/replan",
        "requested_task_ids": len(payload.task_ids) if payload.task_ids is not None else None,
        "request_id": request_id,
    }

    start_time = perf_counter()
    success = False
    outcome: ReplanOutcome | None = None
    with bind_plan_id(plan_id):
        try:
            with trace("plan.replan", metadata=metadata, user_id=str(payload.user_id), request_id=request_id):
                record = get_plan_or_404(db, plan_id, payload.user_id)
                plan = stored_plan(record)
                completed_ids = stored_completed_ids(record)
                base_version = record.version
                goal_text = record.goal_text
                total_weeks = record.timeline_weeks
                # End the read transaction; the model call can take a while.
                db.rollback()

                def _generate(request: ReplanRequest) -> Any:
                    return generate_replan_tasks(request, generator, request_id=request_id)

                outcome = run_replan(
                    plan,
                    completed_ids,
                    goal_text=goal_text,
                    generate=_generate,
                    timeline_weeks=payload.timeline_weeks,
                    total_weeks=total_weeks,
                    task_ids=payload.task_ids,
                    start_week=payload.start_week,
                    constraints=payload.constraints,
                    feedback=payload.feedback,
                )

                record = get_plan_or_404(db, plan_id, payload.user_id, for_update=True)
                if record.version != base_version:
                    raise ReplanConflictError(f"plan {plan_id} changed during replan")
                write_plan_state(record, plan=outcome.plan, completed_ids=outcome.completed_ids)
                record_action(
                    db,
                    record,
                    "plan_replanned",
                    {
                        "removed_task_ids": outcome.removed_ids,
                        "added_task_ids": outcome.added_ids,
                        "dropped_prereqs": outcome.dropped_prereqs,
                        "start_week": outcome.start_week,
                        "timeline_weeks": outcome.timeline_weeks,
                        "request_id": request_id,
                    },
                    reason=payload.feedback or "Remaining tasks rerouted",
                )
                db.commit()
                success = True
        except HTTPException:
            db.rollback()
            raise
        except ReplanConflictError as exc:
            db.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Plan changed while the replan was generated; please retry",
            ) from exc
        except PlanValidationError as exc:
            db.rollback()
            if exc.field.startswith("tasks"):
                raise HTTPException(
                    status_code=status.HTTP_502_BAD_GATEWAY,
                    detail={"message": "Generated tasks failed validation", **exc.to_detail()},
                ) from exc
            raise validation_http_error(exc) from exc
        except GenerationError as exc:
            db.rollback()
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Failed to generate replacement tasks. Please try again.",
            ) from exc
        except Exception:
            db.rollback()
            raise
        finally:
            latency_ms = (perf_counter() - start_time) * 1000
            log_metric("plan.replan.success", 1 if success else 0, metadata={"plan_id": str(plan_id)})
            log_metric("plan.replan.latency_ms", latency_ms, metadata={"plan_id": str(plan_id)})

    completed = frozenset(outcome.completed_ids)
    flat = flatten_plan(outcome.plan)
    return ReplanResponse(
        plan_id=plan_id,
        plan=outcome.plan.to_document(),
        completed_task_ids=outcome.completed_ids,
        removed_task_ids=outcome.removed_ids,
        added_task_ids=outcome.added_ids,
        dropped_prereqs=outcome.dropped_prereqs,
        start_week=outcome.start_week,
        timeline_weeks=outcome.timeline_weeks,
        progress=serialize_progress(progress_snapshot(flat, completed)),
        next_task=serialize_optional_task(get_next_ready_task(flat, completed), completed),
        request_id=request_id or "",
    )
