"""Serialization helpers shared by the plan routes."""
from __future__ import annotations

from typing import Collection, List, Optional, Sequence

from nextstep.api.schemas.plan import FlatTaskPayload, PlanSummary, ProgressPayload
from nextstep.db.models.plan import PlanRecord
from nextstep.services.planner import FlatTask, ProgressSnapshot, flatten_plan, is_ready, progress_snapshot
from nextstep.services.plan_store import stored_completed_ids, stored_plan


def serialize_flat_task(task: FlatTask, completed_ids: Collection[str]) -> FlatTaskPayload:
    return FlatTaskPayload(
        id=task.id,
        text=task.text,
        minutes=task.minutes,
        category=task.category,
        success_criteria=task.success_criteria,
        prereqs=list(task.prereqs),
        week=task.week,
        milestone_name=task.milestone_name,
        completed=task.id in completed_ids,
        ready=is_ready(task, completed_ids),
    )


def serialize_optional_task(task: Optional[FlatTask], completed_ids: Collection[str]) -> Optional[FlatTaskPayload]:
    return serialize_flat_task(task, completed_ids) if task else None


def serialize_flat_tasks(tasks: Sequence[FlatTask], completed_ids: Collection[str]) -> List[FlatTaskPayload]:
    completed = frozenset(completed_ids)
    return [serialize_flat_task(task, completed) for task in tasks]


def serialize_progress(snapshot: ProgressSnapshot) -> ProgressPayload:
    return ProgressPayload(
        total=snapshot.total,
        completed=snapshot.completed,
        percentage=snapshot.percentage,
        band=snapshot.band.key,
        band_label=snapshot.band.label,
    )


def build_plan_summary(record: PlanRecord) -> PlanSummary:
    plan = stored_plan(record)
    snapshot = progress_snapshot(flatten_plan(plan), stored_completed_ids(record))
    return PlanSummary(
        plan_id=record.id,
        goal_text=record.goal_text,
        target_role=record.target_role,
        title=plan.title,
        summary=plan.summary,
        progress=serialize_progress(snapshot),
        archived=bool(record.archived),
        archived_at=record.archived_at,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )
