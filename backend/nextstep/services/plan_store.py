"""Persistence helpers for stored plans.

Plans are loaded and saved as whole documents. Writers lock the plan row
(`SELECT ... FOR UPDATE`) and bump `version`, so concurrent completion toggles
and replans against the same plan serialize instead of overwriting each other.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from nextstep.db.models.agent_action_log import AgentActionLog
from nextstep.db.models.plan import PlanRecord
from nextstep.db.models.user import User
from nextstep.services.plan_schema import Plan, SkillLevel, parse_plan

logger = logging.getLogger(__name__)


class PlanNotFoundError(LookupError):
    pass


class PlanOwnershipError(PermissionError):
    pass


def get_or_create_user(db: Session, user_id: UUID) -> User:
    """Fetch an existing user or create a new row safely."""
    user = db.get(User, user_id)
    if user:
        return user

    user = User(id=user_id)
    db.add(user)
    try:
        db.flush()
        return user
    except IntegrityError:
        db.rollback()
        existing = db.get(User, user_id)
        if existing:
            return existing
        raise


def create_plan_record(
    db: Session,
    *,
    user_id: UUID,
    goal_text: str,
    plan: Plan,
    hours_per_week: int,
    timeline_weeks: int,
    skill_level: SkillLevel,
    target_role: Optional[str] = None,
) -> PlanRecord:
    get_or_create_user(db, user_id)
    record = PlanRecord(
        user_id=user_id,
        goal_text=goal_text,
        target_role=target_role,
        hours_per_week=hours_per_week,
        timeline_weeks=timeline_weeks,
        skill_level=skill_level,
        plan_json=plan.to_document(),
        completed_task_ids=[],
        version=1,
    )
    db.add(record)
    db.flush()
    logger.info("Stored plan %s for user %s", record.id, user_id)
    return record


def load_plan_record(
    db: Session,
    plan_id: UUID,
    *,
    user_id: Optional[UUID] = None,
    for_update: bool = False,
) -> PlanRecord:
    """Fetch a plan row, optionally locking it; raises when missing or owned by someone else."""
    query = db.query(PlanRecord).filter(PlanRecord.id == plan_id)
    if for_update:
        query = query.with_for_update()
    record = query.one_or_none()
    if record is None:
        raise PlanNotFoundError(str(plan_id))
    if user_id is not None and record.user_id != user_id:
        raise PlanOwnershipError(str(plan_id))
    return record


def list_plan_records(db: Session, user_id: UUID, *, include_archived: bool = True) -> List[PlanRecord]:
    query = db.query(PlanRecord).filter(PlanRecord.user_id == user_id)
    if not include_archived:
        query = query.filter(PlanRecord.archived.is_(False))
    return query.order_by(desc(PlanRecord.updated_at), desc(PlanRecord.created_at)).all()


def stored_plan(record: PlanRecord) -> Plan:
    """Re-validate the stored document; a corrupt row surfaces as a validation error."""
    return parse_plan(record.plan_json).unwrap()


def stored_completed_ids(record: PlanRecord) -> List[str]:
    return [str(task_id) for task_id in (record.completed_task_ids or [])]


def write_plan_state(
    record: PlanRecord,
    *,
    completed_ids: Sequence[str],
    plan: Optional[Plan] = None,
) -> None:
    """Replace the completion list (and optionally the plan document) in one write."""
    if plan is not None:
        record.plan_json = plan.to_document()
    record.completed_task_ids = list(completed_ids)
    record.version = (record.version or 0) + 1
    record.updated_at = datetime.now(timezone.utc)


def set_archived(record: PlanRecord, archived: bool) -> bool:
    """Returns True when the flag actually changed."""
    if bool(record.archived) == archived:
        return False
    record.archived = archived
    record.archived_at = datetime.now(timezone.utc) if archived else None
    record.version = (record.version or 0) + 1
    record.updated_at = datetime.now(timezone.utc)
    return True


def record_action(
    db: Session,
    record: PlanRecord,
    action_type: str,
    payload: Dict[str, Any],
    reason: str,
) -> AgentActionLog:
    log = AgentActionLog(
        user_id=record.user_id,
        plan_id=record.id,
        action_type=action_type,
        action_payload={key: value for key, value in payload.items() if value is not None},
        reason=reason,
    )
    db.add(log)
    return log

