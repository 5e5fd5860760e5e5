"""Route-level helpers shared by the plan routers."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from nextstep.core.errors import PlanValidationError
from nextstep.db.models.plan import PlanRecord
from nextstep.services.plan_store import PlanNotFoundError, PlanOwnershipError, load_plan_record


def get_plan_or_404(
    db: Session,
    plan_id: UUID,
    user_id: Optional[UUID] = None,
    *,
    for_update: bool = False,
) -> PlanRecord:
    try:
        return load_plan_record(db, plan_id, user_id=user_id, for_update=for_update)
    except PlanNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plan not found")
    except PlanOwnershipError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Plan does not belong to user")


def validation_http_error(exc: PlanValidationError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.to_detail())
