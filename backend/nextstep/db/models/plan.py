"""Stored plan document ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from nextstep.db.base import Base
from nextstep.db.types import JSONBCompat


class PlanRecord(Base):
    __tablename__ = "plans"
    __table_args__ = (
        Index("ix_plans_user_id", "user_id"),
        Index("ix_plans_user_updated", "user_id", "updated_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    goal_text = Column(Text, nullable=False)
    target_role = Column(Text, nullable=True)
    hours_per_week = Column(Integer, nullable=False)
    timeline_weeks = Column(Integer, nullable=False)
    skill_level = Column(String(length=20), nullable=False, server_default=sa_text("'beginner'"))
    # Whole Plan document (title/summary/weeks); replaced wholesale, never patched.
    plan_json = Column("plan", JSONBCompat, nullable=False)
    completed_task_ids = Column(JSONBCompat, nullable=False, default=list)
    archived = Column(Boolean, nullable=False, server_default=sa_text("false"))
    archived_at = Column(DateTime(timezone=True), nullable=True)
    # Bumped on every write; replan merges only against the version it was generated from.
    version = Column(Integer, nullable=False, default=1, server_default=sa_text("1"))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
