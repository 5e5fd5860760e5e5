"""Schemas for coaching endpoints."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class CoachingRequest(BaseModel):
    user_id: UUID


class MicroHelpResponse(BaseModel):
    plan_id: UUID
    task_id: str
    smaller_step: str
    three_minute_version: str
    request_id: str


class ExplanationResponse(BaseModel):
    plan_id: UUID
    scope: str
    week: Optional[int] = None
    task_id: Optional[str] = None
    explanation: str
    request_id: str
