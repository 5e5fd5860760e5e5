"""Schemas for plan endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class GeneratePlanRequest(BaseModel):
    goal_text: str = Field(..., min_length=1, max_length=2000)
    target_role: Optional[str] = Field(default=None, max_length=200)
    hours_per_week: Optional[int] = Field(default=None, ge=1, le=80)
    timeline_weeks: Optional[int] = Field(default=None, ge=1, le=52)
    skill_level: Optional[str] = Field(default=None, description="beginner, intermediate or advanced")


class GeneratePlanResponse(BaseModel):
    plan: Dict[str, Any]
    request_id: str


class SavePlanRequest(GeneratePlanRequest):
    user_id: UUID
    plan: Dict[str, Any]


class SavePlanResponse(BaseModel):
    plan_id: UUID
    request_id: str


class FlatTaskPayload(BaseModel):
    id: str
    text: str
    minutes: int
    category: str
    success_criteria: str
    prereqs: List[str]
    week: int
    milestone_name: str
    completed: bool = False
    ready: bool = False


class ProgressPayload(BaseModel):
    total: int
    completed: int
    percentage: int = Field(..., ge=0, le=100)
    band: str
    band_label: str


class PlanSummary(BaseModel):
    plan_id: UUID
    goal_text: str
    target_role: Optional[str]
    title: str
    summary: str
    progress: ProgressPayload
    archived: bool
    archived_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class PlanListResponse(BaseModel):
    user_id: UUID
    plans: List[PlanSummary]
    request_id: str


class PlanDetailResponse(BaseModel):
    plan_id: UUID
    user_id: UUID
    goal_text: str
    target_role: Optional[str]
    hours_per_week: int
    timeline_weeks: int
    skill_level: str
    plan: Dict[str, Any]
    completed_task_ids: List[str]
    archived: bool
    progress: ProgressPayload
    next_task: Optional[FlatTaskPayload]
    created_at: datetime
    updated_at: datetime
    request_id: str


class PlanTasksResponse(BaseModel):
    plan_id: UUID
    tasks: List[FlatTaskPayload]
    request_id: str


class NextTaskResponse(BaseModel):
    plan_id: UUID
    next_task: Optional[FlatTaskPayload]
    blocked_count: int
    request_id: str


class ProgressResponse(BaseModel):
    plan_id: UUID
    progress: ProgressPayload
    request_id: str


class CompletionRequest(BaseModel):
    user_id: UUID
    task_id: str = Field(..., min_length=1)
    completed: Optional[bool] = Field(default=None, description="Omit to toggle the current state.")


class CompletionResponse(BaseModel):
    plan_id: UUID
    task_id: str
    completed: bool
    completed_task_ids: List[str]
    progress: ProgressPayload
    next_task: Optional[FlatTaskPayload]
    request_id: str


class ArchiveRequest(BaseModel):
    user_id: UUID
    archived: bool


class ArchiveResponse(BaseModel):
    plan_id: UUID
    archived: bool
    archived_at: Optional[datetime]
    request_id: str


class ReplanRequestPayload(BaseModel):
    user_id: UUID
    task_ids: Optional[List[str]] = Field(default=None, description="Incomplete tasks to replace; defaults to all.")
    timeline_weeks: Optional[int] = Field(default=None, ge=1, le=52)
    start_week: Optional[int] = Field(default=None, ge=1)
    constraints: Optional[str] = Field(default=None, max_length=1000)
    feedback: Optional[str] = Field(default=None, max_length=1000)


class ReplanResponse(BaseModel):
    plan_id: UUID
    plan: Dict[str, Any]
    completed_task_ids: List[str]
    removed_task_ids: List[str]
    added_task_ids: List[str]
    dropped_prereqs: int
    start_week: int
    timeline_weeks: int
    progress: ProgressPayload
    next_task: Optional[FlatTaskPayload]
    request_id: str
