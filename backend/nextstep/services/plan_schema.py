"""Plan document schema and the parsers that guard it.

Plans arrive from the language model or from clients as loosely typed JSON.
Nothing reaches the planning engine until it has passed `parse_plan`, which
returns a tagged `ParseResult` naming the first offending field instead of
raising.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, Generic, List, Literal, Optional, Tuple, TypeVar, get_args
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError, field_validator, model_validator

from nextstep.core.errors import PlanValidationError

TaskCategory = Literal["research", "build", "practice", "network", "apply"]
TASK_CATEGORIES: Tuple[str, ...] = get_args(TaskCategory)

SkillLevel = Literal["beginner", "intermediate", "advanced"]
SKILL_LEVELS: Tuple[str, ...] = get_args(SkillLevel)

MIN_TASK_MINUTES = 15
MAX_TASK_MINUTES = 90

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

T = TypeVar("T")


def _new_milestone_id() -> str:
    return f"m-{uuid4().hex[:8]}"


class _PlanModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class Task(_PlanModel):
    id: NonEmptyStr
    text: NonEmptyStr
    minutes: int = Field(..., gt=0)
    category: TaskCategory
    success_criteria: NonEmptyStr = Field(..., alias="successCriteria")
    prereqs: List[str] = Field(default_factory=list)

    @field_validator("prereqs", mode="before")
    @classmethod
    def _default_prereqs(cls, value: Any) -> Any:
        return [] if value is None else value


class Milestone(_PlanModel):
    id: NonEmptyStr = Field(default_factory=_new_milestone_id)
    name: NonEmptyStr
    why: str = ""
    tasks: List[Task] = Field(default_factory=list)

    @field_validator("tasks", mode="before")
    @classmethod
    def _default_tasks(cls, value: Any) -> Any:
        return [] if value is None else value


class Week(_PlanModel):
    week: int = Field(..., ge=1)
    theme: str = ""
    milestones: List[Milestone] = Field(default_factory=list)


class Plan(_PlanModel):
    title: NonEmptyStr
    summary: str = ""
    weeks: List[Week]

    @model_validator(mode="after")
    def _unique_task_ids(self) -> "Plan":
        seen: set[str] = set()
        for w_idx, week in enumerate(self.weeks):
            for m_idx, milestone in enumerate(week.milestones):
                for t_idx, task in enumerate(milestone.tasks):
                    if task.id in seen:
                        raise ValueError(
                            f"duplicate task id {task.id!r} at weeks.{w_idx}.milestones.{m_idx}.tasks.{t_idx}"
                        )
                    seen.add(task.id)
        return self

    def task_ids(self) -> set[str]:
        return {task.id for week in self.weeks for milestone in week.milestones for task in milestone.tasks}

    def to_document(self) -> dict:
        """Serialize with the camelCase keys used in storage and on the wire."""
        return self.model_dump(mode="json", by_alias=True)


class ReplanTaskProposal(_PlanModel):
    """One replacement task as proposed by the replan generator."""

    text: NonEmptyStr
    minutes: int = Field(..., ge=MIN_TASK_MINUTES, le=MAX_TASK_MINUTES)
    category: TaskCategory
    success_criteria: NonEmptyStr = Field(..., alias="successCriteria")
    prereqs: List[str] = Field(default_factory=list)
    week: int = Field(..., ge=1)
    milestone_name: NonEmptyStr = Field(..., alias="milestoneName")

    @field_validator("prereqs", mode="before")
    @classmethod
    def _default_prereqs(cls, value: Any) -> Any:
        return [] if value is None else value


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    """Either a parsed value or the field path and reason it was rejected."""

    value: Optional[T] = None
    field: Optional[str] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.field is None

    def unwrap(self) -> T:
        if not self.ok:
            raise PlanValidationError(self.field or "", self.reason or "invalid")
        return self.value  # type: ignore[return-value]

    @classmethod
    def failure(cls, field: str, reason: str) -> "ParseResult[T]":
        return cls(field=field, reason=reason)


def _first_error(exc: ValidationError, root: str) -> Tuple[str, str]:
    error = exc.errors()[0]
    path = ".".join(str(part) for part in error.get("loc", ()))
    return (f"{root}.{path}" if path else root), error.get("msg", "invalid value")


def parse_plan(data: Any) -> ParseResult[Plan]:
    if isinstance(data, Plan):
        return ParseResult(value=data)
    try:
        return ParseResult(value=Plan.model_validate(data))
    except ValidationError as exc:
        field, reason = _first_error(exc, "plan")
        return ParseResult.failure(field, reason)


def parse_replan_batch(data: Any) -> ParseResult[List[ReplanTaskProposal]]:
    """Accept either `{"tasks": [...]}` or a bare list of proposals."""
    if isinstance(data, dict):
        data = data.get("tasks")
    if not isinstance(data, list):
        return ParseResult.failure("tasks", "expected a list of tasks")

    proposals: List[ReplanTaskProposal] = []
    for index, entry in enumerate(data):
        try:
            proposals.append(ReplanTaskProposal.model_validate(entry))
        except ValidationError as exc:
            field, reason = _first_error(exc, f"tasks.{index}")
            return ParseResult.failure(field, reason)
    return ParseResult(value=proposals)


def normalize_skill_level(value: Optional[str]) -> SkillLevel:
    """Case-insensitive skill level, defaulting to beginner when absent."""
    normalized = (value or "beginner").strip().lower()
    if normalized not in SKILL_LEVELS:
        raise PlanValidationError("skill_level", f"must be one of: {', '.join(SKILL_LEVELS)}")
    return normalized  # type: ignore[return-value]
