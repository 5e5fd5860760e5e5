"""Partial replanning of the incomplete portion of a plan.

A replan swaps a chosen set of incomplete tasks for a freshly generated batch.
Completed work is never touched, and the new tasks may only depend on tasks
that are already complete, so the prerequisite graph stays resolvable across
the boundary. The whole operation is a pure function from (plan, completed
ids, generator output) to a new plan; callers persist the outcome only once it
has returned, which keeps a failed generation from leaving a half-merged plan.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Collection, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from nextstep.core.errors import PlanValidationError
from nextstep.services.plan_schema import Plan, ReplanTaskProposal, parse_replan_batch
from nextstep.services.planner import FlatTask, flatten_plan

logger = logging.getLogger(__name__)

MIN_REPLAN_TASKS = 5
MAX_REPLAN_TASKS = 30
REPLAN_BUFFER = 5

NEW_MILESTONE_WHY = "Added when the remaining plan was rerouted."


def replan_batch_size(remaining_count: int) -> int:
    """Replacement tasks to request for `remaining_count` discarded tasks."""
    return max(MIN_REPLAN_TASKS, min(MAX_REPLAN_TASKS, remaining_count + REPLAN_BUFFER))


@dataclass(frozen=True)
class ReplanScope:
    completed: List[FlatTask]
    replaced: List[FlatTask]
    kept: List[FlatTask]

    @property
    def replaced_ids(self) -> List[str]:
        return [task.id for task in self.replaced]


@dataclass(frozen=True)
class ReplanRequest:
    """Everything the replan generator is told about the plan being rerouted."""

    goal_text: str
    timeline_weeks: int
    completed_tasks: List[FlatTask]
    remaining_tasks: List[FlatTask]
    constraints: Optional[str] = None
    feedback: Optional[str] = None

    @property
    def batch_size(self) -> int:
        return replan_batch_size(len(self.remaining_tasks))


@dataclass(frozen=True)
class ReplanOutcome:
    plan: Plan
    completed_ids: List[str]
    removed_ids: List[str]
    added_ids: List[str]
    dropped_prereqs: int = 0
    start_week: int = 1
    timeline_weeks: int = 1


@dataclass
class _MergeState:
    removed: List[str] = field(default_factory=list)
    emptied: set[int] = field(default_factory=set)


def _with_dependents(
    flat_tasks: Sequence[FlatTask],
    completed: Collection[str],
    requested: Collection[str],
) -> set[str]:
    incomplete = [task for task in flat_tasks if task.id not in completed]
    selected = {task.id for task in incomplete if task.id in requested}
    grew = True
    while grew:
        grew = False
        for task in incomplete:
            if task.id not in selected and any(prereq in selected for prereq in task.prereqs):
                selected.add(task.id)
                grew = True
    return selected


def select_replan_scope(
    flat_tasks: Sequence[FlatTask],
    completed_ids: Collection[str],
    task_ids: Optional[Iterable[str]] = None,
) -> ReplanScope:
    """
    Split the plan into completed, replaced and kept tasks.

    With no `task_ids` every incomplete task is replaced. Requested ids that are
    unknown or already complete are ignored. Incomplete tasks that depend on a
    replaced task, directly or through other incomplete tasks, are replaced as
    well, so no kept task is left waiting on an id that the merge removes.
    """
    completed = frozenset(completed_ids)
    wanted = None if task_ids is None else _with_dependents(flat_tasks, completed, frozenset(task_ids))
    done: List[FlatTask] = []
    replaced: List[FlatTask] = []
    kept: List[FlatTask] = []
    for task in flat_tasks:
        if task.id in completed:
            done.append(task)
        elif wanted is None or task.id in wanted:
            replaced.append(task)
        else:
            kept.append(task)
    return ReplanScope(completed=done, replaced=replaced, kept=kept)


def default_start_week(plan: Plan, scope: ReplanScope) -> int:
    """First week the replacement batch lands in when the caller does not say."""
    if scope.replaced:
        return min(task.week for task in scope.replaced)
    if plan.weeks:
        return max(week.week for week in plan.weeks) + 1
    return 1


def remaining_weeks(plan: Plan, start_week: int, total_weeks: Optional[int] = None) -> int:
    last_week = total_weeks or max((week.week for week in plan.weeks), default=start_week)
    return max(1, last_week - start_week + 1)


def validate_replan_batch(
    proposals: Sequence[ReplanTaskProposal],
    *,
    completed_ids: Collection[str],
    timeline_weeks: int,
    expected_size: int,
) -> tuple[List[ReplanTaskProposal], int]:
    """
    Enforce the replan contract on a parsed batch.

    Returns the accepted proposals and the number of prereq references that
    were dropped. Surplus proposals beyond `expected_size` are discarded; a
    short batch or a week outside the remaining horizon rejects the whole batch.
    """
    if len(proposals) < expected_size:
        raise PlanValidationError("tasks", f"expected {expected_size} tasks, got {len(proposals)}")

    completed = frozenset(completed_ids)
    accepted: List[ReplanTaskProposal] = []
    dropped = 0
    for index, proposal in enumerate(proposals[:expected_size]):
        if not 1 <= proposal.week <= timeline_weeks:
            raise PlanValidationError(
                f"tasks.{index}.week",
                f"must be within 1..{timeline_weeks}, got {proposal.week}",
            )
        # Only completed tasks are stable enough to depend on.
        prereqs = [prereq for prereq in dict.fromkeys(proposal.prereqs) if prereq in completed]
        dropped += len(proposal.prereqs) - len(prereqs)
        accepted.append(proposal.model_copy(update={"prereqs": prereqs}))
    return accepted, dropped


def _default_id_factory(existing: set[str]) -> Callable[[], str]:
    def make() -> str:
        while True:
            candidate = f"t-{uuid4().hex[:8]}"
            if candidate not in existing:
                existing.add(candidate)
                return candidate

    return make


def _milestone_key(name: str) -> str:
    return " ".join(name.split()).casefold()


def _find_or_insert_week(weeks: List[Dict[str, Any]], number: int, theme: str) -> Dict[str, Any]:
    for week in weeks:
        if week["week"] == number:
            return week
    new_week: Dict[str, Any] = {"week": number, "theme": theme, "milestones": []}
    position = next((idx for idx, week in enumerate(weeks) if week["week"] > number), len(weeks))
    weeks.insert(position, new_week)
    return new_week


def _find_or_insert_milestone(week: Dict[str, Any], name: str) -> Dict[str, Any]:
    key = _milestone_key(name)
    for milestone in week["milestones"]:
        if _milestone_key(milestone["name"]) == key:
            return milestone
    milestone = {"id": f"m-{uuid4().hex[:8]}", "name": name, "why": NEW_MILESTONE_WHY, "tasks": []}
    week["milestones"].append(milestone)
    return milestone


def merge_replan(
    plan: Plan,
    completed_ids: Sequence[str],
    replaced_ids: Iterable[str],
    proposals: Sequence[ReplanTaskProposal],
    *,
    start_week: int = 1,
    id_factory: Optional[Callable[[], str]] = None,
) -> ReplanOutcome:
    """
    Build a new plan with `replaced_ids` removed and `proposals` grouped in.

    Proposal weeks are relative to the remaining horizon, so week 1 lands on
    `start_week`. Proposals join an existing (week, milestone name) container
    when one exists and create it otherwise. Milestones and weeks emptied by
    the removal are dropped; containers that were empty beforehand are left as
    they were. Completed ids that match no remaining task are dropped from
    the result. The input plan is not modified.
    """
    completed = list(completed_ids)
    protected = frozenset(completed)
    to_remove = frozenset(replaced_ids) - protected

    document = plan.to_document()
    weeks: List[Dict[str, Any]] = document["weeks"]
    state = _MergeState()

    for week in weeks:
        for milestone in week["milestones"]:
            kept_tasks = []
            for task in milestone["tasks"]:
                if task["id"] in to_remove:
                    state.removed.append(task["id"])
                else:
                    kept_tasks.append(task)
            if len(kept_tasks) != len(milestone["tasks"]):
                milestone["tasks"] = kept_tasks
                if not kept_tasks:
                    state.emptied.add(id(milestone))

    existing_ids = plan.task_ids() - set(state.removed)
    surviving_completed = [task_id for task_id in dict.fromkeys(completed) if task_id in existing_ids]
    make_id = id_factory or _default_id_factory(existing_ids)
    added: List[str] = []
    for proposal in proposals:
        week = _find_or_insert_week(weeks, start_week + proposal.week - 1, proposal.milestone_name)
        milestone = _find_or_insert_milestone(week, proposal.milestone_name)
        task_id = make_id()
        milestone["tasks"].append(
            {
                "id": task_id,
                "text": proposal.text,
                "minutes": proposal.minutes,
                "category": proposal.category,
                "successCriteria": proposal.success_criteria,
                "prereqs": list(proposal.prereqs),
            }
        )
        added.append(task_id)

    pruned_weeks = []
    for week in weeks:
        had_milestones = bool(week["milestones"])
        week["milestones"] = [
            milestone
            for milestone in week["milestones"]
            if milestone["tasks"] or id(milestone) not in state.emptied
        ]
        if week["milestones"] or not had_milestones:
            pruned_weeks.append(week)
    document["weeks"] = pruned_weeks

    new_plan = Plan.model_validate(document)
    return ReplanOutcome(
        plan=new_plan,
        completed_ids=surviving_completed,
        removed_ids=state.removed,
        added_ids=added,
        start_week=start_week,
    )


def run_replan(
    plan: Plan,
    completed_ids: Sequence[str],
    *,
    goal_text: str,
    generate: Callable[[ReplanRequest], Any],
    timeline_weeks: Optional[int] = None,
    total_weeks: Optional[int] = None,
    task_ids: Optional[Iterable[str]] = None,
    start_week: Optional[int] = None,
    constraints: Optional[str] = None,
    feedback: Optional[str] = None,
) -> ReplanOutcome:
    """
    Generate, validate and merge a replacement batch in one step.

    Without an explicit `timeline_weeks` the horizon runs from the start week
    to the end of the plan's original timeline (`total_weeks`, or the last
    week present in the plan).

    `generate` receives the ReplanRequest and returns raw JSON-like data. Any
    error it raises, and any validation failure, propagates before a new plan
    exists, so the caller's stored state is untouched.
    """
    flat = flatten_plan(plan)
    scope = select_replan_scope(flat, completed_ids, task_ids)
    first_week = start_week if start_week is not None else default_start_week(plan, scope)
    horizon = timeline_weeks if timeline_weeks is not None else remaining_weeks(plan, first_week, total_weeks)
    if horizon < 1:
        raise PlanValidationError("timeline_weeks", "must be at least 1")
    if first_week < 1:
        raise PlanValidationError("start_week", "must be at least 1")

    request = ReplanRequest(
        goal_text=goal_text,
        timeline_weeks=horizon,
        completed_tasks=scope.completed,
        remaining_tasks=scope.replaced,
        constraints=constraints,
        feedback=feedback,
    )
    raw = generate(request)
    proposals = parse_replan_batch(raw).unwrap()
    accepted, dropped = validate_replan_batch(
        proposals,
        completed_ids=[task.id for task in scope.completed],
        timeline_weeks=horizon,
        expected_size=request.batch_size,
    )
    if dropped:
        logger.info("Dropped %s prereq reference(s) that did not point at completed tasks", dropped)

    outcome = merge_replan(plan, completed_ids, scope.replaced_ids, accepted, start_week=first_week)
    logger.info(
        "Replan merged: removed=%s added=%s start_week=%s horizon=%s",
        len(outcome.removed_ids),
        len(outcome.added_ids),
        first_week,
        horizon,
    )
    return ReplanOutcome(
        plan=outcome.plan,
        completed_ids=outcome.completed_ids,
        removed_ids=outcome.removed_ids,
        added_ids=outcome.added_ids,
        dropped_prereqs=dropped,
        start_week=first_week,
        timeline_weeks=horizon,
    )
