"""Plan progression: flattening, next-task readiness, and progress accounting.

Every function here is a pure query over its arguments. Plans are never
mutated; completion state is an external collection of task ids owned by the
caller.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Collection, Iterable, List, Optional, Sequence, Tuple

from nextstep.services.plan_schema import Plan


@dataclass(frozen=True)
class FlatTask:
    """Read-only view of a task with its week number and milestone name inlined."""

    id: str
    text: str
    minutes: int
    category: str
    success_criteria: str
    prereqs: Tuple[str, ...]
    week: int
    milestone_name: str


@dataclass(frozen=True)
class ProgressBand:
    key: str
    label: str


# Upper bounds are exclusive; the terminal band is matched only at exactly 100.
PROGRESS_BANDS: Tuple[Tuple[int, ProgressBand], ...] = (
    (1, ProgressBand("trailhead", "Trailhead")),
    (25, ProgressBand("base_camp", "Base Camp")),
    (75, ProgressBand("climbing", "Climbing")),
    (100, ProgressBand("final_ascent", "Final Ascent")),
)
SUMMIT_BAND = ProgressBand("summit", "Summit")


@dataclass(frozen=True)
class ProgressSnapshot:
    total: int
    completed: int
    percentage: int
    band: ProgressBand

    @property
    def is_complete(self) -> bool:
        # Rounding can reach 100 before the last task is done.
        return self.total > 0 and self.completed == self.total


def flatten_plan(plan: Plan) -> List[FlatTask]:
    """Project the nested plan into document order: weeks, then milestones, then tasks."""
    out: List[FlatTask] = []
    for week in plan.weeks:
        for milestone in week.milestones:
            for task in milestone.tasks:
                out.append(
                    FlatTask(
                        id=task.id,
                        text=task.text,
                        minutes=task.minutes,
                        category=task.category,
                        success_criteria=task.success_criteria,
                        prereqs=tuple(task.prereqs or ()),
                        week=week.week,
                        milestone_name=milestone.name,
                    )
                )
    return out


def is_ready(task: FlatTask, completed_ids: Collection[str]) -> bool:
    """Incomplete and every prereq completed. Unknown prereq ids never resolve."""
    if task.id in completed_ids:
        return False
    return all(prereq in completed_ids for prereq in task.prereqs)


def get_next_ready_task(flat_tasks: Iterable[FlatTask], completed_ids: Collection[str]) -> Optional[FlatTask]:
    """
    Return the first task in document order that is incomplete and unblocked.

    The scan skips over both completed and blocked tasks, so a ready task late
    in the plan is returned even when earlier ones are waiting on prereqs. A
    prereq cycle leaves every member blocked and the result is None.
    """
    completed = completed_ids if isinstance(completed_ids, (set, frozenset)) else frozenset(completed_ids)
    for task in flat_tasks:
        if is_ready(task, completed):
            return task
    return None


def blocked_tasks(flat_tasks: Iterable[FlatTask], completed_ids: Collection[str]) -> List[FlatTask]:
    """Incomplete tasks still waiting on at least one prereq."""
    completed = frozenset(completed_ids)
    return [task for task in flat_tasks if task.id not in completed and not is_ready(task, completed)]


def count_total_tasks(flat_tasks: Sequence[FlatTask]) -> int:
    return len(flat_tasks)


def count_completed(flat_tasks: Iterable[FlatTask], completed_ids: Collection[str]) -> int:
    """Completed tasks that still exist in the plan; stale ids are ignored."""
    completed = frozenset(completed_ids)
    return sum(1 for task in flat_tasks if task.id in completed)


def progress_percentage(completed: int, total: int) -> int:
    """Whole-number percentage, rounded half up; 0 for an empty plan."""
    if total < 0 or completed < 0 or completed > total:
        raise ValueError(f"invalid progress counts: completed={completed} total={total}")
    if total == 0:
        return 0
    return (200 * completed + total) // (2 * total)


def progress_band(percentage: int) -> ProgressBand:
    if not 0 <= percentage <= 100:
        raise ValueError(f"percentage must be within 0..100, got {percentage}")
    for upper, band in PROGRESS_BANDS:
        if percentage < upper:
            return band
    return SUMMIT_BAND


def progress_snapshot(flat_tasks: Sequence[FlatTask], completed_ids: Collection[str]) -> ProgressSnapshot:
    total = count_total_tasks(flat_tasks)
    completed = count_completed(flat_tasks, completed_ids)
    percentage = progress_percentage(completed, total)
    return ProgressSnapshot(total=total, completed=completed, percentage=percentage, band=progress_band(percentage))


def toggle_completion(completed_ids: Sequence[str], task_id: str, completed: Optional[bool] = None) -> List[str]:
    """
    Return a new completion list with `task_id` added or removed.

    `completed=None` flips the current state. Insertion order is preserved so
    the stored list reads as a history of completions.
    """
    current = list(dict.fromkeys(completed_ids))
    present = task_id in current
    target = (not present) if completed is None else completed
    if target and not present:
        current.append(task_id)
    elif not target and present:
        current.remove(task_id)
    return current
