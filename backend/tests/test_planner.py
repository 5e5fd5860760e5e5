"""Tests for flattening, readiness and progress accounting."""
from __future__ import annotations

import pytest

from nextstep.services.plan_schema import parse_plan
from nextstep.services.planner import (
    SUMMIT_BAND,
    blocked_tasks,
    count_completed,
    count_total_tasks,
    flatten_plan,
    get_next_ready_task,
    progress_band,
    progress_percentage,
    progress_snapshot,
    toggle_completion,
)
from plan_factories import milestone, plan_doc, setup_plan, task, three_week_plan, week


def _flat(doc):
    return flatten_plan(parse_plan(doc).unwrap())


def test_flatten_preserves_document_order_and_context() -> None:
    flat = _flat(three_week_plan())

    assert [item.id for item in flat] == ["a1", "a2", "b1", "b2", "c1", "c2"]
    assert [(item.week, item.milestone_name) for item in flat] == [
        (1, "Setup"),
        (1, "Setup"),
        (2, "Build"),
        (2, "Build"),
        (3, "Ship"),
        (3, "Reach out"),
    ]
    assert flat[1].prereqs == ("a1",)
    assert flat[0].success_criteria == "a1 is done"


def test_flatten_handles_empty_containers() -> None:
    doc = plan_doc([week(1), week(2, milestone("Empty")), week(3, {"name": "No tasks key"})])

    assert _flat(doc) == []
    assert _flat(plan_doc([])) == []


def test_flatten_count_matches_nested_totals() -> None:
    doc = plan_doc(
        [
            week(n, *[milestone(f"M{n}{m}", *[task(f"t{n}{m}{t}") for t in range(3)]) for m in range(2)])
            for n in range(1, 5)
        ]
    )
    flat = _flat(doc)

    assert count_total_tasks(flat) == 4 * 2 * 3
    assert flat[7].id == "t201"
    assert (flat[7].week, flat[7].milestone_name) == (2, "M20")


def test_setup_scenario_progression() -> None:
    flat = _flat(setup_plan())

    assert get_next_ready_task(flat, set()).id == "A"
    assert get_next_ready_task(flat, {"A"}).id == "B"
    assert get_next_ready_task(flat, {"A", "B"}) is None
    assert count_completed(flat, {"A", "B"}) == 2
    assert progress_percentage(2, count_total_tasks(flat)) == 100


def test_scan_continues_past_blocked_tasks() -> None:
    flat = _flat(plan_doc([week(1, milestone("M", task("x", ["y"]), task("y", ["z"]), task("free")))]))

    assert get_next_ready_task(flat, set()).id == "free"
    assert [item.id for item in blocked_tasks(flat, set())] == ["x", "y"]


def test_missing_prereq_is_never_ready() -> None:
    flat = _flat(plan_doc([week(1, milestone("M", task("C", ["X"])))]))

    assert get_next_ready_task(flat, set()) is None
    assert get_next_ready_task(flat, {"A", "B", "whatever"}) is None


def test_missing_prereq_resolves_only_through_completion_set() -> None:
    # An id outside the plan is unresolvable unless the caller lists it as completed.
    flat = _flat(plan_doc([week(1, milestone("M", task("C", ["X"])))]))

    assert get_next_ready_task(flat, {"X"}).id == "C"


def test_two_task_cycle_yields_none() -> None:
    flat = _flat(plan_doc([week(1, milestone("Loop", task("p", ["q"]), task("q", ["p"])))]))

    assert get_next_ready_task(flat, set()) is None
    assert len(blocked_tasks(flat, set())) == 2


def test_completing_more_never_blocks_a_ready_task() -> None:
    flat = _flat(three_week_plan())
    smaller = {"a1"}
    larger = {"a1", "a2", "c2"}

    ready_small = get_next_ready_task(flat, smaller)
    assert ready_small.id == "a2"
    # a2 stays unblocked under the superset even though it is now complete.
    assert all(prereq in larger for prereq in ready_small.prereqs)
    assert get_next_ready_task(flat, larger).id == "b1"


def test_task_without_prereqs_is_next_once_first_incomplete() -> None:
    flat = _flat(three_week_plan())

    assert get_next_ready_task(flat, set()).id == "a1"


def test_completed_count_ignores_stale_ids() -> None:
    flat = _flat(setup_plan())

    assert count_completed(flat, {"A", "gone-1", "gone-2"}) == count_completed(flat, {"A"}) == 1


@pytest.mark.parametrize(
    "completed,total,expected",
    [(0, 0, 0), (0, 3, 0), (1, 3, 33), (2, 3, 67), (1, 8, 13), (1, 200, 1), (199, 200, 100), (3, 3, 100)],
)
def test_progress_percentage(completed, total, expected) -> None:
    assert progress_percentage(completed, total) == expected


def test_progress_percentage_rejects_impossible_counts() -> None:
    with pytest.raises(ValueError):
        progress_percentage(4, 3)
    with pytest.raises(ValueError):
        progress_percentage(-1, 3)


def test_progress_bands_cover_every_percentage() -> None:
    keys = [progress_band(pct).key for pct in range(0, 101)]

    assert keys[0] == "trailhead"
    assert set(keys[1:25]) == {"base_camp"}
    assert set(keys[25:75]) == {"climbing"}
    assert set(keys[75:100]) == {"final_ascent"}
    assert keys[100] == "summit"
    assert keys.count("summit") == 1


@pytest.mark.parametrize("bad", [-1, 101, 250])
def test_progress_band_rejects_out_of_range(bad) -> None:
    with pytest.raises(ValueError):
        progress_band(bad)


def test_progress_snapshot_for_empty_plan() -> None:
    snapshot = progress_snapshot([], {"stale"})

    assert (snapshot.total, snapshot.completed, snapshot.percentage) == (0, 0, 0)
    assert snapshot.band.key == "trailhead"
    assert snapshot.is_complete is False


def test_progress_snapshot_complete_plan() -> None:
    snapshot = progress_snapshot(_flat(setup_plan()), ["A", "B"])

    assert snapshot.band == SUMMIT_BAND
    assert snapshot.is_complete


def test_rounded_summit_is_not_complete() -> None:
    doc = plan_doc([week(1, milestone("Long", *[task(f"t{i}") for i in range(200)]))])
    snapshot = progress_snapshot(_flat(doc), [f"t{i}" for i in range(199)])

    assert snapshot.percentage == 100
    assert snapshot.is_complete is False


def test_toggle_completion_returns_new_list() -> None:
    original = ["A"]

    added = toggle_completion(original, "B")
    removed = toggle_completion(added, "A")

    assert original == ["A"]
    assert added == ["A", "B"]
    assert removed == ["B"]


def test_toggle_completion_with_explicit_state_is_idempotent() -> None:
    assert toggle_completion(["A"], "A", completed=True) == ["A"]
    assert toggle_completion(["A"], "B", completed=False) == ["A"]
    assert toggle_completion(["A", "A"], "A", completed=False) == []
