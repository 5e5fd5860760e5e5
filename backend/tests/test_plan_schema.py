from __future__ import annotations

import pytest

from nextstep.core.errors import PlanValidationError
from nextstep.services.plan_schema import normalize_skill_level, parse_plan, parse_replan_batch
from plan_factories import milestone, plan_doc, setup_plan, task, week


def _proposal(**overrides):
    data = {
        "text": "Ship a portfolio page",
        "minutes": 45,
        "category": "build",
        "successCriteria": "Page is live",
        "prereqs": [],
        "week": 1,
        "milestoneName": "Portfolio",
    }
    data.update(overrides)
    return data


def test_parse_plan_accepts_camel_case_document() -> None:
    result = parse_plan(setup_plan())

    assert result.ok
    plan = result.unwrap()
    assert plan.weeks[0].milestones[0].tasks[1].success_criteria == "B is done"
    assert plan.to_document()["weeks"][0]["milestones"][0]["tasks"][1]["successCriteria"] == "B is done"


def test_parse_plan_defaults_missing_optional_arrays() -> None:
    doc = plan_doc([week(1, milestone("Setup", task("A")))])
    doc["weeks"][0]["milestones"][0]["tasks"][0]["prereqs"] = None
    doc["weeks"][0]["milestones"].append({"name": "Later", "tasks": None})

    plan = parse_plan(doc).unwrap()

    assert plan.weeks[0].milestones[0].tasks[0].prereqs == []
    assert plan.weeks[0].milestones[1].tasks == []
    assert plan.weeks[0].milestones[1].id.startswith("m-")


def test_parse_plan_reports_offending_field() -> None:
    doc = setup_plan()
    doc["weeks"][0]["milestones"][0]["tasks"][0]["category"] = "dance"

    result = parse_plan(doc)

    assert not result.ok
    assert result.field == "plan.weeks.0.milestones.0.tasks.0.category"
    with pytest.raises(PlanValidationError) as excinfo:
        result.unwrap()
    assert excinfo.value.to_detail()["field"] == result.field


@pytest.mark.parametrize("minutes", [0, -5])
def test_parse_plan_rejects_non_positive_minutes(minutes) -> None:
    doc = setup_plan()
    doc["weeks"][0]["milestones"][0]["tasks"][0]["minutes"] = minutes

    assert parse_plan(doc).field == "plan.weeks.0.milestones.0.tasks.0.minutes"


def test_parse_plan_rejects_duplicate_task_ids() -> None:
    doc = plan_doc([week(1, milestone("One", task("A"))), week(2, milestone("Two", task("A")))])

    result = parse_plan(doc)

    assert not result.ok
    assert "duplicate task id 'A'" in result.reason


def test_parse_plan_rejects_non_object() -> None:
    assert parse_plan(["not", "a", "plan"]).field == "plan"


def test_parse_plan_keeps_dangling_prereqs() -> None:
    plan = parse_plan(plan_doc([week(1, milestone("M", task("C", ["X"])))])).unwrap()

    assert plan.weeks[0].milestones[0].tasks[0].prereqs == ["X"]


def test_parse_replan_batch_accepts_wrapper_and_bare_list() -> None:
    wrapped = parse_replan_batch({"tasks": [_proposal()]}).unwrap()
    bare = parse_replan_batch([_proposal(milestoneName="Other")]).unwrap()

    assert wrapped[0].milestone_name == "Portfolio"
    assert bare[0].milestone_name == "Other"


@pytest.mark.parametrize("minutes", [14, 91])
def test_parse_replan_batch_enforces_minute_range(minutes) -> None:
    result = parse_replan_batch({"tasks": [_proposal(), _proposal(minutes=minutes)]})

    assert result.field == "tasks.1.minutes"


def test_parse_replan_batch_requires_task_list() -> None:
    assert parse_replan_batch({"items": []}).field == "tasks"
    assert parse_replan_batch("nope").field == "tasks"


def test_normalize_skill_level() -> None:
    assert normalize_skill_level(None) == "beginner"
    assert normalize_skill_level(" Advanced ") == "advanced"
    with pytest.raises(PlanValidationError) as excinfo:
        normalize_skill_level("guru")
    assert excinfo.value.field == "skill_level"
