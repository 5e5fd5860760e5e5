"""Tests for micro-help and explanation generation."""
from __future__ import annotations

import pytest

from nextstep.core.errors import GenerationError
from nextstep.services.coaching import (
    DEFAULT_SMALLER_STEP,
    DEFAULT_THREE_MINUTE_VERSION,
    explain_plan,
    explain_task,
    explain_week,
    generate_micro_help,
)
from nextstep.services.plan_schema import parse_plan
from nextstep.services.planner import flatten_plan
from plan_factories import three_week_plan


class _FakeGenerator:
    def __init__(self, response: str):
        self.response = response
        self.prompts: list[str] = []

    def generate(self, system_prompt: str, user_prompt: str) -> str:
        self.prompts.append(user_prompt)
        return self.response


@pytest.fixture()
def plan():
    return parse_plan(three_week_plan()).unwrap()


def test_micro_help_without_generator_uses_defaults(plan) -> None:
    result = generate_micro_help(flatten_plan(plan)[0])

    assert result.smaller_step == DEFAULT_SMALLER_STEP
    assert result.three_minute_version == DEFAULT_THREE_MINUTE_VERSION


def test_micro_help_parses_fenced_json(plan) -> None:
    generator = _FakeGenerator('```json\n{"smallerStep": "Open the docs", "threeMinuteVersion": "Read one page"}\n```')

    result = generate_micro_help(flatten_plan(plan)[2], goal_text="Become a backend dev", generator=generator)

    assert (result.smaller_step, result.three_minute_version) == ("Open the docs", "Read one page")
    assert '"Do b1"' in generator.prompts[0]
    assert "Become a backend dev" in generator.prompts[0]


def test_micro_help_fills_missing_fields(plan) -> None:
    result = generate_micro_help(flatten_plan(plan)[0], generator=_FakeGenerator('{"smallerStep": "  "}'))

    assert result.smaller_step == DEFAULT_SMALLER_STEP
    assert result.three_minute_version == DEFAULT_THREE_MINUTE_VERSION


def test_micro_help_rejects_unparseable_output(plan) -> None:
    with pytest.raises(GenerationError):
        generate_micro_help(flatten_plan(plan)[0], generator=_FakeGenerator("just try harder"))
    with pytest.raises(GenerationError):
        generate_micro_help(flatten_plan(plan)[0], generator=_FakeGenerator('["a list"]'))


def test_explanations_fall_back_without_generator(plan) -> None:
    task = flatten_plan(plan)[3]

    assert '"Do b2"' in explain_task(task)
    assert "week 2" in explain_task(task)
    assert explain_week(plan.weeks[2]).startswith("Week 3 is about Week 3.")
    assert explain_plan(plan, total_tasks=6).startswith("Test plan runs for 3 week(s) with 6 waypoints.")


def test_explanations_use_generator(plan) -> None:
    generator = _FakeGenerator('{"explanation": "You have got this."}')

    assert explain_task(flatten_plan(plan)[0], goal_text="Ship", generator=generator) == "You have got this."
    assert explain_week(plan.weeks[1], generator=generator) == "You have got this."
    assert explain_plan(plan, total_tasks=6, generator=generator) == "You have got this."
    task_prompt, week_prompt, plan_prompt = generator.prompts
    assert "Success criteria: a1 is done" in task_prompt
    assert "Milestones: Build: 2 tasks" in week_prompt
    assert "Total tasks: 6 waypoints" in plan_prompt


def test_explanation_requires_text(plan) -> None:
    with pytest.raises(GenerationError):
        explain_week(plan.weeks[0], generator=_FakeGenerator('{"explanation": ""}'))
