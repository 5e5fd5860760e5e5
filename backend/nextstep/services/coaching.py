"""Coaching text for a stored plan: stuck-task micro-help and explanations.

Both features reuse the plan generator's JSON handling. With no model
configured they fall back to fixed, encouraging copy so the routes keep
answering.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from nextstep.core.errors import GenerationError
from nextstep.observability.tracing import log_metric, trace
from nextstep.services.llm_client import TextGenerator
from nextstep.services.plan_generator import extract_json
from nextstep.services.plan_schema import Plan, Week
from nextstep.services.planner import FlatTask

logger = logging.getLogger(__name__)

COACH_SYSTEM_PROMPT = (
    "You are an encouraging career coach. You speak directly to the user, stay "
    "specific and brief, and always respond with a single JSON object."
)

DEFAULT_SMALLER_STEP = (
    "Take a deep breath and write down one specific thing you can do in the next 5 minutes."
)
DEFAULT_THREE_MINUTE_VERSION = (
    "Set a 3-minute timer and just start. Do the smallest possible version, even if it's "
    "just opening the right document or writing one sentence."
)
DEFAULT_GOAL = "Career advancement"


@dataclass(frozen=True)
class MicroHelp:
    smaller_step: str
    three_minute_version: str


def _text_field(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _as_object(raw: str) -> Dict[str, Any]:
    data = extract_json(raw)
    if not isinstance(data, dict):
        raise GenerationError(f"Expected a JSON object from the model, got {type(data).__name__}")
    return data


def build_micro_help_prompt(task: FlatTask, goal_text: Optional[str]) -> str:
    goal_line = f"Their overall goal: {goal_text}\n" if goal_text else ""
    return (
        "Someone feels stuck on a task and clicked \"I'm stuck\".\n\n"
        f'Task they\'re working on: "{task.text}"\n'
        f"Estimated time: {task.minutes} minutes\n"
        f"{goal_line}\n"
        "Give them two things:\n"
        '1. "smallerStep": a much smaller first step they can take right now (5-10 minutes max).\n'
        '2. "threeMinuteVersion": an ultra-minimal 3-minute version of the task that still moves them forward.\n\n'
        "Be encouraging, specific and actionable.\n"
        'Return only JSON: {"smallerStep": string, "threeMinuteVersion": string}'
    )


def generate_micro_help(
    task: FlatTask,
    *,
    goal_text: Optional[str] = None,
    generator: Optional[TextGenerator] = None,
    request_id: Optional[str] = None,
) -> MicroHelp:
    """Break a stuck task down; fields the model leaves blank get the default copy."""
    if generator is None:
        log_metric("coach.micro_help.fallback.used", 1)
        return MicroHelp(DEFAULT_SMALLER_STEP, DEFAULT_THREE_MINUTE_VERSION)

    with trace(
        "coach.micro_help",
        metadata={"task_id": task.id, "minutes": task.minutes},
        request_id=request_id,
    ):
        data = _as_object(generator.generate(COACH_SYSTEM_PROMPT, build_micro_help_prompt(task, goal_text)))

    smaller = _text_field(data, "smallerStep")
    minimal = _text_field(data, "threeMinuteVersion")
    if smaller is None or minimal is None:
        logger.info("Micro-help response missing fields; filling defaults for task %s", task.id)
    return MicroHelp(
        smaller_step=smaller or DEFAULT_SMALLER_STEP,
        three_minute_version=minimal or DEFAULT_THREE_MINUTE_VERSION,
    )


def _explanation_prompt(context: str, asks: str, sentences: str) -> str:
    return (
        f"{context}\n\n"
        f"Give a clear, encouraging explanation covering {asks}.\n"
        f"Keep it to {sentences} sentences of plain text with no markdown, speaking to the user as their coach.\n"
        'Return only JSON: {"explanation": string}'
    )


def build_task_explanation_prompt(task: FlatTask, goal_text: Optional[str]) -> str:
    context = (
        f"Goal: {goal_text or DEFAULT_GOAL}\n"
        f"Week {task.week}\n"
        f"Milestone: {task.milestone_name}\n\n"
        f"Task: {task.text}\n"
        f"Category: {task.category}\n"
        f"Estimated time: {task.minutes} minutes\n"
        f"Success criteria: {task.success_criteria}"
    )
    return _explanation_prompt(
        context,
        "what the task involves, why it matters for the goal, how to approach it and what success looks like",
        "2-3",
    )


def build_week_explanation_prompt(week: Week, goal_text: Optional[str]) -> str:
    milestones = ", ".join(f"{m.name}: {len(m.tasks)} tasks" for m in week.milestones) or "none yet"
    context = (
        f"Goal: {goal_text or DEFAULT_GOAL}\n\n"
        f"Week {week.week}\n"
        f"Theme: {week.theme}\n"
        f"Milestones: {milestones}"
    )
    return _explanation_prompt(
        context,
        "what the week focuses on, why it matters, what they will accomplish and how to approach it",
        "3-4",
    )


def build_plan_explanation_prompt(plan: Plan, goal_text: Optional[str], total_tasks: int) -> str:
    context = (
        f"Goal: {goal_text or DEFAULT_GOAL}\n\n"
        f"Plan Title: {plan.title}\n"
        f"Summary: {plan.summary}\n"
        f"Duration: {len(plan.weeks)} weeks\n"
        f"Total tasks: {total_tasks} waypoints"
    )
    return _explanation_prompt(
        context,
        "what the plan covers, how it gets them to the goal, the journey ahead and what to expect",
        "4-5",
    )


def fallback_task_explanation(task: FlatTask) -> str:
    return (
        f"This {task.category} task, \"{task.text}\", takes about {task.minutes} minutes and moves "
        f"\"{task.milestone_name}\" forward in week {task.week}. You're done when: {task.success_criteria}."
    )


def fallback_week_explanation(week: Week) -> str:
    task_count = sum(len(m.tasks) for m in week.milestones)
    return (
        f"Week {week.week} is about {week.theme or 'steady progress'}. It has {len(week.milestones)} "
        f"milestone(s) and {task_count} task(s); take them in order and finish one before starting the next."
    )


def fallback_plan_explanation(plan: Plan, total_tasks: int) -> str:
    parts = [
        f"{plan.title} runs for {len(plan.weeks)} week(s) with {total_tasks} waypoints.",
        plan.summary.strip(),
        "Each week builds on the last, so keep showing up for the next step.",
    ]
    return " ".join(part for part in parts if part)


def _explain(
    kind: str,
    prompt: str,
    fallback: str,
    *,
    generator: Optional[TextGenerator],
    request_id: Optional[str],
    metadata: Dict[str, Any],
) -> str:
    if generator is None:
        log_metric(f"coach.explain.{kind}.fallback.used", 1)
        return fallback

    with trace(f"coach.explain.{kind}", metadata=metadata, request_id=request_id):
        data = _as_object(generator.generate(COACH_SYSTEM_PROMPT, prompt))
    explanation = _text_field(data, "explanation")
    if explanation is None:
        raise GenerationError(f"Model returned no {kind} explanation")
    return explanation


def explain_task(
    task: FlatTask,
    *,
    goal_text: Optional[str] = None,
    generator: Optional[TextGenerator] = None,
    request_id: Optional[str] = None,
) -> str:
    return _explain(
        "task",
        build_task_explanation_prompt(task, goal_text),
        fallback_task_explanation(task),
        generator=generator,
        request_id=request_id,
        metadata={"task_id": task.id},
    )


def explain_week(
    week: Week,
    *,
    goal_text: Optional[str] = None,
    generator: Optional[TextGenerator] = None,
    request_id: Optional[str] = None,
) -> str:
    return _explain(
        "week",
        build_week_explanation_prompt(week, goal_text),
        fallback_week_explanation(week),
        generator=generator,
        request_id=request_id,
        metadata={"week": week.week},
    )


def explain_plan(
    plan: Plan,
    *,
    total_tasks: int,
    goal_text: Optional[str] = None,
    generator: Optional[TextGenerator] = None,
    request_id: Optional[str] = None,
) -> str:
    return _explain(
        "plan",
        build_plan_explanation_prompt(plan, goal_text, total_tasks),
        fallback_plan_explanation(plan, total_tasks),
        generator=generator,
        request_id=request_id,
        metadata={"weeks": len(plan.weeks), "total_tasks": total_tasks},
    )
