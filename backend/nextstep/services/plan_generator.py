"""LLM-backed plan and replan generation."""
from __future__ import annotations

import json
import logging
import re
from time import perf_counter
from typing import Any, Dict, List, Optional

from nextstep.core.errors import GenerationError
from nextstep.observability.tracing import log_metric, trace
from nextstep.services.llm_client import TextGenerator
from nextstep.services.plan_schema import (
    MAX_TASK_MINUTES,
    MIN_TASK_MINUTES,
    TASK_CATEGORIES,
    Plan,
    SkillLevel,
    parse_plan,
)
from nextstep.services.replan import ReplanRequest

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an AI career planning assistant. You turn a career or learning goal into a "
    "realistic week-by-week roadmap of small, measurable tasks. "
    "Respond with a single JSON object and nothing else."
)

PLAN_SCHEMA_HINT = """{
  "title": string,
  "summary": string,
  "weeks": [
    {
      "week": number,
      "theme": string,
      "milestones": [
        {
          "id": string,
          "name": string,
          "why": string,
          "tasks": [
            {
              "id": string,
              "text": string,
              "minutes": number,
              "category": "research"|"build"|"practice"|"network"|"apply",
              "successCriteria": string,
              "prereqs": string[]
            }
          ]
        }
      ]
    }
  ]
}"""

FALLBACK_THEMES = [
    "Map the terrain",
    "Build the foundation",
    "Practice under real conditions",
    "Show your work",
    "Widen the network",
    "Apply and iterate",
]

FALLBACK_STEPS = [
    ("research", "Research {focus}: list three resources and pick one to follow this week",
     "A note with three resources and the one you chose"),
    ("build", "Build a small artifact that applies what you studied about {focus}",
     "A committed or shareable artifact exists"),
    ("practice", "Practice {focus} in a timed session and log what felt hard",
     "A session log with at least two observations"),
    ("network", "Message one person working on {focus} and ask a specific question",
     "One message sent with a concrete question"),
    ("apply", "Apply your progress on {focus}: update a resume line, portfolio or application",
     "One external-facing document updated"),
]

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def extract_json(raw_text: str) -> Any:
    """Parse model output, tolerating Markdown code fences around the JSON."""
    cleaned = _FENCE_RE.sub("", raw_text or "").strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise GenerationError(
            f"Failed to parse model response as JSON: {exc}. Raw response: {cleaned[:200]}"
        ) from exc


def _goal_focus(goal_text: str) -> str:
    tokens = " ".join((goal_text or "").split()).split(" ")
    snippet = " ".join(tokens[:6]).strip()
    return snippet or "your goal"


def _clamp_minutes(value: float) -> int:
    return int(max(MIN_TASK_MINUTES, min(MAX_TASK_MINUTES, round(value))))


def build_plan_prompt(
    *,
    goal_text: str,
    hours_per_week: int,
    timeline_weeks: int,
    skill_level: SkillLevel,
    target_role: Optional[str],
) -> str:
    return (
        f'User Goal: "{goal_text.strip()}"\n'
        f'Target Role: "{target_role or "N/A"}"\n'
        f"Time Available: {hours_per_week} hours per week\n"
        f"Timeline: {timeline_weeks} weeks\n"
        f"Skill Level: {skill_level}\n\n"
        "Rules:\n"
        "- Break the goal into weekly milestones, one entry per week from 1 to the timeline.\n"
        f"- Each milestone has small actionable tasks ({MIN_TASK_MINUTES}-{MAX_TASK_MINUTES} minutes each).\n"
        "- Tasks must be specific and measurable with clear success criteria.\n"
        f"- Categories: {', '.join(TASK_CATEGORIES)}.\n"
        "- Task ids must be unique across the whole plan; prereqs reference those ids.\n"
        "- Output must be valid JSON matching this schema exactly:\n"
        f"{PLAN_SCHEMA_HINT}"
    )


def fallback_plan(
    *,
    goal_text: str,
    hours_per_week: int,
    timeline_weeks: int,
    skill_level: SkillLevel,
    target_role: Optional[str] = None,
) -> Plan:
    """Deterministic plan used when no model is configured; tasks form a single chain."""
    focus = _goal_focus(goal_text)
    per_week = 3
    minutes = _clamp_minutes(hours_per_week * 60 / per_week)
    weeks: List[Dict[str, Any]] = []
    previous_id: Optional[str] = None
    for number in range(1, max(1, timeline_weeks) + 1):
        tasks = []
        for slot in range(per_week):
            category, text, criteria = FALLBACK_STEPS[((number - 1) * per_week + slot) % len(FALLBACK_STEPS)]
            task_id = f"w{number}-t{slot + 1}"
            tasks.append(
                {
                    "id": task_id,
                    "text": text.format(focus=focus),
                    "minutes": minutes,
                    "category": category,
                    "successCriteria": criteria,
                    "prereqs": [previous_id] if previous_id else [],
                }
            )
            previous_id = task_id
        theme = FALLBACK_THEMES[(number - 1) % len(FALLBACK_THEMES)]
        weeks.append(
            {
                "week": number,
                "theme": theme,
                "milestones": [
                    {
                        "id": f"w{number}-m1",
                        "name": theme,
                        "why": f"Keeps week {number} moving toward {focus}.",
                        "tasks": tasks,
                    }
                ],
            }
        )
    role_hint = f" toward {target_role}" if target_role else ""
    return parse_plan(
        {
            "title": f"Roadmap: {focus}",
            "summary": (
                f"A {timeline_weeks}-week {skill_level} plan{role_hint} at about "
                f"{hours_per_week} hours per week."
            ),
            "weeks": weeks,
        }
    ).unwrap()


def generate_plan(
    goal_text: str,
    *,
    hours_per_week: int,
    timeline_weeks: int,
    skill_level: SkillLevel,
    target_role: Optional[str] = None,
    generator: Optional[TextGenerator] = None,
    request_id: Optional[str] = None,
) -> Plan:
    """Generate and validate a plan; raises GenerationError when the model output is unusable."""
    metadata = {
        "hours_per_week": hours_per_week,
        "timeline_weeks": timeline_weeks,
        "skill_level": skill_level,
        "llm_input_text": goal_text[:500],
    }
    if generator is None:
        logger.info("OPENAI_API_KEY missing; using fallback plan.")
        log_metric("plan.fallback.used", 1, {"timeline_weeks": timeline_weeks})
        return fallback_plan(
            goal_text=goal_text,
            hours_per_week=hours_per_week,
            timeline_weeks=timeline_weeks,
            skill_level=skill_level,
            target_role=target_role,
        )

    prompt = build_plan_prompt(
        goal_text=goal_text,
        hours_per_week=hours_per_week,
        timeline_weeks=timeline_weeks,
        skill_level=skill_level,
        target_role=target_role,
    )
    started = perf_counter()
    with trace("plan.generate", metadata=metadata, request_id=request_id) as plan_trace:
        raw = generator.generate(SYSTEM_PROMPT, prompt)
        result = parse_plan(extract_json(raw))
        if not result.ok:
            raise GenerationError(f"Generated plan failed validation at {result.field}: {result.reason}")
        if plan_trace is not None:
            plan_trace.update(metadata={**metadata, "plan_title": result.value.title})
    log_metric("plan.generate.latency_ms", (perf_counter() - started) * 1000)
    return result.value


def _format_tasks(tasks, *, with_ids: bool) -> str:
    lines = []
    for task in tasks:
        prefix = f"{task.id}: " if with_ids else ""
        lines.append(f"- {prefix}[{task.category}] {task.text}")
    return "\n".join(lines)


def build_replan_prompt(request: ReplanRequest) -> str:
    if request.completed_tasks:
        completed_block = (
            f"Completed Tasks ({len(request.completed_tasks)}):\n"
            f"{_format_tasks(request.completed_tasks, with_ids=True)}"
        )
    else:
        completed_block = "No tasks completed yet."
    remaining_block = ""
    if request.remaining_tasks:
        remaining_block = (
            f"\n\nTasks Being Replaced ({len(request.remaining_tasks)}):\n"
            f"{_format_tasks(request.remaining_tasks, with_ids=False)}"
        )
    constraints_block = f"\n\nAdditional Constraints: {request.constraints}" if request.constraints else ""
    feedback_block = f"\n\nUser Feedback: {request.feedback}" if request.feedback else ""
    return (
        "You are helping to replan the remaining tasks of a career plan.\n\n"
        f'Original Goal: "{request.goal_text}"\n'
        f"Timeline: {request.timeline_weeks} weeks remaining\n\n"
        f"{completed_block}{remaining_block}{constraints_block}{feedback_block}\n\n"
        "Your task:\n"
        "- Generate NEW tasks to replace the tasks listed above.\n"
        "- Build on what has already been completed.\n"
        f"- Distribute tasks across weeks 1 to {request.timeline_weeks} of the remaining timeline.\n"
        f"- Each task takes {MIN_TASK_MINUTES}-{MAX_TASK_MINUTES} minutes.\n"
        f"- Use categories: {', '.join(TASK_CATEGORIES)}.\n"
        "- prereqs may only contain ids of the completed tasks above; never reference new tasks.\n\n"
        "Output must be valid JSON matching this schema exactly:\n"
        '{"tasks": [{"text": string, "minutes": number, "category": string, '
        f'"successCriteria": string, "prereqs": string[], "week": number (1-{request.timeline_weeks}), '
        '"milestoneName": string}]}\n\n'
        f"Generate exactly {request.batch_size} new tasks."
    )


def fallback_replan_tasks(request: ReplanRequest) -> Dict[str, Any]:
    """Deterministic replacement batch of exactly `request.batch_size` tasks."""
    focus = _goal_focus(request.goal_text)
    size = request.batch_size
    anchor = [request.completed_tasks[-1].id] if request.completed_tasks else []
    tasks = []
    for index in range(size):
        week = 1 + (index * request.timeline_weeks) // size
        category, text, criteria = FALLBACK_STEPS[index % len(FALLBACK_STEPS)]
        tasks.append(
            {
                "text": text.format(focus=focus),
                "minutes": 45,
                "category": category,
                "successCriteria": criteria,
                "prereqs": anchor if index == 0 else [],
                "week": week,
                "milestoneName": f"Rerouted week {week}",
            }
        )
    return {"tasks": tasks}


def generate_replan_tasks(
    request: ReplanRequest,
    generator: Optional[TextGenerator] = None,
    request_id: Optional[str] = None,
) -> Any:
    """Return the raw replan proposal document; validation happens in the replan engine."""
    if generator is None:
        logger.info("OPENAI_API_KEY missing; using fallback replan batch.")
        log_metric("plan.replan.fallback.used", 1, {"batch_size": request.batch_size})
        return fallback_replan_tasks(request)

    with trace(
        "plan.replan.generate",
        metadata={
            "timeline_weeks": request.timeline_weeks,
            "completed": len(request.completed_tasks),
            "replaced": len(request.remaining_tasks),
            "batch_size": request.batch_size,
        },
        request_id=request_id,
    ):
        raw = generator.generate(SYSTEM_PROMPT, build_replan_prompt(request))
        return extract_json(raw)
