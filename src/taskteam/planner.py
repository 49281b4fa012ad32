"""Planner — decompose a task into workers and subtasks, and summarise results.

Planner replies are expected to contain one JSON object. The first ``{...}``
span is parsed as JSON, falling back to YAML; anything that does not yield
the expected shape degrades to a single generic worker that receives the
whole task verbatim.
"""

import json
import logging
import re
from collections.abc import Sequence
from typing import Any

import yaml

from taskteam.core.types import (
    ChatMessage,
    ExecutionPolicy,
    Plan,
    Subtask,
    Tier,
    WorkerOutput,
    WorkerSpec,
)
from taskteam.endpoints.base import Endpoint

logger = logging.getLogger(__name__)

_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

PLANNER_PROMPT = """You are a tech lead. Analyse the user's request and assemble the smallest team of specialist workers that can deliver it.

## Capability tiers
- low: quick answers, simple formatting or lookups
- medium: everyday development work
- high: complex reasoning, architecture, deep analysis

## Output format
Reply with a single JSON object:
{
  "summary": "short description of the request",
  "workers": [
    {
      "id": "worker-1",
      "name": "display name",
      "role": "detailed system prompt for this worker: expertise, style, output requirements",
      "tier": "low|medium|high",
      "skills": ["tag"]
    }
  ],
  "subtasks": [
    {
      "id": "task-1",
      "description": "what to do",
      "worker_id": "worker-1",
      "dependencies": [],
      "priority": 1
    }
  ],
  "policy": "parallel|sequential|mixed",
  "needs_review": true,
  "notes": "optional"
}

## Policies
- parallel: every subtask is independent
- sequential: subtasks must run strictly in order
- mixed: run according to dependencies

Only create workers the task needs. Set needs_review to true when code is produced."""

SUMMARIZE_PROMPT = "You are the tech lead. Summarise the team's work into a clear answer for the user."

FALLBACK_WORKER = WorkerSpec(
    id="fallback-worker",
    name="Generalist",
    role="You are a full-stack engineer who can handle any technical task. Provide a professional solution to the request.",
    tier=Tier.MEDIUM,
    skills=("full-stack", "problem-solving"),
)


def fallback_plan(task: str) -> Plan:
    """Single generic worker assigned the entire task."""
    return Plan(
        summary="Generated task",
        workers=[FALLBACK_WORKER],
        subtasks=[Subtask(id="task-1", description=task, worker_id=FALLBACK_WORKER.id, priority=1)],
        policy=ExecutionPolicy.SEQUENTIAL,
        needs_review=False,
    )


def _load_object(text: str) -> dict[str, Any]:
    match = _OBJECT_RE.search(text)
    if not match:
        raise ValueError("no JSON object in planner reply")
    raw = match.group(0)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        data = yaml.safe_load(raw)
    if not isinstance(data, dict):
        raise ValueError("planner reply is not an object")
    return data


_TRUE_WORDS = frozenset({"true", "yes", "y", "1", "on"})
_FALSE_WORDS = frozenset({"false", "no", "n", "0", "off", ""})


def _flag(value: Any, default: bool) -> bool:
    """Read a yes/no field that models sometimes emit as a string."""
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
        logger.warning("Unrecognised flag value %r, using %s", value, default)
        return default
    return default if value is None else bool(value)


def _dependencies(value: Any) -> list[str]:
    # A bare string is one id, or several separated by commas.
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return list(value or [])


def _policy(value: Any) -> ExecutionPolicy:
    if value is None:
        return ExecutionPolicy.MIXED
    try:
        return ExecutionPolicy(str(value).strip().lower())
    except ValueError:
        logger.warning("Unknown execution policy %r, using mixed", value)
        return ExecutionPolicy.MIXED


def _subtask(data: dict[str, Any]) -> Subtask:
    # Accept the camelCase spellings some models produce.
    worker_id = data.get("worker_id") or data.get("workerId") or data.get("expertId")
    if not worker_id:
        raise ValueError(f"subtask {data.get('id')!r} has no worker")
    return Subtask.from_dict(
        {
            **data,
            "worker_id": worker_id,
            "dependencies": _dependencies(data.get("dependencies") or data.get("depends_on")),
        }
    )


def parse_plan(text: str, task: str) -> Plan:
    """Parse a planner reply into a ``Plan``, or fall back to ``fallback_plan(task)``."""
    try:
        data = _load_object(text)
        workers_raw = data.get("workers", data.get("experts"))
        subtasks_raw = data.get("subtasks")
        if not isinstance(workers_raw, list) or not isinstance(subtasks_raw, list):
            raise ValueError("workers or subtasks missing")

        workers = [WorkerSpec.from_dict(w) for w in workers_raw]
        subtasks = [_subtask(s) for s in subtasks_raw]
        if not subtasks:
            raise ValueError("plan has no subtasks")
        if len({s.id for s in subtasks}) != len(subtasks):
            raise ValueError("duplicate subtask ids")

        policy = _policy(data.get("policy") or data.get("workflow"))
        needs_review = _flag(data.get("needs_review", data.get("needsReview")), default=True)
    except (ValueError, KeyError, TypeError, yaml.YAMLError) as e:
        logger.warning("Could not parse plan (%s), using a single generic worker", e)
        return fallback_plan(task)

    known = {s.id for s in subtasks}
    cleaned: list[Subtask] = []
    for s in subtasks:
        dangling = [d for d in s.dependencies if d not in known]
        if dangling:
            logger.warning("Dropping unknown dependencies %s of subtask %s", dangling, s.id)
            s = Subtask(
                id=s.id,
                description=s.description,
                worker_id=s.worker_id,
                dependencies=tuple(d for d in s.dependencies if d in known),
                priority=s.priority,
            )
        cleaned.append(s)

    return Plan(
        summary=str(data.get("summary") or "Task analysis"),
        workers=workers,
        subtasks=cleaned,
        policy=policy,
        needs_review=needs_review,
        notes=data.get("notes"),
    )


class Planner:
    """LLM-backed planner using a single lead endpoint."""

    def __init__(self, endpoint: Endpoint) -> None:
        self.endpoint = endpoint

    async def analyze(self, task: str, context: str | None = None) -> Plan:
        user = f"Request: {task}\n\nAdditional context: {context}" if context else f"Request: {task}"
        reply = await self.endpoint.invoke(
            [ChatMessage("system", PLANNER_PROMPT), ChatMessage("user", user)]
        )
        return parse_plan(reply, task)

    async def summarize(self, outputs: Sequence[WorkerOutput]) -> str:
        body = "\n\n---\n\n".join(f"[{o.worker_name}]\n{o.content}" for o in outputs)
        return await self.endpoint.invoke(
            [
                ChatMessage("system", SUMMARIZE_PROMPT),
                ChatMessage("user", f"The team completed the following work:\n\n{body}"),
            ]
        )
