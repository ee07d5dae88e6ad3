"""Session planner -- turn prioritized signals into a time-boxed task list.

The generative service is asked once, and once more with a correction if the
first answer does not validate. Anything else (no client, transport failure,
two invalid answers) falls back to a deterministic plan built from the
highest-priority signals.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from session_pilot.config import PlannerConfig
from session_pilot.constants import (
	DEFAULT_TASK_MINUTES,
	FALLBACK_BUDGET_SHARE,
	FALLBACK_MAX_TASKS,
	FALLBACK_TYPE_CAPS,
)
from session_pilot.json_utils import extract_json_array
from session_pilot.llm import LLMClient, LLMError
from session_pilot.models import FocusWeights, PlannedTask, Signal
from session_pilot.prompt import PLANNING_SYSTEM_PROMPT, format_planning_prompt

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "No description provided"

CORRECTION_PROMPT = (
	"Your previous answer could not be used: {error}. "
	"Reply with only a JSON array of task objects, each with a non-empty "
	'"title", a "description", a positive integer "estimatedMinutes" and a '
	'"relatedSignals" list of signal ids.'
)


class PlanParseError(ValueError):
	"""The generative service's answer is not a valid task list."""


def _estimated_minutes(value: Any) -> int:
	if isinstance(value, bool) or not isinstance(value, (int, float)):
		return DEFAULT_TASK_MINUTES
	if not math.isfinite(value) or value <= 0:
		return DEFAULT_TASK_MINUTES
	return max(1, round(value))


def parse_planning_response(text: str) -> list[PlannedTask]:
	"""Parse and validate a planning answer.

	Accepts a bare JSON array, a fenced block, or an array embedded in prose.
	A single element without a usable title invalidates the whole answer.
	"""
	parsed = extract_json_array(text)
	if parsed is None:
		raise PlanParseError("no JSON array found in response")

	tasks: list[PlannedTask] = []
	for index, item in enumerate(parsed):
		if not isinstance(item, dict):
			raise PlanParseError(f"task at index {index} is not an object")
		title = item.get("title")
		if not isinstance(title, str) or not title.strip():
			raise PlanParseError(f"task at index {index} missing required 'title' field")
		description = item.get("description")
		related = item.get("relatedSignals")
		order = item.get("order")
		tasks.append(PlannedTask(
			title=title.strip(),
			description=description if isinstance(description, str) else DEFAULT_DESCRIPTION,
			estimated_minutes=_estimated_minutes(item.get("estimatedMinutes")),
			related_signals=[s for s in related if isinstance(s, str)] if isinstance(related, list) else [],
			order=order if isinstance(order, int) and not isinstance(order, bool) else index,
		))

	# Explicit orders win, ties keep response order; then renumber densely
	tasks.sort(key=lambda t: t.order)
	for i, task in enumerate(tasks):
		task.order = i
	return tasks


def generate_fallback_tasks(signals: list[Signal], user_goal: str, time_budget_minutes: int) -> list[PlannedTask]:
	"""Deterministic plan: up to five top signals sharing 80% of the budget."""
	chosen = sorted(signals, key=lambda s: s.priority, reverse=True)[:FALLBACK_MAX_TASKS]
	if not chosen:
		return [PlannedTask(
			title=f"Work on: {user_goal}",
			description=f"Focus session on: {user_goal}",
			estimated_minutes=max(1, time_budget_minutes),
			related_signals=[],
			order=0,
		)]

	average = math.floor(time_budget_minutes * FALLBACK_BUDGET_SHARE / len(chosen))
	tasks = []
	for index, signal in enumerate(chosen):
		cap = FALLBACK_TYPE_CAPS.get(signal.signal_type.value)
		minutes = average if cap is None else min(cap, average)
		tasks.append(PlannedTask(
			title=signal.title,
			description=signal.description or f"Work on: {signal.title}",
			estimated_minutes=max(1, minutes),
			related_signals=[signal.id],
			order=index,
		))
	return tasks


class SessionPlanner:
	"""Generates plans through an injected `LLMClient`, or the fallback when it is None."""

	def __init__(self, llm: LLMClient | None, config: PlannerConfig | None = None) -> None:
		self.llm = llm
		self.config = config or PlannerConfig()

	async def generate_plan(
		self,
		signals: list[Signal],
		user_goal: str,
		time_budget_minutes: int,
		focus_weights: FocusWeights,
	) -> list[PlannedTask]:
		if self.llm is None:
			logger.warning("No planning client configured, generating fallback tasks from signals")
			return generate_fallback_tasks(signals, user_goal, time_budget_minutes)

		prompt = format_planning_prompt(
			signals, user_goal, time_budget_minutes, focus_weights, self.config.limits,
		)
		messages = [{"role": "user", "content": prompt}]
		attempts = 2 if self.config.retry_on_invalid else 1

		for attempt in range(attempts):
			try:
				text = await self.llm.complete(PLANNING_SYSTEM_PROMPT, messages, self.config.max_tokens)
			except LLMError as exc:
				logger.warning("Planning call failed, using fallback: %s", exc)
				break
			try:
				tasks = parse_planning_response(text)
			except PlanParseError as exc:
				logger.warning("Invalid planning response (attempt %d/%d): %s", attempt + 1, attempts, exc)
				messages = messages + [
					{"role": "assistant", "content": text},
					{"role": "user", "content": CORRECTION_PROMPT.format(error=exc)},
				]
				continue
			if tasks:
				return tasks
			logger.warning("Planning response contained no tasks (attempt %d/%d)", attempt + 1, attempts)
			messages = messages + [
				{"role": "assistant", "content": text},
				{"role": "user", "content": CORRECTION_PROMPT.format(error="the task list was empty")},
			]

		return generate_fallback_tasks(signals, user_goal, time_budget_minutes)
