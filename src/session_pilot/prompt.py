"""Signal prioritization and compact prompt rendering for plan generation.

Rendering keeps only the title and file location of each signal. Descriptions
and URLs are dropped to keep the prompt inside its token budget.
"""

from __future__ import annotations

import math
from typing import Iterable

from session_pilot.config import SignalLimits
from session_pilot.models import FocusWeights, Signal

PLANNING_SYSTEM_PROMPT = (
	"You are a coding session planner. Create focused, time-boxed tasks from codebase signals.\n"
	"Rules: Fit tasks in time budget. Be specific. Realistic estimates. Group related work. "
	"Return only valid JSON array."
)

TASK_SCHEMA_HINT = (
	'[{"title":"...","description":"...","estimatedMinutes":N,"relatedSignals":["id"]}]'
)


def _by_priority(signals: Iterable[Signal]) -> list[Signal]:
	return sorted(signals, key=lambda s: s.priority, reverse=True)


def limit_and_prioritize_signals(signals: list[Signal], limits: SignalLimits | None = None) -> list[Signal]:
	"""Bounded, priority-ordered subset of `signals`.

	Low-priority signals of an over-represented type are dropped first, then
	the survivors are cut to the overall cap.
	"""
	limits = limits or SignalLimits()
	buckets: dict[str, list[Signal]] = {}
	for signal in _by_priority(signals):
		bucket = buckets.setdefault(signal.signal_type.value, [])
		if len(bucket) < limits.max_signals_per_type:
			bucket.append(signal)
	kept = [s for bucket in buckets.values() for s in bucket]
	return _by_priority(kept)[:limits.max_total_signals]


def group_signals_by_type(signals: list[Signal]) -> dict[str, list[Signal]]:
	groups: dict[str, list[Signal]] = {}
	for signal in signals:
		groups.setdefault(signal.signal_type.value, []).append(signal)
	return groups


def truncate(text: str, max_length: int) -> str:
	if len(text) <= max_length:
		return text
	return text[:max_length - 3] + "..."


def format_signal_compact(signal: Signal, limits: SignalLimits | None = None) -> str:
	"""`[id] title @path:line` on a single line."""
	limits = limits or SignalLimits()
	title = truncate(signal.title, limits.max_title_length)
	location = ""
	if signal.file_path:
		location = f" @{signal.file_path}"
		if signal.line_number:
			location += f":{signal.line_number}"
	return f"[{signal.id}] {title}{location}"


def format_signals_compact(groups: dict[str, list[Signal]], limits: SignalLimits | None = None) -> str:
	sections = []
	for signal_type, typed in groups.items():
		label = signal_type.replace("_", " ").upper()
		lines = "\n".join(format_signal_compact(s, limits) for s in _by_priority(typed))
		sections.append(f"{label}:\n{lines}")
	return "\n\n".join(sections)


def _percent(value: float) -> int:
	return math.floor(value * 100 + 0.5)


def normalize_weights(weights: FocusWeights) -> dict[str, int]:
	"""Integer percentages of the total weight. A zero total splits evenly."""
	total = weights.bugs + weights.features + weights.refactor
	if total <= 0:
		return {"bugs": 33, "features": 33, "refactor": 33}
	return {
		"bugs": _percent(weights.bugs / total),
		"features": _percent(weights.features / total),
		"refactor": _percent(weights.refactor / total),
	}


def format_planning_prompt(
	signals: list[Signal],
	user_goal: str,
	time_budget_minutes: int,
	focus_weights: FocusWeights,
	limits: SignalLimits | None = None,
) -> str:
	limited = limit_and_prioritize_signals(signals, limits)
	sections = format_signals_compact(group_signals_by_type(limited), limits)
	pct = normalize_weights(focus_weights)
	return (
		f"## Plan {time_budget_minutes}min session\n\n"
		f"Goal: {user_goal}\n\n"
		f"Focus: bugs={pct['bugs']}% features={pct['features']}% refactor={pct['refactor']}%\n\n"
		f"{sections or 'No signals - focus on goal.'}\n\n"
		f"Return JSON array of tasks: {TASK_SCHEMA_HINT}"
	)
