"""Data models for session planning state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
	return uuid4().hex[:12]


def new_session_id() -> str:
	return f"sess_{uuid4().hex[:16]}"


def clamp_priority(value: float) -> float:
	"""Clamp a heuristic score into [0, 1], rounding away float noise from additive weights."""
	return round(min(1.0, max(0.0, value)), 4)


def make_signal_id(session_id: str, source: str, *natural_key: object) -> str:
	"""Deterministic signal ID: the same natural key always maps to the same ID within a session."""
	key = ":".join(str(part) for part in natural_key)
	return f"{session_id}:{source}:{key}"


class SignalSource(str, Enum):
	LOCAL = "local"
	GITHUB = "github"


class SignalType(str, Enum):
	"""Known signal categories. Unknown strings collapse to CUSTOM."""

	TODO_COMMENT = "todo_comment"
	OPEN_ISSUE = "open_issue"
	OPEN_PR = "open_pr"
	PR_REVIEW_COMMENT = "pr_review_comment"
	RECENT_COMMIT = "recent_commit"
	MERGE_CONFLICT = "merge_conflict"
	UNCOMMITTED_CHANGE = "uncommitted_change"
	FAILING_TEST = "failing_test"
	LINT_ERROR = "lint_error"
	TYPE_ERROR = "type_error"
	STALE_BRANCH = "stale_branch"
	CUSTOM = "custom"

	@classmethod
	def parse(cls, value: str | SignalType) -> SignalType:
		if isinstance(value, SignalType):
			return value
		try:
			return cls(value)
		except ValueError:
			return cls.CUSTOM


@dataclass
class Signal:
	"""One piece of evidence about a codebase, scored by relevance.

	`priority` is clamped on construction so every consumer sees the canonical value.
	`metadata` is provenance only; planning and prioritization never read it.
	"""

	id: str
	source: SignalSource
	signal_type: SignalType
	title: str
	priority: float
	description: str | None = None
	file_path: str | None = None
	line_number: int | None = None
	url: str | None = None
	metadata: dict[str, Any] = field(default_factory=dict)

	def __post_init__(self) -> None:
		self.source = SignalSource(self.source)
		self.signal_type = SignalType.parse(self.signal_type)
		self.priority = clamp_priority(float(self.priority))


@dataclass
class FocusWeights:
	"""Relative emphasis for bugs/features/refactor. Stored raw, normalized only for prompts."""

	bugs: float = 0.5
	features: float = 0.5
	refactor: float = 0.5

	def __post_init__(self) -> None:
		for name in ("bugs", "features", "refactor"):
			if getattr(self, name) < 0:
				raise ValueError(f"focus weight {name!r} must be non-negative")


@dataclass
class PlannedTask:
	"""A generated task before persistence."""

	title: str
	description: str
	estimated_minutes: int
	related_signals: list[str] = field(default_factory=list)
	order: int = 0


@dataclass
class Session:
	"""A single planning session for a workspace."""

	id: str = field(default_factory=new_session_id)
	local_path: str | None = None
	github_repo: str | None = None
	user_goal: str = ""
	time_budget_minutes: int = 60
	focus_bugs: float = 0.5
	focus_features: float = 0.5
	focus_refactor: float = 0.5
	status: str = "planning"  # planning/active/completed/cancelled
	started_at: str = field(default_factory=_now_iso)
	ended_at: str | None = None

	@property
	def focus_weights(self) -> FocusWeights:
		return FocusWeights(self.focus_bugs, self.focus_features, self.focus_refactor)


@dataclass
class SessionTask:
	"""A persisted planned task. Status and notes are layered on later by the UI."""

	id: str = field(default_factory=_new_id)
	session_id: str = ""
	title: str = ""
	description: str | None = None
	estimated_minutes: int | None = None
	order: int = 0
	status: str = "pending"
	created_at: str = field(default_factory=_now_iso)


@dataclass
class SessionEvent:
	"""A stored progress event. `sequence_id` is the store-assigned resumption cursor."""

	session_id: str
	sequence_id: int
	event_type: str
	event_data: dict[str, Any]
	created_at: str = field(default_factory=_now_iso)

	def to_wire(self) -> dict[str, Any]:
		"""Shape sent to stream clients: {type, timestamp, data}."""
		return {
			"type": self.event_type,
			"timestamp": self.event_data.get("timestamp", self.created_at),
			"data": self.event_data.get("data", {}),
		}


@dataclass
class EventPage:
	"""Result of reading the event log after a cursor."""

	events: list[SessionEvent] = field(default_factory=list)
	next_cursor: int = 0
	is_complete: bool = False
