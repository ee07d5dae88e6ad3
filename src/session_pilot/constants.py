"""Centralized event types, error codes, scoring weights and default limits."""

from __future__ import annotations

# -- Session event types --

EVENT_CONNECTED = "connected"
EVENT_HEARTBEAT = "heartbeat"
EVENT_SCAN_STARTED = "scan_started"
EVENT_SCAN_PROGRESS = "scan_progress"
EVENT_SCAN_COMPLETED = "scan_completed"
EVENT_PLANNING_STARTED = "planning_started"
EVENT_TASK_GENERATED = "task_generated"
EVENT_PLANNING_COMPLETED = "planning_completed"
EVENT_SESSION_STARTED = "session_started"
EVENT_SESSION_ENDED = "session_ended"
EVENT_ERROR = "error"

EVENT_TYPES: frozenset[str] = frozenset({
	EVENT_CONNECTED,
	EVENT_HEARTBEAT,
	EVENT_SCAN_STARTED,
	EVENT_SCAN_PROGRESS,
	EVENT_SCAN_COMPLETED,
	EVENT_PLANNING_STARTED,
	EVENT_TASK_GENERATED,
	EVENT_PLANNING_COMPLETED,
	EVENT_SESSION_STARTED,
	EVENT_SESSION_ENDED,
	EVENT_ERROR,
})

# Transport-only events are produced by the stream endpoint and never stored.
TRANSPORT_EVENT_TYPES: frozenset[str] = frozenset({EVENT_CONNECTED, EVENT_HEARTBEAT})

# -- Error codes carried by "error" events --

ERROR_INVALID_WORKSPACE = "INVALID_WORKSPACE"
ERROR_INVALID_GITHUB_REPO = "INVALID_GITHUB_REPO"
ERROR_LOCAL_SCAN_PARTIAL = "LOCAL_SCAN_PARTIAL"
ERROR_GITHUB_SCAN_PARTIAL = "GITHUB_SCAN_PARTIAL"
ERROR_PLANNING_FAILED = "PLANNING_FAILED"

# -- Session statuses --

SESSION_PLANNING = "planning"
SESSION_ACTIVE = "active"
SESSION_COMPLETED = "completed"
SESSION_CANCELLED = "cancelled"

SESSION_STATUSES: frozenset[str] = frozenset({
	SESSION_PLANNING,
	SESSION_ACTIVE,
	SESSION_COMPLETED,
	SESSION_CANCELLED,
})

# -- Local scanner priorities --

MARKER_PRIORITY: dict[str, float] = {
	"FIXME": 0.8,
	"HACK": 0.6,
	"XXX": 0.6,
	"TODO": 0.5,
}

GIT_STATUS_PRIORITY: dict[str, float] = {
	"conflict": 0.9,
	"deleted": 0.7,
	"modified": 0.6,
	"added": 0.4,
	"untracked": 0.2,
}

FAILING_TEST_PRIORITY = 0.85

DEFAULT_EXTENSIONS: tuple[str, ...] = (".py", ".ts", ".tsx", ".js", ".jsx")
DEFAULT_IGNORE: tuple[str, ...] = (
	"node_modules/**",
	".git/**",
	"dist/**",
	"build/**",
	".venv/**",
	"__pycache__/**",
)

# -- Remote scanner heuristics (base, bonuses, penalties) --

COMMIT_WEIGHTS: dict[str, float] = {
	"base": 0.45,
	"recent": 0.15,
	"own": 0.10,
	"fix_subject": 0.10,
	"stale": -0.10,
}

ISSUE_WEIGHTS: dict[str, float] = {
	"base": 0.50,
	"bug_label": 0.20,
	"urgent_label": 0.20,
	"assigned": 0.20,
	"recent": 0.10,
	"discussed": 0.10,
	"stale": -0.10,
}

PR_WEIGHTS: dict[str, float] = {
	"base": 0.50,
	"own": 0.30,
	"review_requested": 0.30,
	"failing_checks": 0.20,
	"changes_requested": 0.20,
	"conflicts": 0.20,
	"draft": -0.20,
}

PR_COMMENT_WEIGHTS: dict[str, float] = {
	"base": 0.50,
	"on_own_pr": 0.30,
	"recent": 0.15,
	"actionable": 0.10,
	"self_authored": -0.30,
}

ACTIONABLE_WORDS: tuple[str, ...] = (
	"fix",
	"change",
	"should",
	"need",
	"must",
	"todo",
	"please",
	"consider",
)

# -- Fallback planner --

FALLBACK_MAX_TASKS = 5
FALLBACK_BUDGET_SHARE = 0.8
FALLBACK_TYPE_CAPS: dict[str, int] = {
	"open_issue": 30,
	"failing_test": 30,
	"open_pr": 20,
	"todo_comment": 15,
}
DEFAULT_TASK_MINUTES = 15

# Common default limits used across the codebase
DEFAULT_LIMITS: dict[str, int] = {
	"max_signals_per_type": 10,
	"max_total_signals": 30,
	"max_title_length": 80,
	"max_description_length": 100,
	"max_commits": 10,
	"max_issues": 10,
	"max_prs": 5,
	"max_pr_comments": 10,
	"planning_max_tokens": 1024,
	"min_time_budget": 15,
	"max_time_budget": 480,
}
