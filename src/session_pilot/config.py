"""Configuration loading from session-pilot.toml."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from session_pilot.constants import DEFAULT_EXTENSIONS, DEFAULT_IGNORE, DEFAULT_LIMITS

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "session-pilot.toml"

_GITHUB_USER_ENV = ("GITHUB_USER", "GITHUB_USERNAME", "GITHUB_LOGIN", "GITHUB_ACTOR")
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class ServerConfig:
	host: str = "127.0.0.1"
	port: int = 8340
	poll_interval: float = 0.5
	heartbeat_interval: float = 15.0


@dataclass
class DatabaseConfig:
	path: str = ".session-pilot/session-pilot.db"


@dataclass
class WorkspaceConfig:
	"""Workspace roots a session may point at. Empty means any directory."""

	allowed_roots: list[str] = field(default_factory=list)

	def is_allowed(self, path: str | Path) -> bool:
		if not self.allowed_roots:
			return True
		resolved = Path(path).expanduser().resolve()
		for root in self.allowed_roots:
			root_path = Path(root).expanduser().resolve()
			if resolved == root_path or root_path in resolved.parents:
				return True
		return False


@dataclass
class LocalScanConfig:
	extensions: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
	ignore: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORE))
	git_timeout: float = 15.0
	test_report: str = ""  # workspace-relative file holding captured test runner output


@dataclass
class GitHubConfig:
	api_url: str = "https://api.github.com"
	token_env: str = "GITHUB_TOKEN"
	username: str = ""
	timeout: float = 20.0
	include_issues: bool = True
	include_prs: bool = True
	include_pr_comments: bool = True
	include_recent_commits: bool = True
	assigned_to_me: bool = False  # only issues assigned to, and PRs by or awaiting review from, the current user
	max_commits: int = DEFAULT_LIMITS["max_commits"]
	max_issues: int = DEFAULT_LIMITS["max_issues"]
	max_prs: int = DEFAULT_LIMITS["max_prs"]
	max_pr_comments: int = DEFAULT_LIMITS["max_pr_comments"]

	@property
	def token(self) -> str:
		return os.environ.get(self.token_env, "")

	def current_user(self) -> str:
		"""Configured login, else the first common CI/user env var that is set."""
		if self.username:
			return self.username
		for name in _GITHUB_USER_ENV:
			value = os.environ.get(name, "")
			if value:
				return value
		return ""


@dataclass
class SignalLimits:
	"""Bounds that keep the planning prompt within its token budget."""

	max_signals_per_type: int = DEFAULT_LIMITS["max_signals_per_type"]
	max_total_signals: int = DEFAULT_LIMITS["max_total_signals"]
	max_title_length: int = DEFAULT_LIMITS["max_title_length"]
	max_description_length: int = DEFAULT_LIMITS["max_description_length"]


@dataclass
class PlannerConfig:
	api_url: str = "https://api.anthropic.com/v1/messages"
	api_key_env: str = "ANTHROPIC_API_KEY"
	model: str = "claude-sonnet-4-20250514"
	max_tokens: int = DEFAULT_LIMITS["planning_max_tokens"]
	timeout: float = 60.0
	retry_on_invalid: bool = True
	limits: SignalLimits = field(default_factory=SignalLimits)

	@property
	def api_key(self) -> str:
		return os.environ.get(self.api_key_env, "")


@dataclass
class LoggingConfig:
	level: str = "INFO"
	events_jsonl: str = ""


@dataclass
class PilotConfig:
	"""Top-level configuration."""

	server: ServerConfig = field(default_factory=ServerConfig)
	database: DatabaseConfig = field(default_factory=DatabaseConfig)
	workspaces: WorkspaceConfig = field(default_factory=WorkspaceConfig)
	local_scan: LocalScanConfig = field(default_factory=LocalScanConfig)
	github: GitHubConfig = field(default_factory=GitHubConfig)
	planner: PlannerConfig = field(default_factory=PlannerConfig)
	logging: LoggingConfig = field(default_factory=LoggingConfig)


def _build(cls: type, data: dict[str, Any]) -> Any:
	"""Instantiate a flat dataclass from a TOML table, ignoring unknown keys."""
	known = set(cls.__dataclass_fields__)
	unknown = set(data) - known
	if unknown:
		logger.warning("Ignoring unknown %s keys: %s", cls.__name__, ", ".join(sorted(unknown)))
	return cls(**{k: v for k, v in data.items() if k in known})


def _build_planner(data: dict[str, Any]) -> PlannerConfig:
	data = dict(data)
	limits = _build(SignalLimits, data.pop("limits", {}))
	planner = _build(PlannerConfig, data)
	planner.limits = limits
	return planner


def _build_scan(data: dict[str, Any]) -> tuple[LocalScanConfig, GitHubConfig]:
	return _build(LocalScanConfig, data.get("local", {})), _build(GitHubConfig, data.get("github", {}))


def load_config(path: str | Path | None = None) -> PilotConfig:
	"""Load config from a TOML file. Missing file or keys fall back to defaults."""
	if path is None:
		path = Path.cwd() / DEFAULT_CONFIG_NAME
	config_path = Path(path).expanduser()
	if not config_path.exists():
		logger.info("No config at %s, using defaults", config_path)
		return PilotConfig()

	with open(config_path, "rb") as f:
		raw = tomllib.load(f)

	local_scan, github = _build_scan(raw.get("scan", {}))
	config = PilotConfig(
		server=_build(ServerConfig, raw.get("server", {})),
		database=_build(DatabaseConfig, raw.get("database", {})),
		workspaces=_build(WorkspaceConfig, raw.get("workspaces", {})),
		local_scan=local_scan,
		github=github,
		planner=_build_planner(raw.get("planner", {})),
		logging=_build(LoggingConfig, raw.get("logging", {})),
	)
	# Relative database paths resolve against the config file's directory
	db_path = Path(config.database.path).expanduser()
	if not db_path.is_absolute() and config.database.path != ":memory:":
		config.database.path = str(config_path.parent / db_path)
	return config


def validate_config(config: PilotConfig) -> list[str]:
	"""Return human-readable problems with the config. Empty list means valid."""
	problems: list[str] = []
	if config.server.poll_interval <= 0:
		problems.append("server.poll_interval must be positive")
	if config.server.heartbeat_interval <= 0:
		problems.append("server.heartbeat_interval must be positive")
	if config.local_scan.git_timeout <= 0:
		problems.append("scan.local.git_timeout must be positive")
	if config.github.timeout <= 0:
		problems.append("scan.github.timeout must be positive")
	for name in ("max_commits", "max_issues", "max_prs", "max_pr_comments"):
		if getattr(config.github, name) < 0:
			problems.append(f"scan.github.{name} must be non-negative")
	if config.planner.timeout <= 0:
		problems.append("planner.timeout must be positive")
	if config.planner.max_tokens <= 0:
		problems.append("planner.max_tokens must be positive")
	limits = config.planner.limits
	for name in ("max_signals_per_type", "max_total_signals"):
		if getattr(limits, name) < 0:
			problems.append(f"planner.limits.{name} must be non-negative")
	for name in ("max_title_length", "max_description_length"):
		if getattr(limits, name) < 4:
			problems.append(f"planner.limits.{name} must be at least 4")
	if config.logging.level.upper() not in _LOG_LEVELS:
		problems.append(f"logging.level must be one of {', '.join(sorted(_LOG_LEVELS))}")
	return problems
