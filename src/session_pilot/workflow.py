"""Planning workflow -- validate, scan, persist, plan, publish.

One `PlanningWorkflow.run` per session. Stages run sequentially and report
progress only through the event log. Whatever happens, the run ends by
appending exactly one terminal event for the session.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import httpx

from session_pilot import constants as c
from session_pilot.config import PilotConfig
from session_pilot.db import Database
from session_pilot.event_log import EventLog
from session_pilot.events import (
	ErrorData,
	PlanningCompletedData,
	PlanningStartedData,
	ScanCompletedData,
	ScanProgressData,
	ScanStartedData,
	SessionStartedData,
	TaskGeneratedData,
)
from session_pilot.models import PlannedTask, Session, SessionTask, Signal
from session_pilot.planner import SessionPlanner
from session_pilot.scanners.converters import parse_github_repo
from session_pilot.scanners.github import GitHubScanner
from session_pilot.scanners.local import scan_local_repository

logger = logging.getLogger(__name__)


class WorkflowState(str, Enum):
	VALIDATING = "validating"
	SCANNING_LOCAL = "scanning_local"
	SCANNING_REMOTE = "scanning_remote"
	PERSISTING_SIGNALS = "persisting_signals"
	PLANNING = "planning"
	PERSISTING_TASKS = "persisting_tasks"
	COMPLETED = "completed"
	ERROR = "error"


class WorkspaceValidationError(Exception):
	"""The session's workspace path is missing, not a directory, or not allowed."""


class WorkflowCancelled(Exception):
	"""A checkpoint observed that the session was cancelled."""


@dataclass
class WorkflowResult:
	"""Summary of one workflow run."""

	session_id: str = ""
	state: WorkflowState = WorkflowState.VALIDATING
	signal_count: int = 0
	tasks: list[SessionTask] = field(default_factory=list)
	error_code: str = ""
	cancelled: bool = False


def validate_workspace(local_path: str | None, config: PilotConfig) -> None:
	if local_path is None:
		return
	path = Path(local_path).expanduser()
	if not path.exists():
		raise WorkspaceValidationError(f"Workspace path does not exist: {local_path}")
	if not path.is_dir():
		raise WorkspaceValidationError(f"Workspace path is not a directory: {local_path}")
	if not config.workspaces.is_allowed(path):
		raise WorkspaceValidationError(f"Workspace path is outside the allowed roots: {local_path}")


def build_session_tasks(session_id: str, planned: list[PlannedTask]) -> list[SessionTask]:
	return [
		SessionTask(
			id=f"task_{session_id}_{i + 1}",
			session_id=session_id,
			title=task.title,
			description=task.description,
			estimated_minutes=task.estimated_minutes,
			order=i,
		)
		for i, task in enumerate(planned)
	]


class PlanningWorkflow:
	"""Runs the planning pipeline for a session that already exists in the database."""

	def __init__(
		self,
		config: PilotConfig,
		db: Database,
		event_log: EventLog,
		planner: SessionPlanner,
		github_transport: httpx.AsyncBaseTransport | None = None,
	) -> None:
		self.config = config
		self.db = db
		self.events = event_log
		self.planner = planner
		self._github_transport = github_transport

	def _enter(self, result: WorkflowResult, state: WorkflowState) -> None:
		result.state = state
		logger.info("Session %s: %s", result.session_id, state.value)

	def _checkpoint(self, session_id: str) -> None:
		if self.db.get_session_status(session_id) == c.SESSION_CANCELLED:
			raise WorkflowCancelled(session_id)

	def _error(self, session_id: str, code: str, message: str) -> None:
		self.events.append(session_id, c.EVENT_ERROR, ErrorData(code=code, message=message))

	async def run(self, session_id: str) -> WorkflowResult:
		result = WorkflowResult(session_id=session_id)
		session = self.db.get_session(session_id)
		if session is None:
			raise KeyError(f"Unknown session: {session_id}")

		try:
			self._enter(result, WorkflowState.VALIDATING)
			validate_workspace(session.local_path, self.config)
			self._checkpoint(session_id)

			signals: list[Signal] = []
			if session.local_path:
				self._enter(result, WorkflowState.SCANNING_LOCAL)
				signals.extend(await self._scan_local(session))
				self._checkpoint(session_id)

			if session.github_repo:
				self._enter(result, WorkflowState.SCANNING_REMOTE)
				signals.extend(await self._scan_github(session))
				self._checkpoint(session_id)

			self.events.append(session_id, c.EVENT_SCAN_COMPLETED, ScanCompletedData(
				message=f"Scan complete: {len(signals)} signals",
				signal_count=len(signals),
			))

			self._enter(result, WorkflowState.PERSISTING_SIGNALS)
			self.db.insert_signals(session_id, signals)
			result.signal_count = len(signals)
			self._checkpoint(session_id)

			self._enter(result, WorkflowState.PLANNING)
			self.events.append(session_id, c.EVENT_PLANNING_STARTED, PlanningStartedData(
				message="Generating session plan",
			))
			planned = await self.planner.generate_plan(
				signals, session.user_goal, session.time_budget_minutes, session.focus_weights,
			)
			self._checkpoint(session_id)

			self._enter(result, WorkflowState.PERSISTING_TASKS)
			result.tasks = self._persist_tasks(session_id, planned)
			self._enter(result, WorkflowState.COMPLETED)

		except WorkspaceValidationError as exc:
			logger.warning("Session %s: invalid workspace: %s", session_id, exc)
			result.state = WorkflowState.ERROR
			result.error_code = c.ERROR_INVALID_WORKSPACE
			self._error(session_id, c.ERROR_INVALID_WORKSPACE, str(exc))
			self.db.update_session_status(session_id, c.SESSION_CANCELLED)
		except WorkflowCancelled:
			logger.info("Session %s cancelled during %s", session_id, result.state.value)
			result.cancelled = True
		except asyncio.CancelledError:
			logger.info("Session %s workflow task cancelled", session_id)
			result.cancelled = True
			self.db.update_session_status(session_id, c.SESSION_CANCELLED)
			raise
		except Exception as exc:
			logger.error("Session %s failed during %s: %s", session_id, result.state.value, exc, exc_info=True)
			result.state = WorkflowState.ERROR
			result.error_code = c.ERROR_PLANNING_FAILED
			try:
				self._error(session_id, c.ERROR_PLANNING_FAILED, str(exc) or type(exc).__name__)
				self.db.update_session_status(session_id, c.SESSION_CANCELLED)
			except Exception as report_exc:
				logger.error("Failed to record failure for session %s: %s", session_id, report_exc, exc_info=True)
		finally:
			try:
				self.events.complete(session_id, cancelled=result.cancelled)
			except Exception as exc:
				logger.error("Failed to append terminal event for session %s: %s", session_id, exc, exc_info=True)

		return result

	async def _scan_local(self, session: Session) -> list[Signal]:
		sid = session.id
		self.events.append(sid, c.EVENT_SCAN_STARTED, ScanStartedData(
			session_id=sid, source="local", message="Scanning local repository",
		))
		self.events.append(sid, c.EVENT_SCAN_PROGRESS, ScanProgressData(
			source="local", message="Scanning files for TODOs and changes", progress=0.1,
		))
		scan = await scan_local_repository(session.local_path, sid, self.config.local_scan)
		self.events.append(sid, c.EVENT_SCAN_PROGRESS, ScanProgressData(
			source="local",
			message=f"Found {len(scan.signals)} local signals in {scan.scanned_files} files",
			progress=1.0,
		))
		if scan.errors:
			self._error(sid, c.ERROR_LOCAL_SCAN_PARTIAL, "; ".join(scan.errors))
		return scan.signals

	async def _scan_github(self, session: Session) -> list[Signal]:
		sid = session.id
		parsed = parse_github_repo(session.github_repo)
		if parsed is None:
			self._error(sid, c.ERROR_INVALID_GITHUB_REPO, f"Invalid GitHub repository: {session.github_repo}")
			return []
		owner, repo = parsed
		self.events.append(sid, c.EVENT_SCAN_STARTED, ScanStartedData(
			session_id=sid, source="github", message=f"Scanning GitHub repository {owner}/{repo}",
		))
		self.events.append(sid, c.EVENT_SCAN_PROGRESS, ScanProgressData(
			source="github", message="Fetching issues, pull requests and commits", progress=0.1,
		))
		scanner = GitHubScanner(self.config.github, transport=self._github_transport)
		scan = await scanner.scan(owner, repo, sid)
		self.events.append(sid, c.EVENT_SCAN_PROGRESS, ScanProgressData(
			source="github", message=f"Found {len(scan.signals)} GitHub signals", progress=1.0,
		))
		if scan.errors:
			self._error(sid, c.ERROR_GITHUB_SCAN_PARTIAL, "; ".join(scan.errors))
		return scan.signals

	def _persist_tasks(self, session_id: str, planned: list[PlannedTask]) -> list[SessionTask]:
		tasks = build_session_tasks(session_id, planned)
		self.db.insert_tasks(tasks)
		for task in tasks:
			self.events.append(session_id, c.EVENT_TASK_GENERATED, TaskGeneratedData(
				task_id=task.id,
				title=task.title,
				description=task.description,
				estimated_minutes=task.estimated_minutes,
			))
		total = sum(t.estimated_minutes or 0 for t in tasks)
		self.events.append(session_id, c.EVENT_PLANNING_COMPLETED, PlanningCompletedData(
			message=f"Planned {len(tasks)} tasks ({total} min)",
			task_count=len(tasks),
			total_estimated_minutes=total,
		))
		self.db.update_session_status(session_id, c.SESSION_ACTIVE)
		self.events.append(session_id, c.EVENT_SESSION_STARTED, SessionStartedData(
			session_id=session_id, task_count=len(tasks),
		))
		return tasks


class WorkflowRunner:
	"""Owns one detached workflow task per session; callers never await a run."""

	def __init__(self, workflow: PlanningWorkflow) -> None:
		self.workflow = workflow
		self._tasks: dict[str, asyncio.Task[WorkflowResult]] = {}

	def start(self, session_id: str) -> asyncio.Task[WorkflowResult]:
		if self.is_running(session_id):
			raise RuntimeError(f"Workflow already running for session {session_id}")
		task = asyncio.create_task(self.workflow.run(session_id), name=f"workflow-{session_id}")
		self._tasks[session_id] = task
		task.add_done_callback(lambda t, sid=session_id: self._on_done(sid, t))
		return task

	def _on_done(self, session_id: str, task: asyncio.Task[WorkflowResult]) -> None:
		if task.cancelled():
			return
		exc = task.exception()
		if exc is not None:
			logger.error("Workflow for session %s raised: %s", session_id, exc, exc_info=exc)

	def is_running(self, session_id: str) -> bool:
		task = self._tasks.get(session_id)
		return task is not None and not task.done()

	async def wait(self, session_id: str) -> WorkflowResult | None:
		"""Await the session's most recent run. None if it was never started here."""
		task = self._tasks.get(session_id)
		if task is None:
			return None
		return await task

	async def shutdown(self) -> None:
		tasks = list(self._tasks.values())
		for task in tasks:
			task.cancel()
		await asyncio.gather(*tasks, return_exceptions=True)
