"""HTTP surface: start sessions, stream their progress over SSE, cancel them.

The progress stream polls the durable event log on a fixed interval. Clients
resume with `?after=N` or the `Last-Event-ID` header and stop reconnecting once
they have seen `session_ended` with `streamComplete: true`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

import httpx
from fastapi import FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from session_pilot import __version__
from session_pilot import constants as c
from session_pilot.config import PilotConfig
from session_pilot.db import Database
from session_pilot.event_log import EventLog, open_event_log
from session_pilot.events import ConnectedData, HeartbeatData, validate_payload
from session_pilot.llm import LLMClient, build_llm_client
from session_pilot.models import Session
from session_pilot.planner import SessionPlanner
from session_pilot.workflow import PlanningWorkflow, WorkflowRunner

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class _Body(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FocusWeightsBody(_Body):
	bugs: float = Field(ge=0.0, le=1.0)
	features: float = Field(ge=0.0, le=1.0)
	refactor: float = Field(ge=0.0, le=1.0)


class StartSessionBody(_Body):
	local_path: str | None = None
	github_repo: str | None = None
	user_goal: str = Field(min_length=1)
	time_budget_minutes: int = Field(
		ge=c.DEFAULT_LIMITS["min_time_budget"], le=c.DEFAULT_LIMITS["max_time_budget"],
	)
	focus_weights: FocusWeightsBody


def _error(status: int, message: str) -> JSONResponse:
	return JSONResponse({"error": message}, status_code=status)


def format_sse(payload: dict[str, Any], event_id: int | None = None) -> str:
	"""One SSE frame. Stored events carry their sequence id as the frame id."""
	lines = []
	if event_id is not None:
		lines.append(f"id: {event_id}")
	lines.append(f"data: {json.dumps(payload)}")
	return "\n".join(lines) + "\n\n"


def _transport_event(event_type: str, data: Any) -> dict[str, Any]:
	return {
		"type": event_type,
		"timestamp": datetime.now(timezone.utc).isoformat(),
		"data": validate_payload(event_type, data),
	}


def _parse_cursor(after: int | None, last_event_id: str | None) -> int:
	if after is not None:
		return max(after, 0)
	if last_event_id:
		try:
			return max(int(last_event_id), 0)
		except ValueError:
			return 0
	return 0


async def stream_session_events(
	event_log: EventLog,
	session_id: str,
	cursor: int,
	poll_interval: float,
	heartbeat_interval: float,
	request: Request | None = None,
) -> AsyncIterator[str]:
	"""Yield SSE frames for events after `cursor` until the terminal event is sent."""
	yield format_sse(_transport_event(c.EVENT_CONNECTED, ConnectedData(session_id=session_id)))
	loop = asyncio.get_running_loop()
	last_beat = loop.time()
	while True:
		page = event_log.read_after(session_id, cursor)
		for event in page.events:
			yield format_sse(event.to_wire(), event_id=event.sequence_id)
		cursor = page.next_cursor
		if page.is_complete:
			return
		if request is not None and await request.is_disconnected():
			logger.debug("Client disconnected from session %s at cursor %d", session_id, cursor)
			return
		if loop.time() - last_beat >= heartbeat_interval:
			yield format_sse(_transport_event(c.EVENT_HEARTBEAT, HeartbeatData(cursor=cursor)))
			last_beat = loop.time()
		await asyncio.sleep(poll_interval)


def sweep_interrupted_sessions(db: Database, event_log: EventLog) -> list[str]:
	"""Cancel sessions left in `planning` by a previous process.

	Runs before the app accepts requests, so no workflow can own them. Each
	swept session gets its terminal event and its stream can finish.
	"""
	swept = db.get_session_ids_by_status(c.SESSION_PLANNING)
	for session_id in swept:
		db.update_session_status(session_id, c.SESSION_CANCELLED)
		event_log.complete(session_id, message="Session interrupted before planning finished", cancelled=True)
		logger.warning("Cancelled session %s left in planning by a previous run", session_id)
	return swept


def create_app(
	config: PilotConfig | None = None,
	db: Database | None = None,
	llm: LLMClient | None = _UNSET,
	github_transport: httpx.AsyncBaseTransport | None = None,
	event_log: EventLog | None = None,
) -> FastAPI:
	"""Build the app. Omitted collaborators are constructed from `config`."""
	config = config or PilotConfig()
	db = db or Database(config.database.path)
	event_log = event_log or open_event_log(db, config.logging.events_jsonl)
	if llm is _UNSET:
		llm = build_llm_client(config.planner)
	planner = SessionPlanner(llm, config.planner)
	workflow = PlanningWorkflow(config, db, event_log, planner, github_transport=github_transport)
	runner = WorkflowRunner(workflow)

	@asynccontextmanager
	async def lifespan(app: FastAPI) -> AsyncIterator[None]:
		sweep_interrupted_sessions(db, event_log)
		yield
		await runner.shutdown()
		event_log.close()

	app = FastAPI(title="session-pilot", version=__version__, lifespan=lifespan)
	app.state.config = config
	app.state.db = db
	app.state.event_log = event_log
	app.state.runner = runner

	@app.exception_handler(RequestValidationError)
	async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
		problems = "; ".join(
			f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}" for err in exc.errors()
		)
		return _error(400, f"Invalid request: {problems}")

	@app.get("/api/health")
	async def health() -> dict[str, Any]:
		return {"status": "ok", "version": __version__}

	@app.post("/api/session/start", status_code=201)
	async def start_session(body: StartSessionBody) -> Any:
		if body.local_path is None and body.github_repo is None:
			return _error(400, "localPath or githubRepo is required")
		if body.local_path is not None and not config.workspaces.is_allowed(body.local_path):
			return _error(400, "localPath is outside the allowed workspace roots")

		session = Session(
			local_path=body.local_path,
			github_repo=body.github_repo,
			user_goal=body.user_goal,
			time_budget_minutes=body.time_budget_minutes,
			focus_bugs=body.focus_weights.bugs,
			focus_features=body.focus_weights.features,
			focus_refactor=body.focus_weights.refactor,
			status=c.SESSION_PLANNING,
		)
		db.insert_session(session)
		runner.start(session.id)
		logger.info("Started session %s", session.id)
		return {"sessionId": session.id, "status": session.status}

	@app.get("/api/session/{session_id}/events")
	async def session_events(
		session_id: str,
		request: Request,
		after: int | None = None,
		last_event_id: str | None = Header(default=None),
	) -> Any:
		if db.get_session(session_id) is None:
			return _error(404, "Session not found")
		cursor = _parse_cursor(after, last_event_id)
		return StreamingResponse(
			stream_session_events(
				event_log, session_id, cursor,
				config.server.poll_interval, config.server.heartbeat_interval, request,
			),
			media_type="text/event-stream",
			headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
		)

	@app.post("/api/session/{session_id}/cancel")
	async def cancel_session(session_id: str) -> Any:
		status = db.get_session_status(session_id)
		if status is None:
			return _error(404, "Session not found")
		if status in (c.SESSION_COMPLETED, c.SESSION_CANCELLED):
			return _error(400, f"Session is already {status}")
		db.update_session_status(session_id, c.SESSION_CANCELLED)
		# A running workflow appends the terminal event at its next checkpoint
		if not runner.is_running(session_id):
			event_log.complete(session_id, message="Session cancelled by user", cancelled=True)
		logger.info("Cancelled session %s", session_id)
		return {"sessionId": session_id, "cancelled": True}

	@app.get("/api/session/{session_id}/tasks")
	async def session_tasks(session_id: str) -> Any:
		if db.get_session(session_id) is None:
			return _error(404, "Session not found")
		return {
			"sessionId": session_id,
			"tasks": [
				{
					"id": t.id,
					"title": t.title,
					"description": t.description,
					"estimatedMinutes": t.estimated_minutes,
					"order": t.order,
					"status": t.status,
				}
				for t in db.get_tasks_for_session(session_id)
			],
		}

	return app
