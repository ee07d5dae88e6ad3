"""CLI entry point for session-pilot."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from session_pilot.config import DEFAULT_CONFIG_NAME, PilotConfig, load_config, validate_config
from session_pilot.constants import DEFAULT_LIMITS
from session_pilot.db import Database
from session_pilot.event_log import EventLog, open_event_log
from session_pilot.llm import build_llm_client
from session_pilot.models import Session, SessionEvent
from session_pilot.planner import SessionPlanner
from session_pilot.workflow import PlanningWorkflow

logger = logging.getLogger(__name__)

PLAN_POLL_INTERVAL = 0.05


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(prog="session-pilot", description="Plan a time-boxed coding session")
	parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
	sub = parser.add_subparsers(dest="command")

	serve = sub.add_parser("serve", help="Run the HTTP API")
	serve.add_argument("--config", default=DEFAULT_CONFIG_NAME, help="Config file path")
	serve.add_argument("--host", default=None, help="Override [server] host")
	serve.add_argument("--port", type=int, default=None, help="Override [server] port")

	plan = sub.add_parser("plan", help="Scan a workspace and print a session plan")
	plan.add_argument("--config", default=DEFAULT_CONFIG_NAME, help="Config file path")
	plan.add_argument("--workspace", default=None, help="Local workspace path")
	plan.add_argument("--github", default=None, help="GitHub repository (owner/repo or URL)")
	plan.add_argument("--goal", required=True, help="What you are working on")
	plan.add_argument("--minutes", type=int, default=60, help="Time budget in minutes")
	plan.add_argument("--bugs", type=float, default=0.5, help="Focus weight for bugs")
	plan.add_argument("--features", type=float, default=0.5, help="Focus weight for features")
	plan.add_argument("--refactor", type=float, default=0.5, help="Focus weight for refactoring")
	plan.add_argument("--json", action="store_true", help="Print the final task list as JSON")

	events = sub.add_parser("events", help="Dump a session's stored event log")
	events.add_argument("session_id", help="Session ID")
	events.add_argument("--after", type=int, default=0, help="Only events after this sequence id")
	events.add_argument("--config", default=DEFAULT_CONFIG_NAME, help="Config file path")

	return parser


def _validate_config_path(raw: str) -> Path | None:
	if "\x00" in raw:
		print("Invalid config path: contains null byte", file=sys.stderr)
		return None
	if ".." in Path(raw).parts:
		print(f"Invalid config path: {raw} (path traversal not allowed)", file=sys.stderr)
		return None
	return Path(raw)


def _load(args: argparse.Namespace) -> PilotConfig | None:
	path = _validate_config_path(args.config)
	if path is None:
		return None
	config = load_config(path)
	problems = validate_config(config)
	if problems:
		for problem in problems:
			print(f"Config error: {problem}", file=sys.stderr)
		return None
	if not getattr(args, "verbose", False):
		logging.getLogger().setLevel(config.logging.level.upper())
	return config


def _format_event(event: SessionEvent) -> str:
	return f"[{event.sequence_id}] {event.event_type} {json.dumps(event.to_wire()['data'])}"


def cmd_serve(args: argparse.Namespace) -> int:
	import uvicorn

	from session_pilot.server import create_app

	config = _load(args)
	if config is None:
		return 1
	host = args.host or config.server.host
	port = args.port or config.server.port
	uvicorn.run(create_app(config), host=host, port=port, log_level=config.logging.level.lower())
	return 0


async def _run_plan(workflow: PlanningWorkflow, event_log: EventLog, session_id: str, quiet: bool) -> None:
	task = asyncio.create_task(workflow.run(session_id))
	cursor = 0
	while True:
		page = event_log.read_after(session_id, cursor)
		if not quiet:
			for event in page.events:
				print(_format_event(event))
		cursor = page.next_cursor
		if page.is_complete and task.done():
			break
		await asyncio.sleep(PLAN_POLL_INTERVAL)
	await task


def cmd_plan(args: argparse.Namespace) -> int:
	config = _load(args)
	if config is None:
		return 1
	if not args.workspace and not args.github:
		print("One of --workspace or --github is required", file=sys.stderr)
		return 1
	low, high = DEFAULT_LIMITS["min_time_budget"], DEFAULT_LIMITS["max_time_budget"]
	if not low <= args.minutes <= high:
		print(f"--minutes must be between {low} and {high}", file=sys.stderr)
		return 1
	for name in ("bugs", "features", "refactor"):
		if not 0.0 <= getattr(args, name) <= 1.0:
			print(f"--{name} must be between 0 and 1", file=sys.stderr)
			return 1

	workspace = str(Path(args.workspace).resolve()) if args.workspace else None
	db = Database(config.database.path)
	event_log = open_event_log(db, config.logging.events_jsonl)
	try:
		session = Session(
			local_path=workspace,
			github_repo=args.github,
			user_goal=args.goal,
			time_budget_minutes=args.minutes,
			focus_bugs=args.bugs,
			focus_features=args.features,
			focus_refactor=args.refactor,
		)
		db.insert_session(session)
		planner = SessionPlanner(build_llm_client(config.planner), config.planner)
		workflow = PlanningWorkflow(config, db, event_log, planner)
		asyncio.run(_run_plan(workflow, event_log, session.id, quiet=args.json))

		tasks = db.get_tasks_for_session(session.id)
		if args.json:
			print(json.dumps({
				"sessionId": session.id,
				"status": db.get_session_status(session.id),
				"tasks": [
					{"id": t.id, "title": t.title, "description": t.description, "estimatedMinutes": t.estimated_minutes}
					for t in tasks
				],
			}, indent=2))
		else:
			print(f"\nSession {session.id}: {len(tasks)} tasks")
			for t in tasks:
				print(f"  {t.order + 1}. {t.title} ({t.estimated_minutes} min)")
		return 0 if tasks else 1
	finally:
		event_log.close()
		db.close()


def cmd_events(args: argparse.Namespace) -> int:
	config = _load(args)
	if config is None:
		return 1
	if not Path(config.database.path).exists():
		print(f"No database at {config.database.path}", file=sys.stderr)
		return 1
	db = Database(config.database.path)
	try:
		if db.get_session(args.session_id) is None:
			print(f"Session not found: {args.session_id}", file=sys.stderr)
			return 1
		page = EventLog(db).read_after(args.session_id, args.after)
		for event in page.events:
			print(_format_event(event))
		if not page.is_complete:
			print("(stream still open)")
		return 0
	finally:
		db.close()


def main(argv: list[str] | None = None) -> int:
	parser = build_parser()
	args = parser.parse_args(argv)

	if args.command is None:
		parser.print_help()
		return 0

	level = logging.DEBUG if args.verbose else logging.INFO
	logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

	handlers = {
		"serve": cmd_serve,
		"plan": cmd_plan,
		"events": cmd_events,
	}
	return handlers[args.command](args)


if __name__ == "__main__":
	sys.exit(main())
