"""SQLite database operations for session planning state."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Sequence

from session_pilot.constants import EVENT_SESSION_ENDED
from session_pilot.models import Session, SessionEvent, SessionTask, Signal, _now_iso

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sessions (
	id TEXT PRIMARY KEY,
	local_path TEXT,
	github_repo TEXT,
	user_goal TEXT NOT NULL DEFAULT '',
	time_budget_minutes INTEGER NOT NULL,
	focus_bugs REAL NOT NULL DEFAULT 0.5,
	focus_features REAL NOT NULL DEFAULT 0.5,
	focus_refactor REAL NOT NULL DEFAULT 0.5,
	status TEXT NOT NULL DEFAULT 'planning',
	started_at TEXT NOT NULL,
	ended_at TEXT
);

CREATE TABLE IF NOT EXISTS signals (
	id TEXT PRIMARY KEY,
	session_id TEXT NOT NULL,
	source TEXT NOT NULL,
	signal_type TEXT NOT NULL,
	title TEXT NOT NULL,
	description TEXT,
	file_path TEXT,
	line_number INTEGER,
	url TEXT,
	priority REAL NOT NULL DEFAULT 0.5,
	metadata TEXT,
	created_at TEXT NOT NULL,
	FOREIGN KEY (session_id) REFERENCES sessions(id)
);

CREATE INDEX IF NOT EXISTS idx_signals_session ON signals(session_id);

CREATE TABLE IF NOT EXISTS session_tasks (
	id TEXT PRIMARY KEY,
	session_id TEXT NOT NULL,
	title TEXT NOT NULL,
	description TEXT,
	estimated_minutes INTEGER,
	"order" INTEGER NOT NULL DEFAULT 0,
	status TEXT NOT NULL DEFAULT 'pending',
	created_at TEXT NOT NULL,
	FOREIGN KEY (session_id) REFERENCES sessions(id)
);

CREATE INDEX IF NOT EXISTS idx_tasks_session ON session_tasks(session_id);

CREATE TABLE IF NOT EXISTS session_events (
	id INTEGER PRIMARY KEY AUTOINCREMENT,
	session_id TEXT NOT NULL,
	event_type TEXT NOT NULL,
	event_data TEXT NOT NULL,
	created_at TEXT NOT NULL,
	FOREIGN KEY (session_id) REFERENCES sessions(id)
);

CREATE INDEX IF NOT EXISTS idx_events_session ON session_events(session_id, id);

CREATE UNIQUE INDEX IF NOT EXISTS idx_events_terminal
	ON session_events(session_id) WHERE event_type = 'session_ended';
"""


class Database:
	"""SQLite database for sessions, signals, tasks and the event log.

	A single connection shared by every session. All access is serialized
	through a re-entrant lock so the background workflows, the stream endpoint
	and the request handlers (which may run on other threads) never interleave
	statements on the connection.
	"""

	def __init__(self, path: str | Path = ":memory:") -> None:
		db_path = str(path)
		if db_path != ":memory:":
			Path(db_path).parent.mkdir(parents=True, exist_ok=True)
		self.conn = sqlite3.connect(db_path, check_same_thread=False)
		self.conn.row_factory = sqlite3.Row
		if db_path != ":memory:":
			self.conn.execute("PRAGMA journal_mode=WAL")
		self.conn.execute("PRAGMA foreign_keys=ON")
		self.conn.execute("PRAGMA busy_timeout=5000")
		self._lock = threading.RLock()
		self._create_tables()

	def _create_tables(self) -> None:
		with self._lock:
			self.conn.executescript(SCHEMA_SQL)

	def close(self) -> None:
		with self._lock:
			self.conn.close()

	# -- Sessions --

	def insert_session(self, session: Session) -> None:
		with self._lock:
			self.conn.execute(
				"""INSERT INTO sessions
				(id, local_path, github_repo, user_goal, time_budget_minutes,
				 focus_bugs, focus_features, focus_refactor, status, started_at, ended_at)
				VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
				(
					session.id, session.local_path, session.github_repo,
					session.user_goal, session.time_budget_minutes,
					session.focus_bugs, session.focus_features, session.focus_refactor,
					session.status, session.started_at, session.ended_at,
				),
			)
			self.conn.commit()

	def get_session(self, session_id: str) -> Session | None:
		with self._lock:
			row = self.conn.execute("SELECT * FROM sessions WHERE id=?", (session_id,)).fetchone()
		if row is None:
			return None
		return self._row_to_session(row)

	def get_session_status(self, session_id: str) -> str | None:
		with self._lock:
			row = self.conn.execute("SELECT status FROM sessions WHERE id=?", (session_id,)).fetchone()
		return None if row is None else row["status"]

	def get_session_ids_by_status(self, status: str) -> list[str]:
		with self._lock:
			rows = self.conn.execute(
				"SELECT id FROM sessions WHERE status=? ORDER BY started_at ASC", (status,),
			).fetchall()
		return [r["id"] for r in rows]

	def update_session_status(self, session_id: str, status: str) -> None:
		ended_at = _now_iso() if status in ("completed", "cancelled") else None
		with self._lock:
			self.conn.execute(
				"UPDATE sessions SET status=?, ended_at=COALESCE(?, ended_at) WHERE id=?",
				(status, ended_at, session_id),
			)
			self.conn.commit()

	@staticmethod
	def _row_to_session(row: sqlite3.Row) -> Session:
		return Session(
			id=row["id"],
			local_path=row["local_path"],
			github_repo=row["github_repo"],
			user_goal=row["user_goal"],
			time_budget_minutes=row["time_budget_minutes"],
			focus_bugs=row["focus_bugs"],
			focus_features=row["focus_features"],
			focus_refactor=row["focus_refactor"],
			status=row["status"],
			started_at=row["started_at"],
			ended_at=row["ended_at"],
		)

	# -- Signals --

	def insert_signals(self, session_id: str, signals: Sequence[Signal]) -> int:
		"""Bulk insert signals for a session. Returns the number of new rows.

		IDs already stored are ignored, never overwritten.
		"""
		if not signals:
			return 0
		now = _now_iso()
		rows = [
			(
				s.id, session_id, s.source.value, s.signal_type.value, s.title,
				s.description, s.file_path, s.line_number, s.url, s.priority,
				json.dumps(s.metadata, default=str) if s.metadata else None, now,
			)
			for s in signals
		]
		with self._lock:
			before = self.conn.total_changes
			with self.conn:
				self.conn.executemany(
					"""INSERT INTO signals
					(id, session_id, source, signal_type, title, description,
					 file_path, line_number, url, priority, metadata, created_at)
					VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
					ON CONFLICT(id) DO NOTHING""",
					rows,
				)
			inserted = self.conn.total_changes - before
		if inserted < len(rows):
			logger.debug(
				"Ignored %d duplicate signal id(s) for session %s", len(rows) - inserted, session_id,
			)
		return inserted

	def get_signals_for_session(self, session_id: str) -> list[Signal]:
		with self._lock:
			rows = self.conn.execute(
				"SELECT * FROM signals WHERE session_id=? ORDER BY priority DESC, id ASC",
				(session_id,),
			).fetchall()
		return [self._row_to_signal(r) for r in rows]

	@staticmethod
	def _row_to_signal(row: sqlite3.Row) -> Signal:
		return Signal(
			id=row["id"],
			source=row["source"],
			signal_type=row["signal_type"],
			title=row["title"],
			priority=row["priority"],
			description=row["description"],
			file_path=row["file_path"],
			line_number=row["line_number"],
			url=row["url"],
			metadata=json.loads(row["metadata"]) if row["metadata"] else {},
		)

	# -- Tasks --

	def insert_tasks(self, tasks: Sequence[SessionTask]) -> None:
		if not tasks:
			return
		with self._lock, self.conn:
			self.conn.executemany(
				"""INSERT INTO session_tasks
				(id, session_id, title, description, estimated_minutes, "order", status, created_at)
				VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
				[
					(
						t.id, t.session_id, t.title, t.description,
						t.estimated_minutes, t.order, t.status, t.created_at,
					)
					for t in tasks
				],
			)

	def get_tasks_for_session(self, session_id: str) -> list[SessionTask]:
		with self._lock:
			rows = self.conn.execute(
				'SELECT * FROM session_tasks WHERE session_id=? ORDER BY "order" ASC',
				(session_id,),
			).fetchall()
		return [self._row_to_task(r) for r in rows]

	@staticmethod
	def _row_to_task(row: sqlite3.Row) -> SessionTask:
		return SessionTask(
			id=row["id"],
			session_id=row["session_id"],
			title=row["title"],
			description=row["description"],
			estimated_minutes=row["estimated_minutes"],
			order=row["order"],
			status=row["status"],
			created_at=row["created_at"],
		)

	# -- Events --

	def insert_event(self, session_id: str, event_type: str, event_data: dict[str, Any]) -> SessionEvent:
		now = _now_iso()
		with self._lock:
			cur = self.conn.execute(
				"""INSERT INTO session_events (session_id, event_type, event_data, created_at)
				VALUES (?, ?, ?, ?)""",
				(session_id, event_type, json.dumps(event_data), now),
			)
			self.conn.commit()
			sequence_id = int(cur.lastrowid)
		return SessionEvent(
			session_id=session_id,
			sequence_id=sequence_id,
			event_type=event_type,
			event_data=event_data,
			created_at=now,
		)

	def insert_terminal_event(self, session_id: str, event_data: dict[str, Any]) -> SessionEvent | None:
		"""Append the stream-complete event unless the session already has one.

		The check and the insert happen under the same lock. Another process
		sharing the database file is stopped by the unique `idx_events_terminal`
		index instead.
		"""
		with self._lock:
			if self.has_terminal_event(session_id):
				return None
			try:
				return self.insert_event(session_id, EVENT_SESSION_ENDED, event_data)
			except sqlite3.IntegrityError:
				self.conn.rollback()
				logger.debug("Terminal event for session %s already written by another connection", session_id)
				return None

	def has_terminal_event(self, session_id: str) -> bool:
		with self._lock:
			row = self.conn.execute(
				"""SELECT 1 FROM session_events
				WHERE session_id=? AND event_type=? LIMIT 1""",
				(session_id, EVENT_SESSION_ENDED),
			).fetchone()
		return row is not None

	def get_events_after(self, session_id: str, after_id: int = 0, limit: int | None = None) -> list[SessionEvent]:
		sql = "SELECT * FROM session_events WHERE session_id=? AND id>? ORDER BY id ASC"
		params: tuple[Any, ...] = (session_id, after_id)
		if limit is not None:
			sql += " LIMIT ?"
			params = (*params, limit)
		with self._lock:
			rows = self.conn.execute(sql, params).fetchall()
		return [self._row_to_event(r) for r in rows]

	@staticmethod
	def _row_to_event(row: sqlite3.Row) -> SessionEvent:
		return SessionEvent(
			session_id=row["session_id"],
			sequence_id=row["id"],
			event_type=row["event_type"],
			event_data=json.loads(row["event_data"]),
			created_at=row["created_at"],
		)
