"""Tests for SQLite persistence."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from unittest.mock import patch

import pytest
from conftest import make_session, make_signal

from session_pilot.db import Database
from session_pilot.models import SessionTask


class TestSessions:
	def test_insert_and_get(self, db: Database) -> None:
		make_session(db, "s1", local_path="/tmp/ws", focus_bugs=0.9)
		session = db.get_session("s1")
		assert session is not None
		assert session.local_path == "/tmp/ws"
		assert session.focus_bugs == 0.9
		assert session.status == "planning"

	def test_get_unknown(self, db: Database) -> None:
		assert db.get_session("missing") is None
		assert db.get_session_status("missing") is None

	def test_terminal_status_sets_ended_at(self, db: Database) -> None:
		make_session(db, "s1")
		db.update_session_status("s1", "cancelled")
		session = db.get_session("s1")
		assert session.status == "cancelled"
		assert session.ended_at is not None

	def test_active_status_keeps_ended_at_empty(self, db: Database) -> None:
		make_session(db, "s1")
		db.update_session_status("s1", "active")
		assert db.get_session("s1").ended_at is None

	def test_session_ids_by_status(self, db: Database) -> None:
		make_session(db, "s1")
		make_session(db, "s2")
		make_session(db, "s3", status="active")
		assert sorted(db.get_session_ids_by_status("planning")) == ["s1", "s2"]
		assert db.get_session_ids_by_status("active") == ["s3"]
		assert db.get_session_ids_by_status("cancelled") == []


class TestSignals:
	def test_round_trip(self, db: Database) -> None:
		make_session(db, "s1")
		signal = make_signal("s1:local:todo:a.py:3", 0.8, file_path="a.py", line_number=3, metadata={"keyword": "FIXME"})
		assert db.insert_signals("s1", [signal]) == 1
		stored = db.get_signals_for_session("s1")
		assert stored == [signal]

	def test_duplicate_ids_ignored_not_overwritten(self, db: Database) -> None:
		make_session(db, "s1")
		db.insert_signals("s1", [make_signal("a", 0.5, title="original"), make_signal("b", 0.4)])
		inserted = db.insert_signals("s1", [make_signal("a", 0.9, title="changed"), make_signal("c", 0.3)])
		assert inserted == 1
		by_id = {s.id: s for s in db.get_signals_for_session("s1")}
		assert set(by_id) == {"a", "b", "c"}
		assert by_id["a"].title == "original"
		assert by_id["a"].priority == 0.5

	def test_ordered_by_priority(self, db: Database) -> None:
		make_session(db, "s1")
		db.insert_signals("s1", [make_signal("low", 0.1), make_signal("high", 0.9), make_signal("mid", 0.5)])
		assert [s.id for s in db.get_signals_for_session("s1")] == ["high", "mid", "low"]

	def test_empty_insert(self, db: Database) -> None:
		assert db.insert_signals("s1", []) == 0

	def test_unknown_session_rejected(self, db: Database) -> None:
		with pytest.raises(sqlite3.IntegrityError):
			db.insert_signals("ghost", [make_signal("a", 0.5)])


class TestTasks:
	def test_tasks_returned_in_order(self, db: Database) -> None:
		make_session(db, "s1")
		db.insert_tasks([
			SessionTask(id="t2", session_id="s1", title="Second", order=1, estimated_minutes=20),
			SessionTask(id="t1", session_id="s1", title="First", order=0, estimated_minutes=15),
		])
		tasks = db.get_tasks_for_session("s1")
		assert [t.id for t in tasks] == ["t1", "t2"]
		assert all(t.status == "pending" for t in tasks)


class TestEvents:
	def test_sequence_ids_increase_across_sessions(self, db: Database) -> None:
		make_session(db, "s1")
		make_session(db, "s2")
		e1 = db.insert_event("s1", "error", {"data": {}})
		e2 = db.insert_event("s2", "error", {"data": {}})
		e3 = db.insert_event("s1", "error", {"data": {}})
		assert e1.sequence_id < e2.sequence_id < e3.sequence_id

	def test_events_after_cursor(self, db: Database) -> None:
		make_session(db, "s1")
		ids = [db.insert_event("s1", "error", {"n": i}).sequence_id for i in range(4)]
		after = db.get_events_after("s1", ids[1])
		assert [e.event_data["n"] for e in after] == [2, 3]
		assert len(db.get_events_after("s1", 0, limit=2)) == 2

	def test_terminal_event_only_once(self, db: Database) -> None:
		make_session(db, "s1")
		assert not db.has_terminal_event("s1")
		first = db.insert_terminal_event("s1", {"data": {"streamComplete": True}})
		second = db.insert_terminal_event("s1", {"data": {"streamComplete": True}})
		assert first is not None
		assert second is None
		assert db.has_terminal_event("s1")
		assert len(db.get_events_after("s1")) == 1

	def test_concurrent_terminal_appends(self, tmp_path: Path) -> None:
		db = Database(tmp_path / "pilot.db")
		make_session(db, "s1")
		results: list[object] = []

		def append() -> None:
			results.append(db.insert_terminal_event("s1", {"data": {}}))

		threads = [threading.Thread(target=append) for _ in range(8)]
		for t in threads:
			t.start()
		for t in threads:
			t.join()
		assert sum(r is not None for r in results) == 1
		assert len(db.get_events_after("s1")) == 1
		db.close()

	def test_terminal_event_unique_across_connections(self, tmp_path: Path) -> None:
		path = tmp_path / "pilot.db"
		server_db = Database(path)
		cli_db = Database(path)
		make_session(server_db, "s1")
		assert server_db.insert_terminal_event("s1", {"data": {}}) is not None

		# The other connection lost the check race and attempts the insert anyway
		with patch.object(cli_db, "has_terminal_event", return_value=False):
			assert cli_db.insert_terminal_event("s1", {"data": {}}) is None
		with pytest.raises(sqlite3.IntegrityError):
			cli_db.insert_event("s1", "session_ended", {"data": {}})

		cli_db.insert_event("s1", "error", {"data": {"code": "X", "message": "m"}})
		types = [e.event_type for e in server_db.get_events_after("s1")]
		assert types == ["session_ended", "error"]
		cli_db.close()
		server_db.close()
