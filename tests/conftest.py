"""Shared fixtures."""

from __future__ import annotations

import pytest

from session_pilot.db import Database
from session_pilot.event_log import EventLog
from session_pilot.models import Session, Signal


@pytest.fixture
def db() -> Database:
	database = Database(":memory:")
	yield database
	database.close()


@pytest.fixture
def event_log(db: Database) -> EventLog:
	return EventLog(db)


def make_session(db: Database, session_id: str = "s1", **kwargs) -> Session:
	defaults = {
		"id": session_id,
		"local_path": None,
		"github_repo": None,
		"user_goal": "Ship the login flow",
		"time_budget_minutes": 60,
	}
	defaults.update(kwargs)
	session = Session(**defaults)
	db.insert_session(session)
	return session


def make_signal(signal_id: str, priority: float, signal_type: str = "todo_comment", **kwargs) -> Signal:
	defaults = {
		"id": signal_id,
		"source": "local",
		"signal_type": signal_type,
		"title": f"Signal {signal_id}",
		"priority": priority,
	}
	defaults.update(kwargs)
	return Signal(**defaults)
