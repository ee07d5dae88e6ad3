"""Durable, resumable session event log backed by the database."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from session_pilot.constants import EVENT_SESSION_ENDED, TRANSPORT_EVENT_TYPES
from session_pilot.db import Database
from session_pilot.event_stream import EventStream
from session_pilot.events import EventPayloadError, SessionEndedData, is_stream_complete, validate_payload
from session_pilot.models import EventPage, SessionEvent

logger = logging.getLogger(__name__)


class EventLog:
	"""Append-only progress log per session with a monotonic cursor.

	The log, not an in-memory channel, is the source of truth for progress:
	readers resume from any cursor after a reconnect or a process restart.
	Exactly one stream-complete event is ever stored per session, and only
	through `complete()`.
	"""

	def __init__(self, db: Database, mirror: EventStream | None = None) -> None:
		self.db = db
		self._mirror = mirror

	def append(self, session_id: str, event_type: str, payload: Any) -> SessionEvent:
		"""Validate and store one event. Returns it with its store-assigned sequence id."""
		if event_type in TRANSPORT_EVENT_TYPES:
			raise EventPayloadError(f"{event_type!r} is a transport event and is never stored")
		if event_type == EVENT_SESSION_ENDED:
			raise EventPayloadError("Use complete() to end a session's event stream")
		data = validate_payload(event_type, payload)
		event = self.db.insert_event(session_id, event_type, _envelope(event_type, data))
		self._mirror_event(event)
		return event

	def complete(self, session_id: str, message: str = "Session event stream complete", cancelled: bool = False) -> SessionEvent | None:
		"""Append the terminal event. Idempotent: returns None when the session already has one."""
		data = validate_payload(
			EVENT_SESSION_ENDED,
			SessionEndedData(
				session_id=session_id,
				message=message,
				stream_complete=True,
				cancelled=cancelled,
			),
		)
		event = self.db.insert_terminal_event(session_id, _envelope(EVENT_SESSION_ENDED, data))
		if event is None:
			logger.debug("Session %s already has a terminal event", session_id)
			return None
		self._mirror_event(event)
		return event

	def read_after(self, session_id: str, cursor: int = 0, limit: int | None = None) -> EventPage:
		"""Events with sequence id greater than `cursor`, ascending."""
		events = self.db.get_events_after(session_id, cursor, limit=limit)
		next_cursor = events[-1].sequence_id if events else cursor
		complete = any(
			is_stream_complete(e.event_type, e.event_data.get("data", {})) for e in events
		)
		if not complete and not events:
			# An empty page past the terminal event still reports completion.
			complete = self.db.has_terminal_event(session_id)
		return EventPage(events=events, next_cursor=next_cursor, is_complete=complete)

	def is_complete(self, session_id: str) -> bool:
		return self.db.has_terminal_event(session_id)

	def close(self) -> None:
		if self._mirror is not None:
			self._mirror.close()

	def _mirror_event(self, event: SessionEvent) -> None:
		if self._mirror is None:
			return
		try:
			self._mirror.emit(event)
		except OSError as exc:
			logger.warning("Event mirror write failed: %s", exc)


def _envelope(event_type: str, data: dict[str, Any]) -> dict[str, Any]:
	return {
		"type": event_type,
		"timestamp": datetime.now(timezone.utc).isoformat(),
		"data": data,
	}


def open_event_log(db: Database, events_jsonl: str = "") -> EventLog:
	"""EventLog over `db`, mirrored to a JSONL file when a path is configured."""
	mirror = None
	if events_jsonl:
		mirror = EventStream(Path(events_jsonl).expanduser())
		mirror.open()
	return EventLog(db, mirror=mirror)
