"""JSONL mirror of session events for offline analysis."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import IO

from session_pilot.models import SessionEvent


class EventStream:
	"""Append-only JSONL writer for session events.

	Complements the DB event log with a portable, jq-friendly format.
	The DB stays the source of truth; this file is never read back.
	"""

	def __init__(self, path: Path) -> None:
		self._path = path
		self._file: IO[str] | None = None
		self._lock = threading.Lock()

	@property
	def path(self) -> Path:
		return self._path

	def open(self) -> None:
		self._path.parent.mkdir(parents=True, exist_ok=True)
		self._file = self._path.open("a", encoding="utf-8")

	def close(self) -> None:
		with self._lock:
			if self._file is not None:
				self._file.close()
				self._file = None

	def emit(self, event: SessionEvent) -> None:
		with self._lock:
			if self._file is None:
				return
			record = {
				"sequence_id": event.sequence_id,
				"session_id": event.session_id,
				"event_type": event.event_type,
				"created_at": event.created_at,
				**event.to_wire(),
			}
			self._file.write(json.dumps(record, separators=(",", ":")) + "\n")
			self._file.flush()
