"""Typed payloads for session events, validated when an event is appended."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from session_pilot import constants as c


class EventPayloadError(ValueError):
	"""Raised when an event payload does not match the shape declared for its type."""


class _Payload(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class ConnectedData(_Payload):
	session_id: str
	message: str = "Connected to session events"


class HeartbeatData(_Payload):
	cursor: int = 0


class ScanStartedData(_Payload):
	session_id: str
	source: str
	message: str


class ScanProgressData(_Payload):
	source: str
	message: str
	progress: float = Field(ge=0.0, le=1.0)


class ScanCompletedData(_Payload):
	message: str
	signal_count: int = Field(ge=0)


class PlanningStartedData(_Payload):
	message: str


class TaskGeneratedData(_Payload):
	task_id: str
	title: str
	description: str | None = None
	estimated_minutes: int | None = None


class PlanningCompletedData(_Payload):
	message: str
	task_count: int = Field(ge=0)
	total_estimated_minutes: int = Field(ge=0)


class SessionStartedData(_Payload):
	session_id: str
	task_count: int = Field(ge=0)


class SessionEndedData(_Payload):
	session_id: str
	message: str
	stream_complete: bool = False
	cancelled: bool = False


class ErrorData(_Payload):
	code: str
	message: str


PAYLOAD_MODELS: dict[str, type[_Payload]] = {
	c.EVENT_CONNECTED: ConnectedData,
	c.EVENT_HEARTBEAT: HeartbeatData,
	c.EVENT_SCAN_STARTED: ScanStartedData,
	c.EVENT_SCAN_PROGRESS: ScanProgressData,
	c.EVENT_SCAN_COMPLETED: ScanCompletedData,
	c.EVENT_PLANNING_STARTED: PlanningStartedData,
	c.EVENT_TASK_GENERATED: TaskGeneratedData,
	c.EVENT_PLANNING_COMPLETED: PlanningCompletedData,
	c.EVENT_SESSION_STARTED: SessionStartedData,
	c.EVENT_SESSION_ENDED: SessionEndedData,
	c.EVENT_ERROR: ErrorData,
}


def validate_payload(event_type: str, payload: dict[str, Any] | _Payload) -> dict[str, Any]:
	"""Validate a payload against its event type and return the camelCase wire dict.

	Accepts either a payload model instance or a plain dict (snake_case or camelCase keys).
	"""
	model = PAYLOAD_MODELS.get(event_type)
	if model is None:
		raise EventPayloadError(f"Unknown event type: {event_type!r}")
	if isinstance(payload, _Payload):
		if not isinstance(payload, model):
			raise EventPayloadError(
				f"Payload {type(payload).__name__} does not match event type {event_type!r}"
			)
		return payload.model_dump(by_alias=True, exclude_none=True)
	try:
		return model.model_validate(payload).model_dump(by_alias=True, exclude_none=True)
	except ValidationError as exc:
		raise EventPayloadError(f"Invalid payload for {event_type!r}: {exc}") from exc


def is_stream_complete(event_type: str, data: dict[str, Any]) -> bool:
	return event_type == c.EVENT_SESSION_ENDED and bool(data.get("streamComplete"))
