"""JSON extraction for generative-service output."""

from __future__ import annotations

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


def _find_balanced(text: str, open_char: str, close_char: str, start: int = 0) -> str | None:
	"""Return the first balanced `open_char ... close_char` span at or after `start`.

	String literals are skipped so brackets inside quoted titles do not count.
	"""
	begin = text.find(open_char, start)
	while begin != -1:
		depth = 0
		in_string = False
		escaped = False
		for i in range(begin, len(text)):
			ch = text[i]
			if in_string:
				if escaped:
					escaped = False
				elif ch == "\\":
					escaped = True
				elif ch == '"':
					in_string = False
				continue
			if ch == '"':
				in_string = True
			elif ch == open_char:
				depth += 1
			elif ch == close_char:
				depth -= 1
				if depth == 0:
					return text[begin:i + 1]
		begin = text.find(open_char, begin + 1)
	return None


def extract_json_array(text: str) -> list[Any] | None:
	"""Extract a JSON array from text that may contain markdown fences or prose.

	Tries in order:
	1. Parse the whole text
	2. Parse the first fenced block (```json ... ``` or ``` ... ```)
	3. Parse each balanced [...] span until one decodes to a list

	Returns None if nothing parseable is found. A top-level object is never
	returned itself, but an array nested inside it (`{"tasks": [...]}`) is found
	by step 3 and returned.
	"""
	if not text or not text.strip():
		return None

	candidates: list[str] = [text.strip()]
	fence_match = _FENCE_RE.search(text)
	if fence_match:
		candidates.append(fence_match.group(1).strip())

	for candidate in candidates:
		try:
			parsed = json.loads(candidate)
		except (json.JSONDecodeError, ValueError):
			continue
		if isinstance(parsed, list):
			return parsed

	search_from = 0
	while True:
		span = _find_balanced(text, "[", "]", search_from)
		if span is None:
			return None
		try:
			parsed = json.loads(span)
		except (json.JSONDecodeError, ValueError):
			parsed = None
		if isinstance(parsed, list):
			return parsed
		search_from = text.find(span, search_from) + 1
