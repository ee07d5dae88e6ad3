"""Pure parsers turning file contents and command output into local signals."""

from __future__ import annotations

import re

from session_pilot.constants import FAILING_TEST_PRIORITY, GIT_STATUS_PRIORITY, MARKER_PRIORITY
from session_pilot.models import Signal, SignalSource, SignalType, make_signal_id

_MARKER_RE = re.compile(
	r"(?:\/\/|\/\*|#|<!--)\s*(TODO|FIXME|HACK|XXX)\b[\s:]*([^\r\n]*?)\s*(?:\*\/|-->)?\s*$",
	re.IGNORECASE,
)

_FAIL_FILE_RE = re.compile(r"^\s*FAIL\s+(.+)$")
_JEST_TEST_RE = re.compile(r"^\s*●\s+(.*)$")
_VITEST_TEST_RE = re.compile(r"^\s*[✕✖×]\s+(.*)$")
_MOCHA_TEST_RE = re.compile(r"^\s*\d+\)\s+(.*)$")
_PYTEST_FAILED_RE = re.compile(r"^FAILED\s+(\S+?)(?:::(\S+))?(?:\s+-\s+.*)?$")


def extract_markers(content: str, file_path: str, session_id: str) -> list[Signal]:
	"""Extract TODO/FIXME/HACK/XXX comments, one signal per matching line."""
	if not content:
		return []

	signals: list[Signal] = []
	for idx, line in enumerate(content.splitlines()):
		match = _MARKER_RE.search(line)
		if not match:
			continue
		keyword = match.group(1).upper()
		line_number = idx + 1
		signals.append(Signal(
			id=make_signal_id(session_id, "local", "todo", file_path, line_number),
			source=SignalSource.LOCAL,
			signal_type=SignalType.TODO_COMMENT,
			title=match.group(2).strip() or keyword,
			file_path=file_path,
			line_number=line_number,
			priority=MARKER_PRIORITY.get(keyword, 0.5),
			metadata={"keyword": keyword},
		))
	return signals


def classify_git_status(staged: str, unstaged: str) -> str:
	"""Map a porcelain XY pair to untracked/added/modified/deleted/conflict."""
	if staged == "?" and unstaged == "?":
		return "untracked"
	if (
		staged == "U"
		or unstaged == "U"
		or (staged == "A" and unstaged == "A")
		or (staged == "D" and unstaged == "D")
	):
		return "conflict"
	if staged == "D" or unstaged == "D":
		return "deleted"
	if staged == "A" or unstaged == "A":
		return "added"
	return "modified"


def _unquote_path(path: str) -> str:
	if len(path) >= 2 and path.startswith('"') and path.endswith('"'):
		return re.sub(r'\\(["\\])', r"\1", path[1:-1])
	return path


def parse_git_status(output: str, session_id: str) -> list[Signal]:
	"""Parse `git status --porcelain` output into change and conflict signals."""
	if not output:
		return []

	signals: list[Signal] = []
	for line in output.splitlines():
		if len(line) < 4:
			continue
		staged, unstaged = line[0], line[1]
		file_path = line[3:]
		if " -> " in file_path:
			file_path = file_path.split(" -> ", 1)[1]
		file_path = _unquote_path(file_path)

		status = classify_git_status(staged, unstaged)
		is_conflict = status == "conflict"
		signals.append(Signal(
			id=make_signal_id(session_id, "local", "git", file_path),
			source=SignalSource.LOCAL,
			signal_type=SignalType.MERGE_CONFLICT if is_conflict else SignalType.UNCOMMITTED_CHANGE,
			title=f"Merge conflict: {file_path}" if is_conflict else f"Uncommitted {status}: {file_path}",
			file_path=file_path,
			priority=GIT_STATUS_PRIORITY.get(status, 0.5),
			metadata={"git_status": status, "staged": staged, "unstaged": unstaged},
		))
	return signals


def parse_test_output(output: str, session_id: str) -> list[Signal]:
	"""Parse captured jest/vitest/mocha/pytest output for failing tests.

	Never runs anything: the output must already exist.
	"""
	if not output:
		return []

	signals: list[Signal] = []
	seen: set[str] = set()
	current_file: str | None = None

	def add(test_name: str | None) -> None:
		key = f"{current_file or 'unknown'}:{test_name or ''}"
		if key in seen:
			return
		seen.add(key)
		signals.append(Signal(
			id=make_signal_id(session_id, "local", "test", key),
			source=SignalSource.LOCAL,
			signal_type=SignalType.FAILING_TEST,
			title=f"Test failing: {test_name}" if test_name else f"Test failing in {current_file}",
			file_path=current_file,
			priority=FAILING_TEST_PRIORITY,
		))

	for line in output.splitlines():
		pytest_match = _PYTEST_FAILED_RE.match(line.strip())
		if pytest_match:
			current_file = pytest_match.group(1)
			add(pytest_match.group(2))
			continue

		fail_match = _FAIL_FILE_RE.match(line)
		if fail_match:
			current_file = re.sub(r"\s+\(\d+.*\)$", "", fail_match.group(1)).strip()
			continue

		for pattern in (_JEST_TEST_RE, _VITEST_TEST_RE, _MOCHA_TEST_RE):
			test_match = pattern.match(line)
			if test_match:
				add(test_match.group(1).strip())
				break

	return signals
