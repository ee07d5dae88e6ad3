"""Tests for the local workspace scanner and its parsers."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from session_pilot.config import LocalScanConfig
from session_pilot.constants import DEFAULT_IGNORE
from session_pilot.models import SignalType
from session_pilot.scanners.local import is_ignored, run_git_status, scan_local_repository, walk_workspace
from session_pilot.scanners.parsers import (
	classify_git_status,
	extract_markers,
	parse_git_status,
	parse_test_output,
)


class TestExtractMarkers:
	def test_fixme_on_line_twelve(self) -> None:
		content = "\n" * 11 + "  // FIXME: handle null\n"
		signals = extract_markers(content, "src/user.ts", "s1")
		assert len(signals) == 1
		s = signals[0]
		assert s.signal_type is SignalType.TODO_COMMENT
		assert s.priority == pytest.approx(0.8)
		assert s.line_number == 12
		assert s.title == "handle null"
		assert s.file_path == "src/user.ts"
		assert s.metadata["keyword"] == "FIXME"

	def test_keyword_priorities(self) -> None:
		content = "# TODO: a\n# HACK: b\n# XXX: c\n# FIXME: d\n"
		by_title = {s.title: s.priority for s in extract_markers(content, "m.py", "s1")}
		assert by_title == {"a": 0.5, "b": 0.6, "c": 0.6, "d": 0.8}

	def test_comment_styles(self) -> None:
		content = "/* TODO: block */\n<!-- FIXME: markup -->\n# XXX python\n"
		titles = [s.title for s in extract_markers(content, "f.js", "s1")]
		assert titles == ["block", "markup", "python"]

	def test_case_insensitive_keyword(self) -> None:
		signals = extract_markers("// todo: lower case", "f.js", "s1")
		assert signals[0].metadata["keyword"] == "TODO"
		assert signals[0].priority == 0.5

	def test_bare_keyword_uses_keyword_as_title(self) -> None:
		assert extract_markers("// TODO", "f.js", "s1")[0].title == "TODO"

	def test_no_comment_no_signal(self) -> None:
		assert extract_markers("todo_list = []\nname = 'FIXME'\n", "f.py", "s1") == []

	def test_ids_unique_and_stable(self) -> None:
		content = "# TODO: a\n# TODO: a\n"
		first = [s.id for s in extract_markers(content, "f.py", "s1")]
		second = [s.id for s in extract_markers(content, "f.py", "s1")]
		assert first == second
		assert len(set(first)) == 2


class TestGitStatus:
	@pytest.mark.parametrize(("xy", "expected"), [
		("??", "untracked"),
		("A ", "added"),
		(" M", "modified"),
		("MM", "modified"),
		("D ", "deleted"),
		(" D", "deleted"),
		("UU", "conflict"),
		("AA", "conflict"),
		("DD", "conflict"),
		("R ", "modified"),
	])
	def test_classify(self, xy: str, expected: str) -> None:
		assert classify_git_status(xy[0], xy[1]) == expected

	def test_parse_porcelain(self) -> None:
		output = (
			" M src/app.py\n"
			"?? notes.txt\n"
			"UU src/merge.py\n"
			"D  old.py\n"
			"A  new.py\n"
			"R  before.py -> after.py\n"
			'?? "with space.py"\n'
		)
		signals = {s.file_path: s for s in parse_git_status(output, "s1")}
		assert signals["src/app.py"].priority == 0.6
		assert signals["notes.txt"].priority == 0.2
		assert signals["src/merge.py"].priority == 0.9
		assert signals["src/merge.py"].signal_type is SignalType.MERGE_CONFLICT
		assert signals["old.py"].priority == 0.7
		assert signals["new.py"].priority == 0.4
		assert "after.py" in signals
		assert "with space.py" in signals
		assert signals["src/app.py"].signal_type is SignalType.UNCOMMITTED_CHANGE

	def test_conflicts_rank_highest(self) -> None:
		signals = parse_git_status("?? a\n M b\nUU c\nD  d\n", "s1")
		top = max(signals, key=lambda s: s.priority)
		assert top.file_path == "c"

	def test_empty_output(self) -> None:
		assert parse_git_status("", "s1") == []


class TestParseTestOutput:
	def test_jest_failures(self) -> None:
		output = (
			"PASS src/math.test.ts\n"
			"FAIL src/auth.test.ts (1.2 s)\n"
			"  ● login › rejects bad password\n"
			"  ● login › locks after retries\n"
		)
		signals = parse_test_output(output, "s1")
		assert [s.title for s in signals] == [
			"Test failing: login › rejects bad password",
			"Test failing: login › locks after retries",
		]
		assert all(s.file_path == "src/auth.test.ts" for s in signals)
		assert all(s.priority == 0.85 for s in signals)
		assert all(s.signal_type is SignalType.FAILING_TEST for s in signals)

	def test_pytest_summary(self) -> None:
		output = (
			"FAILED tests/test_api.py::TestLogin::test_bad_password - AssertionError: 401\n"
			"FAILED tests/test_db.py::test_migrate\n"
		)
		signals = parse_test_output(output, "s1")
		assert [(s.file_path, s.title) for s in signals] == [
			("tests/test_api.py", "Test failing: TestLogin::test_bad_password"),
			("tests/test_db.py", "Test failing: test_migrate"),
		]

	def test_vitest_and_mocha(self) -> None:
		output = " × adds numbers\n  1) parser handles empty input\n"
		titles = [s.title for s in parse_test_output(output, "s1")]
		assert titles == ["Test failing: adds numbers", "Test failing: parser handles empty input"]

	def test_repeated_failures_deduplicated(self) -> None:
		output = "FAIL a.test.js\n  ● breaks\n\nSummary:\n  ● breaks\n"
		assert len(parse_test_output(output, "s1")) == 1

	def test_passing_output(self) -> None:
		assert parse_test_output("PASS src/a.test.ts\nTests: 3 passed\n", "s1") == []


class TestWalkWorkspace:
	def test_ignore_globs(self) -> None:
		assert is_ignored("node_modules/pkg/index.js", list(DEFAULT_IGNORE))
		assert is_ignored("packages/web/node_modules/x.js", list(DEFAULT_IGNORE))
		assert not is_ignored("src/app.py", list(DEFAULT_IGNORE))

	def test_walk_filters_extensions_and_ignored_dirs(self, tmp_path: Path) -> None:
		(tmp_path / "src").mkdir()
		(tmp_path / "src" / "app.py").write_text("")
		(tmp_path / "src" / "ui.TSX").write_text("")
		(tmp_path / "README.md").write_text("")
		(tmp_path / "node_modules" / "lib").mkdir(parents=True)
		(tmp_path / "node_modules" / "lib" / "index.js").write_text("")
		(tmp_path / ".venv").mkdir()
		(tmp_path / ".venv" / "site.py").write_text("")
		files = walk_workspace(tmp_path, [".py", ".tsx"], list(DEFAULT_IGNORE))
		assert files == ["src/app.py", "src/ui.TSX"]


def _workspace(tmp_path: Path) -> Path:
	(tmp_path / "src").mkdir()
	(tmp_path / "src" / "user.ts").write_text("\n" * 11 + "// FIXME: handle null\n")
	(tmp_path / "src" / "util.py").write_text("# TODO: split module\n")
	(tmp_path / "node_modules").mkdir()
	(tmp_path / "node_modules" / "dep.js").write_text("// FIXME: vendored\n")
	return tmp_path


class TestScanLocalRepository:
	async def test_scan_collects_markers_and_git(self, tmp_path: Path) -> None:
		root = _workspace(tmp_path)
		with patch(
			"session_pilot.scanners.local.run_git_status",
			new_callable=AsyncMock,
			return_value=(True, " M src/util.py\n"),
		):
			result = await scan_local_repository(root, "s1")
		assert result.scanned_files == 2
		assert result.errors == []
		types = sorted(s.signal_type.value for s in result.signals)
		assert types == ["todo_comment", "todo_comment", "uncommitted_change"]
		fixme = next(s for s in result.signals if s.title == "handle null")
		assert fixme.line_number == 12
		assert fixme.file_path == "src/user.ts"

	async def test_git_failure_is_collected(self, tmp_path: Path) -> None:
		root = _workspace(tmp_path)
		with patch(
			"session_pilot.scanners.local.run_git_status",
			new_callable=AsyncMock,
			return_value=(False, "git status failed (exit 128): not a git repository"),
		):
			result = await scan_local_repository(root, "s1")
		assert result.errors == ["git status failed (exit 128): not a git repository"]
		assert len(result.signals) == 2

	async def test_unreadable_file_skipped(self, tmp_path: Path) -> None:
		root = _workspace(tmp_path)
		original = Path.read_text

		def flaky_read(self: Path, *args: object, **kwargs: object) -> str:
			if self.name == "util.py":
				raise PermissionError("denied")
			return original(self, *args, **kwargs)

		with patch.object(Path, "read_text", flaky_read), patch(
			"session_pilot.scanners.local.run_git_status",
			new_callable=AsyncMock,
			return_value=(True, ""),
		):
			result = await scan_local_repository(root, "s1")
		assert result.scanned_files == 1
		assert result.errors == []
		assert [s.title for s in result.signals] == ["handle null"]

	async def test_test_report_parsed(self, tmp_path: Path) -> None:
		root = _workspace(tmp_path)
		(root / "jest.log").write_text("FAIL src/user.test.ts\n  ● user › loads profile\n")
		config = LocalScanConfig(test_report="jest.log")
		with patch(
			"session_pilot.scanners.local.run_git_status",
			new_callable=AsyncMock,
			return_value=(True, ""),
		):
			result = await scan_local_repository(root, "s1", config)
		failing = [s for s in result.signals if s.signal_type is SignalType.FAILING_TEST]
		assert len(failing) == 1
		assert failing[0].priority == 0.85

	async def test_test_report_outside_workspace_rejected(self, tmp_path: Path) -> None:
		root = tmp_path / "ws"
		root.mkdir()
		(tmp_path / "outside.log").write_text("FAIL x.test.js\n  ● leaks\n")
		config = LocalScanConfig(test_report="../outside.log")
		with patch(
			"session_pilot.scanners.local.run_git_status",
			new_callable=AsyncMock,
			return_value=(True, ""),
		):
			result = await scan_local_repository(root, "s1", config)
		assert result.signals == []
		assert "outside the workspace" in result.errors[0]

	async def test_run_git_status_outside_repo_fails(self, tmp_path: Path) -> None:
		ok, message = await run_git_status(tmp_path, timeout=10)
		assert ok is False
		assert message
