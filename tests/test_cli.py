"""Tests for the command line interface."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from session_pilot.cli import build_parser, main


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
	path = tmp_path / "session-pilot.toml"
	path.write_text(
		"[database]\n"
		'path = "pilot.db"\n'
		"[planner]\n"
		'api_key_env = "PILOT_TEST_UNSET_KEY"\n'
		"[scan.github]\n"
		'token_env = "PILOT_TEST_UNSET_TOKEN"\n'
	)
	return path


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
	ws = tmp_path / "ws"
	ws.mkdir()
	(ws / "app.py").write_text("# FIXME: broken retry\n# TODO: docs\n")
	return ws


@pytest.fixture(autouse=True)
def _no_keys(monkeypatch: pytest.MonkeyPatch) -> None:
	monkeypatch.delenv("PILOT_TEST_UNSET_KEY", raising=False)
	monkeypatch.delenv("PILOT_TEST_UNSET_TOKEN", raising=False)


def _git_ok():
	return patch("session_pilot.scanners.local.run_git_status", new_callable=AsyncMock, return_value=(True, ""))


class TestParser:
	def test_plan_defaults(self) -> None:
		args = build_parser().parse_args(["plan", "--goal", "Ship", "--workspace", "."])
		assert args.command == "plan"
		assert args.minutes == 60
		assert args.bugs == 0.5
		assert args.json is False
		assert args.config == "session-pilot.toml"

	def test_serve_overrides(self) -> None:
		args = build_parser().parse_args(["serve", "--port", "9000"])
		assert args.port == 9000
		assert args.host is None

	def test_events(self) -> None:
		args = build_parser().parse_args(["events", "abc", "--after", "4"])
		assert args.session_id == "abc"
		assert args.after == 4

	def test_goal_required(self) -> None:
		with pytest.raises(SystemExit):
			build_parser().parse_args(["plan", "--workspace", "."])


class TestMain:
	def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
		assert main([]) == 0
		assert "session-pilot" in capsys.readouterr().out

	def test_config_path_traversal_rejected(self, capsys: pytest.CaptureFixture[str]) -> None:
		assert main(["events", "abc", "--config", "../etc/session-pilot.toml"]) == 1
		assert "path traversal" in capsys.readouterr().err

	def test_invalid_config_rejected(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
		path = tmp_path / "bad.toml"
		path.write_text("[server]\npoll_interval = 0\n")
		assert main(["events", "abc", "--config", str(path)]) == 1
		assert "poll_interval" in capsys.readouterr().err


class TestPlanCommand:
	def test_plan_json(self, config_file: Path, workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
		with _git_ok():
			rc = main([
				"plan", "--config", str(config_file), "--workspace", str(workspace),
				"--goal", "Stabilize retries", "--minutes", "30", "--json",
			])
		assert rc == 0
		out = json.loads(capsys.readouterr().out)
		assert out["status"] == "active"
		assert [t["title"] for t in out["tasks"]] == ["broken retry", "docs"]
		assert all(t["estimatedMinutes"] == 12 for t in out["tasks"])
		assert (config_file.parent / "pilot.db").exists()

	def test_plan_text_prints_events(
		self, config_file: Path, workspace: Path, capsys: pytest.CaptureFixture[str],
	) -> None:
		with _git_ok():
			rc = main(["plan", "--config", str(config_file), "--workspace", str(workspace), "--goal", "g"])
		out = capsys.readouterr().out
		assert rc == 0
		assert "scan_started" in out
		assert "session_ended" in out
		assert "2 tasks" in out

	def test_plan_needs_source(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
		assert main(["plan", "--config", str(config_file), "--goal", "g"]) == 1
		assert "--workspace or --github" in capsys.readouterr().err

	@pytest.mark.parametrize("minutes", ["-5", "0", "14", "481"])
	def test_plan_rejects_budget_out_of_range(
		self, minutes: str, config_file: Path, workspace: Path, capsys: pytest.CaptureFixture[str],
	) -> None:
		rc = main([
			"plan", "--config", str(config_file), "--workspace", str(workspace), "--goal", "g", "--minutes", minutes,
		])
		assert rc == 1
		assert "--minutes must be between 15 and 480" in capsys.readouterr().err
		assert not (config_file.parent / "pilot.db").exists()

	@pytest.mark.parametrize("flag", ["--bugs", "--features", "--refactor"])
	def test_plan_rejects_weight_out_of_range(
		self, flag: str, config_file: Path, workspace: Path, capsys: pytest.CaptureFixture[str],
	) -> None:
		rc = main([
			"plan", "--config", str(config_file), "--workspace", str(workspace), "--goal", "g", flag, "-0.5",
		])
		assert rc == 1
		assert f"{flag} must be between 0 and 1" in capsys.readouterr().err
		assert not (config_file.parent / "pilot.db").exists()

	def test_plan_missing_workspace_fails(self, config_file: Path, tmp_path: Path) -> None:
		rc = main([
			"plan", "--config", str(config_file), "--workspace", str(tmp_path / "missing"), "--goal", "g", "--json",
		])
		assert rc == 1


class TestEventsCommand:
	def test_dump_after_plan(self, config_file: Path, workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
		with _git_ok():
			main(["plan", "--config", str(config_file), "--workspace", str(workspace), "--goal", "g", "--json"])
		session_id = json.loads(capsys.readouterr().out)["sessionId"]

		assert main(["events", session_id, "--config", str(config_file)]) == 0
		lines = capsys.readouterr().out.splitlines()
		assert lines[0].startswith("[")
		assert " scan_started " in lines[0]
		assert " session_ended " in lines[-1]
		assert "(stream still open)" not in lines

	def test_unknown_session(self, config_file: Path, workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
		with _git_ok():
			main(["plan", "--config", str(config_file), "--workspace", str(workspace), "--goal", "g", "--json"])
		capsys.readouterr()
		assert main(["events", "nope", "--config", str(config_file)]) == 1
		assert "Session not found" in capsys.readouterr().err

	def test_missing_database(self, config_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
		assert main(["events", "abc", "--config", str(config_file)]) == 1
		assert "No database" in capsys.readouterr().err
