"""Local workspace scanner: marker comments, git status, captured test output."""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from session_pilot.config import LocalScanConfig
from session_pilot.models import Signal
from session_pilot.scanners.parsers import extract_markers, parse_git_status, parse_test_output

logger = logging.getLogger(__name__)


@dataclass
class LocalScanResult:
	signals: list[Signal] = field(default_factory=list)
	scanned_files: int = 0
	errors: list[str] = field(default_factory=list)


def _dir_patterns(ignore: list[str]) -> list[str]:
	return [p[:-3] if p.endswith("/**") else p for p in ignore]


def is_ignored(rel_path: str, patterns: list[str]) -> bool:
	"""True if a workspace-relative path matches any ignore glob.

	`dir/**` patterns match the directory itself and everything below it,
	at any depth (so `node_modules/**` also skips `pkg/node_modules`).
	"""
	rel_path = rel_path.replace(os.sep, "/")
	parts = rel_path.split("/")
	for pattern in patterns:
		if fnmatch.fnmatch(rel_path, pattern):
			return True
		if pattern.endswith("/**"):
			prefix = pattern[:-3]
			if any(fnmatch.fnmatch(part, prefix) for part in parts):
				return True
	return False


def walk_workspace(root: Path, extensions: list[str], ignore: list[str]) -> list[str]:
	"""Workspace-relative POSIX paths of files to scan, sorted."""
	exts = {e.lower() for e in extensions}
	dir_patterns = _dir_patterns(ignore)
	found: list[str] = []
	for dirpath, dirnames, filenames in os.walk(root):
		rel_dir = os.path.relpath(dirpath, root)
		rel_dir = "" if rel_dir == "." else rel_dir.replace(os.sep, "/")
		# Prune in place so os.walk never descends into ignored directories
		dirnames[:] = sorted(
			d for d in dirnames
			if not any(fnmatch.fnmatch(d, p) for p in dir_patterns)
			and not is_ignored(f"{rel_dir}/{d}" if rel_dir else d, ignore)
		)
		for name in filenames:
			if Path(name).suffix.lower() not in exts:
				continue
			rel_path = f"{rel_dir}/{name}" if rel_dir else name
			if not is_ignored(rel_path, ignore):
				found.append(rel_path)
	return sorted(found)


def _scan_files(root: Path, session_id: str, config: LocalScanConfig) -> tuple[list[Signal], int]:
	signals: list[Signal] = []
	scanned = 0
	for rel_path in walk_workspace(root, config.extensions, config.ignore):
		try:
			content = (root / rel_path).read_text(encoding="utf-8", errors="replace")
		except OSError as exc:
			logger.debug("Skipping unreadable file %s: %s", rel_path, exc)
			continue
		scanned += 1
		signals.extend(extract_markers(content, rel_path, session_id))
	return signals, scanned


async def run_git_status(root: Path, timeout: float) -> tuple[bool, str]:
	"""Run `git status --porcelain` in root. Returns (ok, stdout or error message)."""
	try:
		proc = await asyncio.create_subprocess_exec(
			"git", "status", "--porcelain",
			cwd=str(root),
			stdout=asyncio.subprocess.PIPE,
			stderr=asyncio.subprocess.PIPE,
		)
	except OSError as exc:
		return (False, f"git not available: {exc}")
	try:
		stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
	except asyncio.TimeoutError:
		try:
			proc.kill()
			await proc.wait()
		except ProcessLookupError:
			pass
		return (False, f"git status timed out after {timeout}s")
	if proc.returncode != 0:
		detail = stderr.decode(errors="replace").strip() if stderr else ""
		return (False, f"git status failed (exit {proc.returncode}): {detail[:200]}")
	return (True, stdout.decode(errors="replace") if stdout else "")


def _read_test_report(root: Path, report: str) -> tuple[str | None, str | None]:
	"""Return (content, error). The report must resolve inside the workspace."""
	report_path = (root / report).resolve()
	if root.resolve() not in report_path.parents:
		return None, f"test report {report} is outside the workspace"
	if not report_path.is_file():
		return None, None
	try:
		return report_path.read_text(encoding="utf-8", errors="replace"), None
	except OSError as exc:
		return None, f"Error reading test report {report}: {exc}"


async def scan_local_repository(
	root: str | Path,
	session_id: str,
	config: LocalScanConfig | None = None,
) -> LocalScanResult:
	"""Scan a workspace for marker comments, uncommitted changes and failing tests.

	Never executes repository code. Unreadable files are skipped; git and
	report failures are collected into `errors` without aborting the scan.
	"""
	config = config or LocalScanConfig()
	root = Path(root)
	result = LocalScanResult()

	try:
		signals, scanned = await asyncio.to_thread(_scan_files, root, session_id, config)
	except OSError as exc:
		result.errors.append(f"Error walking workspace: {exc}")
	else:
		result.signals.extend(signals)
		result.scanned_files = scanned

	ok, output = await run_git_status(root, config.git_timeout)
	if ok:
		result.signals.extend(parse_git_status(output, session_id))
	else:
		result.errors.append(output)

	if config.test_report:
		content, error = _read_test_report(root, config.test_report)
		if error:
			result.errors.append(error)
		elif content:
			result.signals.extend(parse_test_output(content, session_id))

	logger.info(
		"Local scan of %s: %d files, %d signals, %d errors",
		root, result.scanned_files, len(result.signals), len(result.errors),
	)
	return result
