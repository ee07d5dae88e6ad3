"""Pure converters from GitHub API payloads to signals.

Every converter takes the current user and the reference time explicitly so the
scores are deterministic. Bonuses and penalties are additive and the result is
clamped by `Signal` on construction.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any

from session_pilot.constants import (
	ACTIONABLE_WORDS,
	COMMIT_WEIGHTS,
	ISSUE_WEIGHTS,
	PR_COMMENT_WEIGHTS,
	PR_WEIGHTS,
)
from session_pilot.models import Signal, SignalSource, SignalType, make_signal_id

_REPO_URL_RE = re.compile(r"github\.com[/:]([^/\s]+)/([^/\s#?]+?)(?:\.git)?/?$")
_REPO_SHORT_RE = re.compile(r"^([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+)$")


def parse_github_repo(value: str | None) -> tuple[str, str] | None:
	"""Parse `owner/repo` or a github.com URL. Returns None when unparseable."""
	if not value:
		return None
	value = value.strip()
	match = _REPO_URL_RE.search(value)
	if match is None:
		match = _REPO_SHORT_RE.match(value)
	if match is None:
		return None
	owner, repo = match.group(1), match.group(2)
	if repo.endswith(".git"):
		repo = repo[:-4]
	if not owner or not repo:
		return None
	return owner, repo


def _parse_time(value: Any) -> datetime | None:
	if not value or not isinstance(value, str):
		return None
	try:
		parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
	except ValueError:
		return None
	if parsed.tzinfo is None:
		parsed = parsed.replace(tzinfo=timezone.utc)
	return parsed


def _age(value: Any, now: datetime) -> timedelta | None:
	created = _parse_time(value)
	return None if created is None else now - created


def _login(obj: Any) -> str | None:
	if isinstance(obj, dict):
		return obj.get("login")
	return None


def _now(now: datetime | None) -> datetime:
	return now if now is not None else datetime.now(timezone.utc)


def commit_to_signal(
	commit: dict[str, Any],
	session_id: str,
	current_user: str = "",
	now: datetime | None = None,
) -> Signal:
	now = _now(now)
	details = commit.get("commit") or {}
	author_info = details.get("author") or {}
	message = details.get("message") or ""
	subject, _, rest = message.partition("\n")
	subject = subject.strip()
	age = _age(author_info.get("date"), now)
	login = _login(commit.get("author"))
	is_own = bool(current_user) and login == current_user

	priority = COMMIT_WEIGHTS["base"]
	if age is not None and age <= timedelta(days=3):
		priority += COMMIT_WEIGHTS["recent"]
	if is_own:
		priority += COMMIT_WEIGHTS["own"]
	if re.search(r"fix|bug|hotfix", subject.lower()):
		priority += COMMIT_WEIGHTS["fix_subject"]
	if age is not None and age >= timedelta(days=14):
		priority += COMMIT_WEIGHTS["stale"]

	sha = commit.get("sha") or "unknown"
	return Signal(
		id=make_signal_id(session_id, "github", "commit", sha),
		source=SignalSource.GITHUB,
		signal_type=SignalType.RECENT_COMMIT,
		title=f"Recent commit: {subject or sha[:7]}",
		description=rest.strip() or None,
		url=commit.get("html_url"),
		priority=priority,
		metadata={
			"sha": sha,
			"author": login or author_info.get("name") or "unknown",
			"date": author_info.get("date"),
			"is_own": is_own,
		},
	)


def issue_to_signal(
	issue: dict[str, Any],
	session_id: str,
	current_user: str = "",
	now: datetime | None = None,
) -> Signal:
	now = _now(now)
	labels = [
		label if isinstance(label, str) else (label or {}).get("name", "")
		for label in issue.get("labels") or []
	]
	labels = [label for label in labels if label]
	lowered = [label.lower() for label in labels]
	age = _age(issue.get("created_at"), now)

	assignees = [_login(a) for a in issue.get("assignees") or []]
	assignees.append(_login(issue.get("assignee")))
	assigned = bool(current_user) and current_user in assignees

	priority = ISSUE_WEIGHTS["base"]
	if any("bug" in label for label in lowered):
		priority += ISSUE_WEIGHTS["bug_label"]
	if any("urgent" in label or "priority" in label for label in lowered):
		priority += ISSUE_WEIGHTS["urgent_label"]
	if assigned:
		priority += ISSUE_WEIGHTS["assigned"]
	if age is not None and age <= timedelta(days=7):
		priority += ISSUE_WEIGHTS["recent"]
	if (issue.get("comments") or 0) >= 5:
		priority += ISSUE_WEIGHTS["discussed"]
	if age is not None and age >= timedelta(days=30):
		priority += ISSUE_WEIGHTS["stale"]

	key = issue.get("number") or issue.get("id") or "unknown"
	return Signal(
		id=make_signal_id(session_id, "github", "issue", key),
		source=SignalSource.GITHUB,
		signal_type=SignalType.OPEN_ISSUE,
		title=issue.get("title") or "Untitled issue",
		description=issue.get("body") or None,
		url=issue.get("html_url"),
		priority=priority,
		metadata={
			"number": issue.get("number"),
			"labels": labels,
			"created_at": issue.get("created_at"),
			"comments": issue.get("comments"),
			"author": _login(issue.get("user")),
			"assigned_to_current_user": assigned,
		},
	)


def pr_to_signal(
	pr: dict[str, Any],
	session_id: str,
	current_user: str = "",
	now: datetime | None = None,
) -> Signal:
	# `now` is accepted for a uniform converter signature; PR scoring is age-independent.
	author = _login(pr.get("user"))
	reviewers = [_login(r) for r in pr.get("requested_reviewers") or []]
	is_own = bool(current_user) and author == current_user
	review_requested = bool(current_user) and current_user in reviewers

	mergeable_state = (pr.get("mergeable_state") or "").lower()
	failing_checks = mergeable_state in ("failure", "unstable")
	conflicts = mergeable_state == "dirty" or pr.get("mergeable") is False
	changes_requested = (pr.get("review_decision") or "").lower() == "changes_requested"
	draft = bool(pr.get("draft"))

	priority = PR_WEIGHTS["base"]
	if is_own:
		priority += PR_WEIGHTS["own"]
	if review_requested:
		priority += PR_WEIGHTS["review_requested"]
	if failing_checks:
		priority += PR_WEIGHTS["failing_checks"]
	if changes_requested:
		priority += PR_WEIGHTS["changes_requested"]
	if conflicts:
		priority += PR_WEIGHTS["conflicts"]
	if draft:
		priority += PR_WEIGHTS["draft"]

	key = pr.get("number") or pr.get("id") or "unknown"
	return Signal(
		id=make_signal_id(session_id, "github", "pr", key),
		source=SignalSource.GITHUB,
		signal_type=SignalType.OPEN_PR,
		title=pr.get("title") or "Untitled PR",
		description=pr.get("body") or None,
		url=pr.get("html_url"),
		priority=priority,
		metadata={
			"number": pr.get("number"),
			"author": author,
			"is_own": is_own,
			"review_requested": review_requested,
			"draft": draft,
			"failing_checks": failing_checks,
			"changes_requested": changes_requested,
			"conflicts": conflicts,
		},
	)


def has_actionable_language(body: str) -> bool:
	lowered = body.lower()
	return any(word in lowered for word in ACTIONABLE_WORDS)


def pr_review_comment_to_signal(
	comment: dict[str, Any],
	pr_number: int,
	pr_author: str | None,
	session_id: str,
	current_user: str = "",
	now: datetime | None = None,
) -> Signal:
	now = _now(now)
	body = comment.get("body") or ""
	author = _login(comment.get("user"))
	on_own_pr = bool(current_user) and pr_author == current_user
	self_authored = bool(current_user) and author == current_user
	actionable = has_actionable_language(body)
	age = _age(comment.get("created_at"), now)

	priority = PR_COMMENT_WEIGHTS["base"]
	if on_own_pr and not self_authored:
		priority += PR_COMMENT_WEIGHTS["on_own_pr"]
	if age is not None and age <= timedelta(days=3):
		priority += PR_COMMENT_WEIGHTS["recent"]
	if actionable:
		priority += PR_COMMENT_WEIGHTS["actionable"]
	if self_authored:
		priority += PR_COMMENT_WEIGHTS["self_authored"]

	preview = body if len(body) <= 60 else body[:57] + "..."
	preview = re.sub(r"\r?\n", " ", preview).strip()
	line = comment.get("line") or comment.get("original_line")
	return Signal(
		id=make_signal_id(session_id, "github", "pr_comment", comment.get("id") or "unknown"),
		source=SignalSource.GITHUB,
		signal_type=SignalType.PR_REVIEW_COMMENT,
		title=f"PR #{pr_number} comment: {preview or 'Review feedback'}",
		description=body or None,
		file_path=comment.get("path"),
		line_number=line,
		url=comment.get("html_url"),
		priority=priority,
		metadata={
			"pr_number": pr_number,
			"author": author,
			"on_own_pr": on_own_pr,
			"self_authored": self_authored,
			"actionable": actionable,
			"created_at": comment.get("created_at"),
		},
	)
