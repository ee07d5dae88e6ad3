"""GitHub repository scanner.

Fetches recent commits, open issues, open pull requests and PR review comments
over the REST API. Each category is fetched independently: a failure in one is
recorded in `errors` and never drops signals gathered by another.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from session_pilot import __version__
from session_pilot.config import GitHubConfig
from session_pilot.models import Signal
from session_pilot.scanners.converters import (
	_login,
	commit_to_signal,
	issue_to_signal,
	pr_review_comment_to_signal,
	pr_to_signal,
)

logger = logging.getLogger(__name__)


def _is_assigned(issue: dict[str, Any], user: str) -> bool:
	assignees = [_login(a) for a in issue.get("assignees") or []]
	return user in assignees or _login(issue.get("assignee")) == user


def _involves(pr: dict[str, Any], user: str) -> bool:
	"""Authored by `user` or awaiting their review."""
	reviewers = [_login(r) for r in pr.get("requested_reviewers") or []]
	return _login(pr.get("user")) == user or user in reviewers


@dataclass
class GitHubScanResult:
	signals: list[Signal] = field(default_factory=list)
	rate_limit_remaining: int = -1
	errors: list[str] = field(default_factory=list)


class GitHubScanner:
	"""Scans one repository. A fresh scanner per scan keeps rate-limit state per run."""

	def __init__(
		self,
		config: GitHubConfig,
		transport: httpx.AsyncBaseTransport | None = None,
		now: datetime | None = None,
	) -> None:
		self._config = config
		self._transport = transport
		self._now = now
		self._rate_limit_remaining = -1

	def _client(self, token: str) -> httpx.AsyncClient:
		return httpx.AsyncClient(
			base_url=self._config.api_url,
			timeout=self._config.timeout,
			transport=self._transport,
			headers={
				"Authorization": f"Bearer {token}",
				"Accept": "application/vnd.github+json",
				"User-Agent": f"session-pilot/{__version__}",
			},
		)

	async def _get(self, client: httpx.AsyncClient, path: str, **params: Any) -> Any:
		resp = await client.get(path, params=params or None)
		remaining = resp.headers.get("X-RateLimit-Remaining")
		if remaining is not None:
			try:
				self._rate_limit_remaining = int(remaining)
			except ValueError:
				pass
		resp.raise_for_status()
		return resp.json()

	async def _resolve_user(self, client: httpx.AsyncClient, errors: list[str]) -> str:
		user = self._config.current_user()
		if user:
			return user
		try:
			data = await self._get(client, "/user")
		except (httpx.HTTPError, ValueError) as exc:
			errors.append(f"Error fetching current user: {exc}")
			return ""
		return (data or {}).get("login", "") if isinstance(data, dict) else ""

	async def _commits(self, client: httpx.AsyncClient, base: str, session_id: str, user: str, now: datetime) -> list[Signal]:
		limit = self._config.max_commits
		data = await self._get(client, f"{base}/commits", per_page=max(limit, 1))
		return [commit_to_signal(c, session_id, user, now) for c in data[:limit]]

	async def _issues(self, client: httpx.AsyncClient, base: str, session_id: str, user: str, now: datetime) -> list[Signal]:
		limit = self._config.max_issues
		params: dict[str, Any] = {"state": "open", "per_page": min(max(limit * 2, 1), 100)}
		mine = self._config.assigned_to_me and bool(user)
		if mine:
			params["assignee"] = user
		data = await self._get(client, f"{base}/issues", **params)
		# The issues endpoint also lists pull requests
		issues = [i for i in data if not i.get("pull_request")]
		if mine:
			issues = [i for i in issues if _is_assigned(i, user)]
		return [issue_to_signal(i, session_id, user, now) for i in issues[:limit]]

	async def _pulls(
		self,
		client: httpx.AsyncClient,
		base: str,
		session_id: str,
		user: str,
		now: datetime,
		errors: list[str],
	) -> list[Signal]:
		limit = self._config.max_prs
		data = await self._get(client, f"{base}/pulls", state="open", per_page=max(limit, 1))
		if self._config.assigned_to_me and user:
			data = [pr for pr in data if _involves(pr, user)]
		prs = data[:limit]
		signals: list[Signal] = []
		if self._config.include_prs:
			signals.extend(pr_to_signal(pr, session_id, user, now) for pr in prs)
		if self._config.include_pr_comments:
			signals.extend(await self._review_comments(client, base, prs, session_id, user, now, errors))
		return signals

	async def _review_comments(
		self,
		client: httpx.AsyncClient,
		base: str,
		prs: list[dict[str, Any]],
		session_id: str,
		user: str,
		now: datetime,
		errors: list[str],
	) -> list[Signal]:
		budget = self._config.max_pr_comments
		numbered = [pr for pr in prs if pr.get("number") is not None]
		results = await asyncio.gather(
			*(self._get(client, f"{base}/pulls/{pr['number']}/comments", per_page=max(budget, 1)) for pr in numbered),
			return_exceptions=True,
		)
		signals: list[Signal] = []
		for pr, result in zip(numbered, results):
			number = pr["number"]
			if isinstance(result, BaseException):
				errors.append(f"Error fetching comments for PR #{number}: {result}")
				continue
			author = (pr.get("user") or {}).get("login")
			for comment in result:
				if len(signals) >= budget:
					return signals
				signals.append(pr_review_comment_to_signal(comment, number, author, session_id, user, now))
		return signals

	async def scan(self, owner: str, repo: str, session_id: str) -> GitHubScanResult:
		result = GitHubScanResult()
		token = self._config.token
		if not token:
			result.errors.append("GITHUB_TOKEN not configured")
			return result

		now = self._now or datetime.now(timezone.utc)
		base = f"/repos/{owner}/{repo}"
		category_errors: list[str] = []
		async with self._client(token) as client:
			user = await self._resolve_user(client, result.errors)

			names: list[str] = []
			coros = []
			if self._config.include_recent_commits:
				names.append("commits")
				coros.append(self._commits(client, base, session_id, user, now))
			if self._config.include_issues:
				names.append("issues")
				coros.append(self._issues(client, base, session_id, user, now))
			if self._config.include_prs or self._config.include_pr_comments:
				names.append("PRs")
				coros.append(self._pulls(client, base, session_id, user, now, category_errors))

			outcomes = await asyncio.gather(*coros, return_exceptions=True)

		for name, outcome in zip(names, outcomes):
			if isinstance(outcome, BaseException):
				logger.warning("GitHub %s fetch failed for %s/%s: %s", name, owner, repo, outcome)
				result.errors.append(f"Error fetching {name}: {outcome}")
				continue
			result.signals.extend(outcome)
		result.errors.extend(category_errors)
		result.rate_limit_remaining = self._rate_limit_remaining
		logger.info(
			"GitHub scan of %s/%s: %d signals, %d errors, rate limit remaining %d",
			owner, repo, len(result.signals), len(result.errors), result.rate_limit_remaining,
		)
		return result


async def scan_github_repository(
	owner: str,
	repo: str,
	session_id: str,
	config: GitHubConfig | None = None,
	transport: httpx.AsyncBaseTransport | None = None,
) -> GitHubScanResult:
	return await GitHubScanner(config or GitHubConfig(), transport=transport).scan(owner, repo, session_id)
