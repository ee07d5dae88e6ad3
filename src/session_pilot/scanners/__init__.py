"""Signal scanners for the local workspace and the hosted repository."""

from session_pilot.scanners.converters import parse_github_repo
from session_pilot.scanners.github import GitHubScanner, GitHubScanResult, scan_github_repository
from session_pilot.scanners.local import LocalScanResult, scan_local_repository

__all__ = [
	"GitHubScanResult",
	"GitHubScanner",
	"LocalScanResult",
	"parse_github_repo",
	"scan_github_repository",
	"scan_local_repository",
]
