"""Shared pytest fixtures, payload builders and test-run configuration."""

from __future__ import annotations

import os
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from sui_digest import proposals, retry
from sui_digest.github_client import GitHubResponseCache, GitHubSource
from sui_digest.retry import RetryPolicy

REPO = "sui-foundation/sips"
API_BASE_URL = "https://api.github.com"


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom pytest options for integration test execution."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run tests marked as integration (external dependencies).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests unless explicitly enabled."""
    run_integration = config.getoption("--run-integration")
    env_enabled = os.getenv("RUN_INTEGRATION_TESTS") == "1"
    if run_integration or env_enabled:
        return

    skip_marker = pytest.mark.skip(
        reason=(
            "Integration tests are disabled by default. "
            "Use --run-integration or set RUN_INTEGRATION_TESTS=1."
        )
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_marker)


class FakeClock:
    """Manually advanced clock for cache expiry tests."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_source(
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    cache: GitHubResponseCache | None = None,
    retry_policy: RetryPolicy | None = None,
) -> GitHubSource:
    """Create a source whose HTTP client is backed by a mock transport."""
    client = httpx.AsyncClient(base_url=API_BASE_URL, transport=httpx.MockTransport(handler))
    return GitHubSource(
        client=client,
        repo_full_name=REPO,
        cache=cache if cache is not None else GitHubResponseCache(),
        retry_policy=retry_policy or RetryPolicy(),
        page_delay_seconds=1.0,
    )


def make_pr_payload(
    number: int,
    *,
    state: str = "closed",
    created_at: str = "2024-01-01T00:00:00Z",
    title: str | None = None,
    body: str | None = "Details",
    merged_at: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build a minimal valid pull request API payload."""
    payload: dict[str, Any] = {
        "id": 1000 + number,
        "number": number,
        "title": title if title is not None else f"SIP-{number}: Proposal",
        "body": body,
        "state": state,
        "merged_at": merged_at,
        "created_at": created_at,
        "updated_at": created_at,
        "html_url": f"https://github.com/{REPO}/pull/{number}",
        "user": {"login": "octocat", "avatar_url": "https://github.com/octocat.png"},
        "labels": [{"name": "framework", "color": "0000ff"}],
    }
    payload.update(extra)
    return payload


def make_comment_payload(comment_id: int, *, created_at: str, login: str = "reviewer") -> dict[str, Any]:
    """Build a minimal valid issue/review comment payload."""
    return {
        "id": comment_id,
        "user": {"login": login, "avatar_url": f"https://github.com/{login}.png"},
        "created_at": created_at,
        "updated_at": created_at,
        "body": f"Comment {comment_id}",
        "html_url": f"https://github.com/{REPO}/pull/7#issuecomment-{comment_id}",
    }


def make_commit_payload(sha: str, *, message: str = "Add SIP draft") -> dict[str, Any]:
    """Build a minimal valid pull request commit payload."""
    return {
        "sha": sha,
        "commit": {
            "message": message,
            "author": {"name": "Octo Cat", "date": "2024-01-02T00:00:00Z"},
        },
        "html_url": f"https://github.com/{REPO}/commit/{sha}",
    }


@pytest.fixture
def recorded_sleeps(monkeypatch: pytest.MonkeyPatch) -> dict[str, list[float]]:
    """Replace retry and page-throttle sleeps with recorders."""
    sleeps: dict[str, list[float]] = {"retry": [], "page": []}

    async def _record_retry(seconds: float) -> None:
        sleeps["retry"].append(seconds)

    async def _record_page(seconds: float) -> None:
        sleeps["page"].append(seconds)

    monkeypatch.setattr(retry, "_sleep_for_retry", _record_retry)
    monkeypatch.setattr(proposals, "_sleep_between_pages", _record_page)
    return sleeps
