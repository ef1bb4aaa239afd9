"""Runtime settings and GitHub credential discovery."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_REPO_FULL_NAME = "sui-foundation/sips"
DEFAULT_GITHUB_API_BASE_URL = "https://api.github.com"
DEFAULT_TIMEOUT_SECONDS = 20.0
DEFAULT_PAGE_DELAY_SECONDS = 1.0
TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GITHUB_PAT", "GH_TOKEN")


class GitHubInputError(ValueError):
    """Raised when repository or PR input values are invalid."""


@dataclass(frozen=True, slots=True)
class Settings:
    """Process-wide settings for the GitHub ingestion layer."""

    repo_full_name: str = DEFAULT_REPO_FULL_NAME
    api_base_url: str = DEFAULT_GITHUB_API_BASE_URL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    page_delay_seconds: float = DEFAULT_PAGE_DELAY_SECONDS


def _load_env_file() -> None:
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)


def _float_from_env(name: str, default: float) -> float:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        value = float(raw_value)
    except ValueError as error:
        raise GitHubInputError(f"Invalid {name} '{raw_value}'. Expected a number.") from error
    if value < 0:
        raise GitHubInputError(f"Invalid {name} '{raw_value}'. Expected a non-negative number.")
    return value


def load_settings() -> Settings:
    """Build settings from the environment (and ``./.env`` when present)."""
    _load_env_file()
    repo_full_name = os.getenv("SUI_DIGEST_REPO") or DEFAULT_REPO_FULL_NAME
    parse_repo_full_name(repo_full_name)
    return Settings(
        repo_full_name=repo_full_name.strip(),
        api_base_url=os.getenv("GITHUB_API_BASE_URL") or DEFAULT_GITHUB_API_BASE_URL,
        timeout_seconds=_float_from_env("SUI_DIGEST_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
        page_delay_seconds=_float_from_env(
            "SUI_DIGEST_PAGE_DELAY_SECONDS", DEFAULT_PAGE_DELAY_SECONDS
        ),
    )


def get_github_token_with_source() -> tuple[str | None, str | None]:
    """Return the GitHub token and the environment key it came from.

    Anonymous access is allowed, so both values are ``None`` when no token is set.
    """
    _load_env_file()
    for env_var in TOKEN_ENV_VARS:
        token = os.getenv(env_var)
        if token:
            return token, env_var
    return None, None


def build_github_headers(token: str | None) -> dict[str, str]:
    """Return default request headers, authenticated when a token is available."""
    headers = {"Accept": "application/vnd.github.v3+json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
        return headers
    logger.warning(
        "No GitHub token found. Using unauthenticated requests with lower rate limits."
    )
    return headers


def parse_repo_full_name(repo_full_name: str) -> tuple[str, str]:
    """Parse and validate repository input in owner/repo format."""
    owner, separator, repo = repo_full_name.strip().partition("/")
    if not separator or not owner or not repo or "/" in repo:
        raise GitHubInputError(
            f"Invalid repo '{repo_full_name}'. Expected format is owner/repo."
        )
    return owner, repo


def validate_pr_number(pr_number: int) -> int:
    """Validate and normalize pull request number input."""
    if pr_number <= 0:
        raise GitHubInputError(f"Invalid PR number '{pr_number}'. Expected a positive integer.")
    return pr_number
