"""GitHub API wrapper: rate-limit classification and the in-memory response cache."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

import httpx

from sui_digest.config import (
    Settings,
    build_github_headers,
    get_github_token_with_source,
    parse_repo_full_name,
)
from sui_digest.models import FetchResult
from sui_digest.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_LISTING_TTL_SECONDS = 60.0 * 60.0
DEFAULT_CONTENT_TTL_SECONDS = 60.0 * 60.0 * 24.0
DEFAULT_COMMENTS_TTL_SECONDS = 60.0 * 30.0
RAW_CONTENT_HOST = "raw.githubusercontent.com"
NOT_FOUND_MESSAGE = "Resource not found"
INVALID_RESPONSE_MESSAGE = "Invalid response from GitHub API"
RATE_LIMIT_MARKERS = ("rate limit", "too many")


class GitHubApiError(RuntimeError):
    """Raised when a GitHub API request fails."""

    def __init__(self, message: str, *, status_code: int, endpoint: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class GitHubNotFoundError(GitHubApiError):
    """Raised when GitHub answers 404."""


class GitHubRateLimitError(GitHubApiError):
    """Raised when a caller needs rate limiting as an exception rather than a flag."""


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Last successful payload for one request and when it was captured."""

    payload: Any
    fetched_at: float


class GitHubResponseCache:
    """Process-wide in-memory response cache with per-endpoint TTLs.

    Entries expire lazily: the fetch wrapper drops a stale entry when it reads
    one. Nothing is evicted otherwise, so the map grows for the life of the
    process.
    """

    def __init__(
        self,
        *,
        listing_ttl_seconds: float = DEFAULT_LISTING_TTL_SECONDS,
        content_ttl_seconds: float = DEFAULT_CONTENT_TTL_SECONDS,
        comments_ttl_seconds: float = DEFAULT_COMMENTS_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._listing_ttl_seconds = listing_ttl_seconds
        self._content_ttl_seconds = content_ttl_seconds
        self._comments_ttl_seconds = comments_ttl_seconds
        self.clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, cache_key: object) -> bool:
        return cache_key in self._entries

    def get(self, cache_key: str) -> CacheEntry | None:
        """Read cache entry by key."""
        return self._entries.get(cache_key)

    def set(self, cache_key: str, entry: CacheEntry) -> None:
        """Insert or replace cached entry."""
        self._entries[cache_key] = entry

    def delete(self, cache_key: str) -> None:
        self._entries.pop(cache_key, None)

    def ttl_for_url(self, url: str) -> float:
        """Return TTL in seconds based on the request URL shape."""
        parsed = urlsplit(url)
        if (
            "/contents/" in parsed.path
            or "/raw/" in parsed.path
            or parsed.hostname == RAW_CONTENT_HOST
        ):
            return self._content_ttl_seconds
        if "/comments" in parsed.path:
            return self._comments_ttl_seconds
        return self._listing_ttl_seconds

    def is_fresh(self, entry: CacheEntry, *, url: str, now: float) -> bool:
        return now - entry.fetched_at < self.ttl_for_url(url)


@dataclass(slots=True)
class FetchStats:
    """Counters for upstream traffic through one source.

    The CLI logs them at INFO when a command finishes (visible with ``--verbose``).
    """

    upstream_requests: int = 0
    cache_hits: int = 0
    stale_evictions: int = 0
    rate_limited: int = 0


@dataclass(slots=True)
class GitHubSource:
    """Everything an operation needs to talk to one repository."""

    client: httpx.AsyncClient
    repo_full_name: str
    cache: GitHubResponseCache = field(default_factory=GitHubResponseCache)
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    page_delay_seconds: float = 1.0
    stats: FetchStats = field(default_factory=FetchStats)

    def __post_init__(self) -> None:
        parse_repo_full_name(self.repo_full_name)

    def repo_endpoint(self, path: str) -> str:
        """Build an API path under ``/repos/{owner}/{repo}``."""
        return f"/repos/{self.repo_full_name}/{path.lstrip('/')}"


def _cache_key(url: str, headers: Mapping[str, str] | None) -> str:
    """Build cache key from the URL plus the serialized request options."""
    options = {"headers": dict(headers or {})}
    return f"{url}-{json.dumps(options, sort_keys=True)}"


def _parse_int_header(response: httpx.Response, name: str) -> int | None:
    raw_value = response.headers.get(name)
    if raw_value is None:
        return None
    try:
        return int(raw_value)
    except ValueError:
        return None


def _log_rate_limit_headers(response: httpx.Response, url: str) -> None:
    logger.debug(
        "Rate limit info for %s: limit=%s remaining=%s reset=%s used=%s",
        url,
        response.headers.get("x-ratelimit-limit"),
        response.headers.get("x-ratelimit-remaining"),
        response.headers.get("x-ratelimit-reset"),
        response.headers.get("x-ratelimit-used"),
    )


def _error_message_from_body(text: str, status_code: int) -> str:
    """Best-effort error message extraction from a JSON or plain-text body."""
    message = f"GitHub API error: {status_code}"
    stripped = text.strip()
    if stripped.startswith(("{", "[")):
        try:
            payload = json.loads(stripped)
        except ValueError:
            return message
        if isinstance(payload, dict) and isinstance(payload.get("message"), str):
            return payload["message"]
        return message
    if stripped:
        return stripped[:100]
    return message


def _empty_payload(expect_json: bool) -> Any:
    return [] if expect_json else ""


async def fetch_with_rate_limit(
    source: GitHubSource,
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    use_cache: bool = True,
    expect_json: bool = True,
) -> FetchResult[Any]:
    """Perform one GET, classify rate limiting, and cache successful payloads.

    Raises ``GitHubNotFoundError`` for 404 and ``GitHubApiError`` for other
    failures; rate limiting is reported through ``FetchResult.rate_limited``.
    """
    cache = source.cache
    cache_key = _cache_key(url, headers)
    if use_cache:
        cached = cache.get(cache_key)
        if cached is not None:
            if cache.is_fresh(cached, url=url, now=cache.clock()):
                source.stats.cache_hits += 1
                logger.debug("Using cached data for: %s", url)
                return FetchResult(rate_limited=False, data=cached.payload)
            source.stats.stale_evictions += 1
            cache.delete(cache_key)

    source.stats.upstream_requests += 1
    response = await source.client.get(url, headers=dict(headers) if headers else None)
    _log_rate_limit_headers(response, url)

    if response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0":
        source.stats.rate_limited += 1
        logger.warning("GitHub rate limit exhausted for %s", url)
        return FetchResult(
            rate_limited=True,
            data=_empty_payload(expect_json),
            reset=_parse_int_header(response, "x-ratelimit-reset"),
            retry_after=_parse_int_header(response, "retry-after"),
        )

    if not response.is_success:
        text = response.text
        lowered = text.lower()
        if any(marker in lowered for marker in RATE_LIMIT_MARKERS):
            source.stats.rate_limited += 1
            logger.warning("GitHub reported rate limiting for %s", url)
            return FetchResult(
                rate_limited=True,
                data=_empty_payload(expect_json),
                reset=_parse_int_header(response, "x-ratelimit-reset"),
            )
        if response.status_code == 404:
            raise GitHubNotFoundError(NOT_FOUND_MESSAGE, status_code=404, endpoint=url)
        raise GitHubApiError(
            _error_message_from_body(text, response.status_code),
            status_code=response.status_code,
            endpoint=url,
        )

    text = response.text
    if not text.strip():
        return FetchResult(rate_limited=False, data=_empty_payload(expect_json))

    if expect_json:
        try:
            payload: Any = json.loads(text)
        except ValueError as error:
            logger.error("Failed to parse GitHub response as JSON: %s", text[:200])
            raise GitHubApiError(
                INVALID_RESPONSE_MESSAGE,
                status_code=response.status_code,
                endpoint=url,
            ) from error
    else:
        payload = text

    if use_cache:
        cache.set(cache_key, CacheEntry(payload=payload, fetched_at=cache.clock()))
    return FetchResult(rate_limited=False, data=payload)


def build_github_client(
    settings: Settings,
    *,
    token: str | None = None,
    trust_env: bool = True,
) -> httpx.AsyncClient:
    """Build the shared async HTTP client (anonymous when no token is given)."""
    return httpx.AsyncClient(
        base_url=settings.api_base_url,
        headers=build_github_headers(token),
        timeout=settings.timeout_seconds,
        trust_env=trust_env,
        follow_redirects=True,
    )


def build_github_source(
    settings: Settings,
    *,
    client: httpx.AsyncClient | None = None,
    cache: GitHubResponseCache | None = None,
    retry_policy: RetryPolicy | None = None,
) -> GitHubSource:
    """Composition root: wire one client and one cache for the process."""
    if client is None:
        token, _source = get_github_token_with_source()
        client = build_github_client(settings, token=token)
    return GitHubSource(
        client=client,
        repo_full_name=settings.repo_full_name,
        cache=cache or GitHubResponseCache(),
        retry_policy=retry_policy or RetryPolicy(),
        page_delay_seconds=settings.page_delay_seconds,
    )


async def fetch_authenticated_user_login(*, client: httpx.AsyncClient) -> str:
    """Fetch authenticated GitHub user login for token validation."""
    endpoint = "/user"
    response = await client.get(endpoint)
    if response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0":
        raise GitHubRateLimitError(
            "GitHub rate limit exhausted.", status_code=403, endpoint=endpoint
        )
    if response.status_code == 404:
        raise GitHubNotFoundError(NOT_FOUND_MESSAGE, status_code=404, endpoint=endpoint)
    if not response.is_success:
        raise GitHubApiError(
            _error_message_from_body(response.text, response.status_code),
            status_code=response.status_code,
            endpoint=endpoint,
        )
    payload = response.json()
    login = payload.get("login") if isinstance(payload, dict) else None
    if not isinstance(login, str):
        raise GitHubApiError(
            "Expected string field 'login' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return login
