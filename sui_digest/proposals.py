"""Proposal listing, detail, comment and commit fetchers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import ValidationError

from sui_digest.config import validate_pr_number
from sui_digest.github_client import GitHubApiError, GitHubSource, fetch_with_rate_limit
from sui_digest.models import (
    Comment,
    Commit,
    CommitDetail,
    FetchResult,
    Proposal,
    ProposalListing,
    has_numeric_field,
)
from sui_digest.retry import with_backoff

logger = logging.getLogger(__name__)

M = TypeVar("M")

PROPOSALS_PER_PAGE = 30


async def _sleep_between_pages(seconds: float) -> None:
    """Throttle helper between listing pages (wrapped for deterministic tests)."""
    await asyncio.sleep(seconds)


async def _fetch(source: GitHubSource, endpoint: str) -> FetchResult[Any]:
    return await with_backoff(
        lambda: fetch_with_rate_limit(source, endpoint),
        policy=source.retry_policy,
    )


def _proposal_from_row(row: dict[str, Any]) -> Proposal:
    """Validate one pull request row, deriving ``total_comments`` when both counts exist."""
    values = dict(row)
    values.pop("total_comments", None)
    if has_numeric_field(row, "comments") and has_numeric_field(row, "review_comments"):
        values["total_comments"] = row["comments"] + row["review_comments"]
    return Proposal.model_validate(values)


def sort_proposals(proposals: list[Proposal]) -> list[Proposal]:
    """Open proposals first, newest first within each state."""
    newest_first = sorted(proposals, key=lambda proposal: proposal.created_at, reverse=True)
    return sorted(newest_first, key=lambda proposal: not proposal.is_open)


def _rows(payload: Any, *, endpoint: str) -> list[dict[str, Any]]:
    if not isinstance(payload, list):
        raise GitHubApiError(
            "Expected JSON array in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return [row for row in payload if isinstance(row, dict)]


def _valid_rows(
    rows: list[dict[str, Any]],
    parse: Callable[[dict[str, Any]], M],
    *,
    context: str,
) -> list[M]:
    """Parse rows one at a time, skipping any that fail validation."""
    parsed: list[M] = []
    for row in rows:
        try:
            parsed.append(parse(row))
        except ValidationError as error:
            logger.warning("Skipping malformed row on %s: %s", context, error)
    return parsed


async def list_all_proposals(source: GitHubSource) -> ProposalListing:
    """Collect every pull request of the repository across pages.

    Stops on a short or empty page, on rate limiting, or when retries run out.
    Whatever was gathered before a failure is returned rather than raised.
    """
    proposals: list[Proposal] = []
    page = 1
    degraded_reason: str | None = None
    logger.info("Starting to fetch SIPs from %s", source.repo_full_name)

    while True:
        endpoint = source.repo_endpoint(
            f"pulls?state=all&per_page={PROPOSALS_PER_PAGE}&page={page}"
        )
        try:
            result = await _fetch(source, endpoint)
            rows = _rows(result.data, endpoint=endpoint)
        except Exception as error:
            logger.error("Error fetching page %d: %s", page, error)
            degraded_reason = f"Failed to fetch page {page}: {error}"
            break

        if result.rate_limited:
            if not proposals:
                logger.warning("Rate limited before any SIPs were fetched")
                return ProposalListing(rate_limited=True, data=[], reset=result.reset)
            logger.warning("Rate limited on page %d; returning %d SIPs", page, len(proposals))
            degraded_reason = f"Rate limited on page {page}"
            break

        if not result.data:
            logger.info("No more data on page %d, stopping", page)
            break

        page_proposals = _valid_rows(rows, _proposal_from_row, context=f"page {page}")

        proposals.extend(page_proposals)
        logger.info(
            "Fetched page %d: %d PRs (total: %d)", page, len(page_proposals), len(proposals)
        )

        if len(result.data) < PROPOSALS_PER_PAGE:
            break

        page += 1
        await _sleep_between_pages(source.page_delay_seconds)

    logger.info("Fetched %d total PRs", len(proposals))
    return ProposalListing(
        rate_limited=False,
        data=sort_proposals(proposals),
        degraded_reason=degraded_reason,
    )


async def _find_in_listing(source: GitHubSource, number: int) -> Proposal | None:
    try:
        listing = await list_all_proposals(source)
    except Exception as error:
        logger.error("Fallback to SIP list failed for SIP %d: %s", number, error)
        return None
    for proposal in listing.data:
        if proposal.number == number:
            logger.info("Found SIP %d in SIP list", number)
            return proposal
    return None


async def get_proposal(source: GitHubSource, number: int) -> Proposal | None:
    """Fetch one proposal, falling back to the listing when the detail call fails.

    ``None`` means the proposal could not be found; it does not tell a missing
    PR apart from an unreachable API.
    """
    validate_pr_number(number)
    endpoint = source.repo_endpoint(f"pulls/{number}")
    try:
        result = await _fetch(source, endpoint)
        if not result.rate_limited:
            if isinstance(result.data, dict):
                return _proposal_from_row(result.data)
            return None
        logger.warning("Rate limited fetching SIP %d; falling back to SIP list", number)
    except Exception as error:
        logger.error("Error fetching PR details for SIP %d: %s", number, error)
    return await _find_in_listing(source, number)


async def _fetch_comment_rows(source: GitHubSource, endpoint: str) -> list[dict[str, Any]]:
    result = await _fetch(source, endpoint)
    if result.rate_limited:
        logger.warning("Rate limited fetching %s", endpoint)
        return []
    return _rows(result.data, endpoint=endpoint)


async def get_comments(source: GitHubSource, number: int) -> list[Comment]:
    """Issue and review comments for a proposal, oldest first.

    Both endpoints are queried concurrently; a failed branch contributes no
    comments. Entries are not de-duplicated across the two endpoints.
    """
    validate_pr_number(number)
    outcomes = await asyncio.gather(
        _fetch_comment_rows(source, source.repo_endpoint(f"issues/{number}/comments")),
        _fetch_comment_rows(source, source.repo_endpoint(f"pulls/{number}/comments")),
        return_exceptions=True,
    )

    comments: list[Comment] = []
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            logger.error("Error fetching comments for SIP %d: %s", number, outcome)
            continue
        comments.extend(
            _valid_rows(outcome, Comment.model_validate, context=f"SIP {number} comments")
        )

    comments.sort(key=lambda comment: comment.created_at)
    return comments


async def get_commits(source: GitHubSource, number: int) -> list[Commit]:
    """Commits of a proposal's pull request; empty on rate limiting or error."""
    validate_pr_number(number)
    endpoint = source.repo_endpoint(f"pulls/{number}/commits")
    try:
        result = await _fetch(source, endpoint)
        if result.rate_limited:
            logger.warning("Rate limited while fetching commits for SIP %d", number)
            return []
        return _valid_rows(
            _rows(result.data, endpoint=endpoint),
            Commit.model_validate,
            context=f"SIP {number} commits",
        )
    except Exception as error:
        logger.error("Error fetching commits for SIP %d: %s", number, error)
        return []


async def get_commit_detail(source: GitHubSource, sha: str) -> CommitDetail | None:
    """Commit with its changed files; ``None`` on rate limiting or error."""
    endpoint = source.repo_endpoint(f"commits/{sha}")
    try:
        result = await _fetch(source, endpoint)
        if result.rate_limited:
            logger.warning("Rate limited while fetching commit details for %s", sha)
            return None
        if not isinstance(result.data, dict):
            return None
        return CommitDetail.model_validate(result.data)
    except Exception as error:
        logger.error("Error fetching commit details for %s: %s", sha, error)
        return None
