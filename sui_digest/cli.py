"""Typer CLI for browsing Sui Improvement Proposals."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, TypeVar

import httpx
import typer

from sui_digest.config import (
    GitHubInputError,
    get_github_token_with_source,
    load_settings,
)
from sui_digest.content import extract_description, get_proposal_content
from sui_digest.github_client import (
    GitHubApiError,
    GitHubSource,
    build_github_client,
    build_github_source,
    fetch_authenticated_user_login,
)
from sui_digest.output import (
    render_comment_line,
    render_commit_line,
    render_proposal_summary,
    render_proposals_csv,
)
from sui_digest.proposals import get_comments, get_commits, get_proposal, list_all_proposals

logger = logging.getLogger(__name__)

T = TypeVar("T")

app = typer.Typer(help="Browse Sui Improvement Proposals mirrored from GitHub pull requests.")

VerboseOption = Annotated[bool, typer.Option(help="Log cache, retry and rate-limit activity.")]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _run_with_source(
    command_name: str,
    verbose: bool,
    operation: Callable[[GitHubSource], Awaitable[T]],
) -> T:
    """Build a source, run ``operation`` on it, and map failures to exit code 1."""
    _configure_logging(verbose)

    async def _run() -> T:
        settings = load_settings()
        source = build_github_source(settings)
        async with source.client:
            try:
                return await operation(source)
            finally:
                stats = source.stats
                logger.info(
                    "GitHub traffic: upstream=%d cache_hits=%d stale_evictions=%d rate_limited=%d",
                    stats.upstream_requests,
                    stats.cache_hits,
                    stats.stale_evictions,
                    stats.rate_limited,
                )

    try:
        return asyncio.run(_run())
    except GitHubInputError as error:
        typer.echo(f"{command_name} failed: {error}")
        raise typer.Exit(code=1) from error
    except GitHubApiError as error:
        typer.echo(
            f"{command_name} failed: status={error.status_code} endpoint={error.endpoint}."
        )
        raise typer.Exit(code=1) from error
    except httpx.HTTPError as error:
        typer.echo(f"{command_name} failed: network error ({error}).")
        raise typer.Exit(code=1) from error


@app.command("list")
def list_command(
    state: Annotated[
        str, typer.Option(help="Filter by state: all|open|closed|merged.")
    ] = "all",
    limit: Annotated[int | None, typer.Option(help="Maximum number of SIPs to print.")] = None,
    verbose: VerboseOption = False,
) -> None:
    """List every SIP, open ones first."""
    if state not in {"all", "open", "closed", "merged"}:
        raise typer.BadParameter("State must be one of all|open|closed|merged.")

    listing = _run_with_source("SIP listing", verbose, list_all_proposals)
    if listing.rate_limited:
        typer.echo("GitHub API rate limit reached; no SIPs available.")
        raise typer.Exit(code=1)

    proposals = listing.data
    if state == "open":
        proposals = [proposal for proposal in proposals if proposal.is_open]
    elif state == "closed":
        proposals = [proposal for proposal in proposals if proposal.state_label == "Closed"]
    elif state == "merged":
        proposals = [proposal for proposal in proposals if proposal.merged_at is not None]
    if limit is not None:
        proposals = proposals[:limit]

    for proposal in proposals:
        typer.echo(f"SIP-{proposal.number} [{proposal.sip_status}] {proposal.title}")
    if listing.degraded_reason:
        typer.echo(f"Warning: partial results ({listing.degraded_reason}).")


@app.command("show")
def show_command(
    number: Annotated[int, typer.Argument(help="Pull request number of the SIP.")],
    verbose: VerboseOption = False,
) -> None:
    """Show a SIP summary with its description."""

    async def _show(source: GitHubSource) -> str | None:
        proposal = await get_proposal(source, number)
        if proposal is None:
            return None
        content = await get_proposal_content(source, number)
        return render_proposal_summary(proposal, extract_description(content))

    summary = _run_with_source("SIP lookup", verbose, _show)
    if summary is None:
        typer.echo(f"SIP-{number} not found.")
        raise typer.Exit(code=1)
    typer.echo(summary)


@app.command("content")
def content_command(
    number: Annotated[int, typer.Argument(help="Pull request number of the SIP.")],
    verbose: VerboseOption = False,
) -> None:
    """Print the SIP markdown document."""
    content = _run_with_source(
        "SIP content", verbose, lambda source: get_proposal_content(source, number)
    )
    typer.echo(content)


@app.command("comments")
def comments_command(
    number: Annotated[int, typer.Argument(help="Pull request number of the SIP.")],
    verbose: VerboseOption = False,
) -> None:
    """Print issue and review comments, oldest first."""
    comments = _run_with_source(
        "SIP comments", verbose, lambda source: get_comments(source, number)
    )
    if not comments:
        typer.echo("No comments.")
        return
    for comment in comments:
        typer.echo(render_comment_line(comment))


@app.command("commits")
def commits_command(
    number: Annotated[int, typer.Argument(help="Pull request number of the SIP.")],
    verbose: VerboseOption = False,
) -> None:
    """Print the commits of a SIP pull request."""
    commits = _run_with_source("SIP commits", verbose, lambda source: get_commits(source, number))
    if not commits:
        typer.echo("No commits.")
        return
    for commit in commits:
        typer.echo(render_commit_line(commit))


@app.command("export")
def export_command(
    output: Annotated[Path, typer.Option(help="Destination CSV file.")] = Path("sips.csv"),
    verbose: VerboseOption = False,
) -> None:
    """Export every SIP to CSV."""
    listing = _run_with_source("SIP export", verbose, list_all_proposals)
    output.write_text(render_proposals_csv(listing.data), encoding="utf-8")
    typer.echo(f"Wrote {len(listing.data)} SIPs to {output}.")
    if listing.degraded:
        typer.echo("Warning: export may be incomplete due to GitHub API errors or rate limits.")


@app.command("auth-check")
def auth_check_command(
    trust_env: Annotated[
        bool,
        typer.Option(
            "--trust-env/--no-trust-env",
            help="Use proxy/SSL environment variables from the current shell.",
        ),
    ] = True,
) -> None:
    """Validate GitHub token setup."""
    token, token_source = get_github_token_with_source()
    if token is None:
        typer.echo("No GitHub token found; requests will be anonymous with lower rate limits.")
        return

    typer.echo(f"Token detected in {token_source}.")
    try:
        settings = load_settings()
    except GitHubInputError as error:
        typer.echo(f"GitHub auth check failed: {error}")
        raise typer.Exit(code=1) from error

    async def _check() -> str:
        async with build_github_client(settings, token=token, trust_env=trust_env) as client:
            return await fetch_authenticated_user_login(client=client)

    try:
        login = asyncio.run(_check())
    except GitHubApiError as error:
        typer.echo(
            "GitHub auth check failed: "
            f"status={error.status_code} endpoint={error.endpoint}."
        )
        raise typer.Exit(code=1) from error
    except httpx.HTTPError as error:
        typer.echo(f"GitHub auth check failed: network error ({error}).")
        raise typer.Exit(code=1) from error

    typer.echo(f"Authenticated as GitHub user '{login}'.")
    typer.echo("GitHub token setup is valid.")
