"""SIP document resolution and markdown post-processing."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable

from sui_digest.github_client import GitHubSource, fetch_with_rate_limit
from sui_digest.models import CommitFile, ContentSource, ResolvedContent
from sui_digest.proposals import get_commit_detail, get_commits, get_proposal

logger = logging.getLogger(__name__)

METADATA_TABLE_MARKERS = ("| SIP-Number", "|SIP-Number")
NO_DESCRIPTION = "No description available."
DESCRIPTION_CHARACTER_TARGET = 200

ABSTRACT_PATTERN = re.compile(r"##\s*Abstract\s*\n(.*?)(?=\n##|\n#|\Z)", re.IGNORECASE | re.DOTALL)
SUMMARY_PATTERN = re.compile(r"##\s*Summary\s*\n(.*?)(?=\n##|\n#|\Z)", re.IGNORECASE | re.DOTALL)

FILE_CANDIDATE_PATTERNS: tuple[Callable[[CommitFile], bool], ...] = (
    lambda file: file.filename.endswith(".md") and "sip" in file.filename.lower(),
    lambda file: file.filename.endswith(".md"),
    lambda file: file.status in {"added", "modified"},
)

PLACEHOLDER_TEMPLATE = """\
| SIP-Number | {sip_id} |
| ---: | :--- |
| Title | SIP-{sip_id}: Placeholder Title |
| Description | This is a placeholder description for SIP-{sip_id}. The actual content could not be fetched from GitHub. |
| Author | Unknown |
| Editor | |
| Type | Standard |
| Category | Framework |
| Created | 2023-01-01 |
| Comments-URI | |
| Status | |
| Requires | |

# SIP-{sip_id}: Placeholder Title

## Abstract

This is a placeholder content for SIP-{sip_id}. The actual content could not be fetched from GitHub due to API limitations or network issues.

## Motivation

This placeholder is provided so the proposal can still be displayed when the GitHub API is unavailable or rate limited.

## Specification

The placeholder includes the sections typically found in a SIP document to keep the expected format and structure.

### Technical Details
- Feature 1: Description of feature 1
- Feature 2: Description of feature 2
- Feature 3: Description of feature 3

## Rationale

The placeholder provides a fallback when the GitHub API cannot be accessed.

## Backwards Compatibility

This placeholder keeps the expected format and structure of a SIP document.

## Test Cases

- Test case 1: Description
- Test case 2: Description

## Reference Implementation

```rust
// This is placeholder code
fn example_function() -> bool {{
    println!("This is a placeholder implementation");
    true
}}
```

## Security Considerations

There are no security implications for this placeholder content.

## Copyright

Copyright and related rights waived via [CC0](https://creativecommons.org/publicdomain/zero/1.0/).
"""


def strip_metadata_table(content: str) -> str:
    """Remove the leading ``| SIP-Number`` table and one blank line after it.

    Content without the marker row is returned unchanged.
    """
    if not content:
        return content

    lines = content.split("\n")
    start: int | None = None
    for index, line in enumerate(lines):
        if line.strip().startswith(METADATA_TABLE_MARKERS):
            start = index
            break
    if start is None:
        return content

    end = start
    for index in range(start, len(lines)):
        stripped = lines[index].strip()
        if stripped.startswith("|"):
            end = index
            continue
        if stripped == "":
            end = index
        break

    return "\n".join(lines[:start] + lines[end + 1 :]).lstrip()


def generate_placeholder_content(sip_id: int | str) -> str:
    """Synthetic SIP document used when nothing could be fetched."""
    return PLACEHOLDER_TEMPLATE.format(sip_id=sip_id)


def find_proposal_file(files: list[CommitFile]) -> CommitFile | None:
    """Pick the changed file most likely to be the SIP document.

    Only the first match of each pattern is considered; a match without a
    ``raw_url`` moves on to the next pattern.
    """
    for pattern in FILE_CANDIDATE_PATTERNS:
        candidate = next((file for file in files if pattern(file)), None)
        if candidate is not None and candidate.raw_url:
            return candidate
    return None


def clean_markdown_text(text: str) -> str:
    """Drop inline markdown syntax and collapse whitespace."""
    cleaned = re.sub(r"\*\*(.*?)\*\*", r"\1", text)
    cleaned = re.sub(r"\*(.*?)\*", r"\1", cleaned)
    cleaned = re.sub(r"`(.*?)`", r"\1", cleaned)
    cleaned = re.sub(r"\[(.*?)\]\(.*?\)", r"\1", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()


def extract_description(content: str) -> str:
    """Short plain-text description: Abstract, else Summary, else first prose after a heading."""
    if not content:
        return NO_DESCRIPTION

    for pattern in (ABSTRACT_PATTERN, SUMMARY_PATTERN):
        match = pattern.search(content)
        if match:
            return clean_markdown_text(match.group(1).strip())

    description = ""
    found_title = False
    for line in content.split("\n"):
        stripped = line.strip()
        if not stripped or stripped.startswith(("---", "|")):
            continue
        if stripped.startswith("#"):
            found_title = True
            continue
        if found_title:
            description += f"{stripped} "
            if len(description) > DESCRIPTION_CHARACTER_TARGET:
                break

    return clean_markdown_text(description) or NO_DESCRIPTION


async def _fetch_raw_file(source: GitHubSource, raw_url: str) -> str | None:
    try:
        result = await fetch_with_rate_limit(source, raw_url, expect_json=False)
    except Exception as error:
        logger.warning("Failed to fetch raw content from %s: %s", raw_url, error)
        return None
    if result.rate_limited or not isinstance(result.data, str) or not result.data:
        logger.warning("No raw content available from %s", raw_url)
        return None
    return result.data


async def _fallback_to_body(source: GitHubSource, number: int, reason: str) -> ResolvedContent:
    logger.info("%s for SIP %d; falling back to PR body", reason, number)
    proposal = await get_proposal(source, number)
    if proposal is not None and proposal.body:
        return ResolvedContent(
            content=strip_metadata_table(f"# {proposal.title}\n\n{proposal.body}"),
            source=ContentSource.PR_BODY,
            reason=reason,
        )
    logger.info("PR body unavailable; using placeholder content for SIP %d", number)
    return ResolvedContent(
        content=strip_metadata_table(generate_placeholder_content(number)),
        source=ContentSource.PLACEHOLDER,
        reason=f"{reason}; PR body unavailable",
    )


async def resolve_proposal_content(source: GitHubSource, number: int) -> ResolvedContent:
    """Resolve the best available markdown for a proposal.

    Tries the SIP file from the first commit, then the PR body, then a
    placeholder. The result is always post-processed and never empty.
    """
    try:
        commits = await get_commits(source, number)
        if not commits:
            return await _fallback_to_body(source, number, "No commits found")

        detail = await get_commit_detail(source, commits[0].sha)
        if detail is None or not detail.files:
            return await _fallback_to_body(source, number, "No commit files found")

        proposal_file = find_proposal_file(detail.files)
        if proposal_file is None or proposal_file.raw_url is None:
            return await _fallback_to_body(source, number, "No SIP file found")

        raw_content = await _fetch_raw_file(source, proposal_file.raw_url)
        if raw_content is None:
            return await _fallback_to_body(source, number, "Raw content fetch failed")

        return ResolvedContent(
            content=strip_metadata_table(raw_content),
            source=ContentSource.FILE,
        )
    except Exception as error:
        logger.error("Error resolving content for SIP %d: %s", number, error)
        return ResolvedContent(
            content=strip_metadata_table(generate_placeholder_content(number)),
            source=ContentSource.PLACEHOLDER,
            reason=str(error),
        )


async def get_proposal_content(source: GitHubSource, number: int) -> str:
    """Markdown for a proposal; never ``None``."""
    resolved = await resolve_proposal_content(source, number)
    return resolved.content
