"""Unit tests for content resolution and markdown post-processing."""

from __future__ import annotations

import httpx
import pytest

from sui_digest.content import (
    clean_markdown_text,
    extract_description,
    find_proposal_file,
    generate_placeholder_content,
    get_proposal_content,
    resolve_proposal_content,
    strip_metadata_table,
)
from sui_digest.models import CommitFile, ContentSource
from tests.conftest import make_commit_payload, make_pr_payload, make_source

PULLS_PATH = "/repos/sui-foundation/sips/pulls"
RAW_URL = "https://github.com/sui-foundation/sips/raw/abc123/sips/sip-7.md"


def commit_detail_payload(files: list[dict[str, object]]) -> dict[str, object]:
    return {"sha": "abc123", "files": files}


@pytest.mark.unit
def test_strip_metadata_table_removes_table_and_blank_line() -> None:
    content = "| SIP-Number | 7 |\n| --- | --- |\n\n## Abstract\ntext"

    assert strip_metadata_table(content) == "## Abstract\ntext"


@pytest.mark.unit
def test_strip_metadata_table_accepts_no_space_marker() -> None:
    content = "|SIP-Number| 7 |\n|---|---|\n## Abstract\ntext"

    assert strip_metadata_table(content) == "## Abstract\ntext"


@pytest.mark.unit
def test_strip_metadata_table_keeps_preceding_lines() -> None:
    content = "# Title\n\n| SIP-Number | 7 |\n| Title | x |\n\nBody"

    assert strip_metadata_table(content) == "# Title\n\nBody"


@pytest.mark.unit
def test_strip_metadata_table_is_noop_without_marker() -> None:
    content = "  | Name | Value |\n| --- | --- |\n\nBody"

    assert strip_metadata_table(content) == content
    assert strip_metadata_table("") == ""


@pytest.mark.unit
def test_placeholder_survives_post_processing() -> None:
    stripped = strip_metadata_table(generate_placeholder_content(7))

    assert stripped.startswith("# SIP-7: Placeholder Title")
    assert "| SIP-Number" not in stripped
    assert "## Security Considerations" in stripped


@pytest.mark.unit
def test_find_proposal_file_prefers_sip_markdown() -> None:
    files = [
        CommitFile(filename="src/main.rs", status="modified", raw_url="https://x/raw/a/main.rs"),
        CommitFile(filename="README.md", status="modified", raw_url="https://x/raw/a/README.md"),
        CommitFile(filename="sips/SIP-7.md", status="added", raw_url="https://x/raw/a/SIP-7.md"),
    ]

    selected = find_proposal_file(files)

    assert selected is not None
    assert selected.filename == "sips/SIP-7.md"


@pytest.mark.unit
def test_find_proposal_file_falls_back_to_any_markdown_then_changed_file() -> None:
    markdown = [
        CommitFile(filename="src/main.rs", status="modified", raw_url="https://x/raw/a/main.rs"),
        CommitFile(filename="docs/notes.md", status="modified", raw_url="https://x/raw/a/notes.md"),
    ]
    changed_only = [
        CommitFile(filename="assets/logo.png", status="removed", raw_url="https://x/raw/a/logo"),
        CommitFile(filename="src/main.rs", status="added", raw_url="https://x/raw/a/main.rs"),
    ]

    first = find_proposal_file(markdown)
    second = find_proposal_file(changed_only)
    assert first is not None
    assert first.filename == "docs/notes.md"
    assert second is not None
    assert second.filename == "src/main.rs"
    assert find_proposal_file([CommitFile(filename="x.md", status="added")]) is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resolves_sip_file_from_first_commit(
    recorded_sleeps: dict[str, list[float]],
) -> None:
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        if request.url.path == f"{PULLS_PATH}/7/commits":
            return httpx.Response(
                status_code=200,
                json=[make_commit_payload("abc123"), make_commit_payload("def456")],
            )
        if request.url.path == "/repos/sui-foundation/sips/commits/abc123":
            return httpx.Response(
                status_code=200,
                json=commit_detail_payload(
                    [{"filename": "sips/sip-7.md", "status": "added", "raw_url": RAW_URL}]
                ),
            )
        if str(request.url) == RAW_URL:
            return httpx.Response(
                status_code=200,
                text="| SIP-Number | 7 |\n| ---: | :--- |\n\n## Abstract\n\nReal content.",
            )
        raise AssertionError(f"Unexpected request {request.url}")

    source = make_source(handler)
    async with source.client:
        resolved = await resolve_proposal_content(source, 7)

    assert resolved.source is ContentSource.FILE
    assert resolved.degraded is False
    assert resolved.content == "## Abstract\n\nReal content."
    assert RAW_URL in requested


@pytest.mark.unit
@pytest.mark.asyncio
async def test_no_commits_falls_back_to_pr_body(recorded_sleeps: dict[str, list[float]]) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == f"{PULLS_PATH}/7/commits":
            return httpx.Response(status_code=200, json=[])
        if request.url.path == f"{PULLS_PATH}/7":
            return httpx.Response(
                status_code=200, json=make_pr_payload(7, title="Test", body="Hello")
            )
        raise AssertionError(f"Unexpected request {request.url}")

    source = make_source(handler)
    async with source.client:
        resolved = await resolve_proposal_content(source, 7)

    assert resolved.source is ContentSource.PR_BODY
    assert "# Test" in resolved.content
    assert "Hello" in resolved.content


@pytest.mark.unit
@pytest.mark.asyncio
async def test_no_commits_and_no_body_returns_placeholder(
    recorded_sleeps: dict[str, list[float]],
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == f"{PULLS_PATH}/7/commits":
            return httpx.Response(status_code=200, json=[])
        if request.url.path == f"{PULLS_PATH}/7":
            return httpx.Response(status_code=200, json=make_pr_payload(7, body=None))
        raise AssertionError(f"Unexpected request {request.url}")

    source = make_source(handler)
    async with source.client:
        content = await get_proposal_content(source, 7)

    assert "SIP-7: Placeholder Title" in content


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failed_raw_fetch_falls_back_to_pr_body(
    recorded_sleeps: dict[str, list[float]],
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == f"{PULLS_PATH}/7/commits":
            return httpx.Response(status_code=200, json=[make_commit_payload("abc123")])
        if request.url.path == "/repos/sui-foundation/sips/commits/abc123":
            return httpx.Response(
                status_code=200,
                json=commit_detail_payload(
                    [{"filename": "sips/sip-7.md", "status": "added", "raw_url": RAW_URL}]
                ),
            )
        if str(request.url) == RAW_URL:
            return httpx.Response(status_code=500, text="upstream error")
        if request.url.path == f"{PULLS_PATH}/7":
            return httpx.Response(
                status_code=200,
                json=make_pr_payload(
                    7, title="SIP-7: Title", body="| SIP-Number | 7 |\n\nBody text"
                ),
            )
        raise AssertionError(f"Unexpected request {request.url}")

    source = make_source(handler)
    async with source.client:
        resolved = await resolve_proposal_content(source, 7)

    assert resolved.source is ContentSource.PR_BODY
    assert resolved.reason == "Raw content fetch failed"
    assert resolved.content == "# SIP-7: Title\n\nBody text"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_no_candidate_file_falls_back_to_pr_body(
    recorded_sleeps: dict[str, list[float]],
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == f"{PULLS_PATH}/7/commits":
            return httpx.Response(status_code=200, json=[make_commit_payload("abc123")])
        if request.url.path == "/repos/sui-foundation/sips/commits/abc123":
            return httpx.Response(
                status_code=200,
                json=commit_detail_payload(
                    [{"filename": "old.txt", "status": "removed", "raw_url": RAW_URL}]
                ),
            )
        if request.url.path == f"{PULLS_PATH}/7":
            return httpx.Response(status_code=200, json=make_pr_payload(7, body="Body"))
        raise AssertionError(f"Unexpected request {request.url}")

    source = make_source(handler)
    async with source.client:
        resolved = await resolve_proposal_content(source, 7)

    assert resolved.source is ContentSource.PR_BODY
    assert resolved.reason == "No SIP file found"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unreachable_api_returns_placeholder(
    recorded_sleeps: dict[str, list[float]],
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    source = make_source(handler)
    async with source.client:
        resolved = await resolve_proposal_content(source, 12)

    assert resolved.source is ContentSource.PLACEHOLDER
    assert resolved.degraded is True
    assert "SIP-12: Placeholder Title" in resolved.content


@pytest.mark.unit
def test_extract_description_prefers_abstract() -> None:
    content = "# SIP\n\n## Abstract\n\nThis adds **bold** and `code` with [a link](https://x).\n\n## Motivation\nWhy"

    assert extract_description(content) == "This adds bold and code with a link."


@pytest.mark.unit
def test_extract_description_uses_summary_then_prose() -> None:
    with_summary = "# SIP\n\n## Summary\nShort summary.\n## Details\nMore"
    prose_only = "---\n# Title\n| a | b |\n\nFirst paragraph *here*.\nSecond line."

    assert extract_description(with_summary) == "Short summary."
    assert extract_description(prose_only) == "First paragraph here. Second line."
    assert extract_description("") == "No description available."
    assert extract_description("no heading at all") == "No description available."


@pytest.mark.unit
def test_clean_markdown_text_normalizes_whitespace() -> None:
    assert clean_markdown_text("a\n\n  *b*   c") == "a b c"


@pytest.mark.unit
def test_find_proposal_file_moves_to_next_pattern_when_first_match_has_no_raw_url() -> None:
    files = [
        CommitFile(filename="docs/notes.md", status="modified", raw_url="https://x/raw/a/notes.md"),
        CommitFile(filename="sips/sip-7.md", status="added"),
        CommitFile(filename="sips/sip-7-v2.md", status="added", raw_url="https://x/raw/a/v2.md"),
    ]

    selected = find_proposal_file(files)

    assert selected is not None
    assert selected.filename == "docs/notes.md"
