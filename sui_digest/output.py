"""CSV export and markdown summaries of proposals."""

from __future__ import annotations

import csv
import io

from sui_digest.models import Comment, Commit, Proposal

CSV_HEADER = ("Number", "Title", "Status", "Created Date", "Updated Date", "Author", "Labels")


def render_proposals_csv(proposals: list[Proposal]) -> str:
    """Render proposals as CSV, one row per proposal."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for proposal in proposals:
        writer.writerow(
            (
                proposal.number,
                proposal.title,
                proposal.state_label,
                proposal.created_at.isoformat(),
                proposal.updated_at.isoformat(),
                proposal.user.login,
                ", ".join(label.name for label in proposal.labels),
            )
        )
    return buffer.getvalue()


def render_proposal_summary(proposal: Proposal, description: str) -> str:
    """Render a short markdown summary of one proposal."""
    lines = [
        f"# SIP-{proposal.number}: {proposal.title}",
        "",
        f"Status: `{proposal.sip_status}` ({proposal.state_label})",
        f"Author: {proposal.user.login}",
        f"Created: {proposal.created_at.date().isoformat()}",
    ]
    if proposal.labels:
        lines.append(f"Labels: {', '.join(label.name for label in proposal.labels)}")
    if proposal.total_comments is not None:
        lines.append(f"Comments: {proposal.total_comments}")
    lines.append(f"URL: {proposal.html_url}")
    lines.append("")
    lines.append("## Description")
    lines.append(description)
    return "\n".join(lines)


def render_comment_line(comment: Comment, *, max_body_chars: int = 200) -> str:
    body = " ".join(comment.body.split())
    if len(body) > max_body_chars:
        body = f"{body[:max_body_chars]}..."
    return f"[{comment.created_at.date().isoformat()}] {comment.user.login}: {body}"


def render_commit_line(commit: Commit) -> str:
    first_line = commit.message.splitlines()[0] if commit.message else ""
    return f"{commit.sha[:7]} {commit.author_name}: {first_line}"
