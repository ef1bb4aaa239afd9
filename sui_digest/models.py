"""Records mirrored from GitHub and the envelopes that carry them."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class SipStatus(StrEnum):
    """Display status of a proposal derived from its pull request state."""

    APPROVED = "Approved"
    LIVE = "Live"
    DRAFT = "Draft"
    REVIEW = "Review"


class ContentSource(StrEnum):
    """Where resolved proposal content came from."""

    FILE = "file"
    PR_BODY = "pr_body"
    PLACEHOLDER = "placeholder"


class GitHubUser(BaseModel):
    """Author of a pull request or comment."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    login: str
    avatar_url: str | None = None


class Label(BaseModel):
    """Pull request label."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str
    color: str


class Proposal(BaseModel):
    """A SIP, i.e. one pull request snapshot."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: int
    number: int = Field(ge=1)
    title: str
    body: str | None = None
    state: str
    merged_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    html_url: str
    user: GitHubUser
    labels: list[Label] = Field(default_factory=list)
    comments: int | None = None
    review_comments: int | None = None
    total_comments: int | None = None

    @property
    def is_open(self) -> bool:
        return self.state == "open"

    @property
    def sip_status(self) -> SipStatus:
        """Map pull request state onto the proposal lifecycle."""
        if self.merged_at is not None:
            return SipStatus.LIVE
        if self.state == "closed":
            return SipStatus.DRAFT
        return SipStatus.APPROVED

    @property
    def state_label(self) -> str:
        if self.is_open:
            return "Open"
        return "Merged" if self.merged_at is not None else "Closed"


class Comment(BaseModel):
    """Issue or review comment on a proposal."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: int
    user: GitHubUser
    created_at: datetime
    updated_at: datetime | None = None
    body: str = ""
    html_url: str | None = None


class CommitAuthor(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str
    date: datetime | None = None


class CommitInfo(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    message: str
    author: CommitAuthor


class Commit(BaseModel):
    """Commit listed on a pull request."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    sha: str = Field(min_length=1)
    commit: CommitInfo
    html_url: str | None = None

    @property
    def message(self) -> str:
        return self.commit.message

    @property
    def author_name(self) -> str:
        return self.commit.author.name


class CommitFile(BaseModel):
    """Changed-file descriptor from the commit detail endpoint."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    filename: str
    status: str
    raw_url: str | None = None


class CommitDetail(BaseModel):
    """Commit with its changed files."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    sha: str
    files: list[CommitFile] = Field(default_factory=list)


@dataclass(frozen=True, slots=True)
class FetchResult(Generic[T]):
    """Outcome of one upstream fetch with its rate-limit classification."""

    rate_limited: bool
    data: T
    reset: int | None = None
    retry_after: int | None = None


@dataclass(frozen=True, slots=True)
class ProposalListing:
    """Aggregated proposal list, possibly partial."""

    rate_limited: bool
    data: list[Proposal]
    reset: int | None = None
    degraded_reason: str | None = None

    @property
    def degraded(self) -> bool:
        return self.rate_limited or self.degraded_reason is not None


@dataclass(frozen=True, slots=True)
class ResolvedContent:
    """Markdown resolved for a proposal, tagged with how it was obtained."""

    content: str
    source: ContentSource
    reason: str | None = None

    @property
    def degraded(self) -> bool:
        return self.source is not ContentSource.FILE


def has_numeric_field(row: dict[str, Any], key: str) -> bool:
    """Return whether ``row[key]`` exists and is a real number (bools excluded)."""
    value = row.get(key)
    return isinstance(value, int | float) and not isinstance(value, bool)
