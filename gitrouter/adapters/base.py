"""Abstract interfaces for the VCS and messaging providers."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from pydantic import BaseModel


class VCSError(Exception):
    """Raised when a VCS provider API call fails."""

    pass


class MessagingError(Exception):
    """Raised when a messaging provider API call fails."""

    pass


class PullRequestInfo(BaseModel):
    """Pull request as reported by the VCS provider."""

    number: int
    provider_id: int
    title: str = ""
    author: str = ""
    state: str = "open"
    draft: bool = False
    merged: bool = False
    html_url: str | None = None
    head_branch: str = ""
    base_branch: str = ""
    requested_reviewers: List[str] = []


class SentMessage(BaseModel):
    """Where a message landed: channel id and message timestamp (external id)."""

    channel: str
    ts: str


class VCSProvider(ABC):
    """Abstract interface for code hosting platforms."""

    @abstractmethod
    def list_changed_files(self, repo: str, number: int) -> List[str]:
        """Return paths of files changed by the pull request."""
        ...

    @abstractmethod
    def request_reviewers(self, repo: str, number: int, usernames: List[str]) -> None:
        """Request reviews from usernames on the pull request."""
        ...

    @abstractmethod
    def get_pull_request(self, repo: str, number: int) -> PullRequestInfo:
        """Fetch a pull request by number."""
        ...


class MessagingProvider(ABC):
    """Abstract interface for chat platforms."""

    @abstractmethod
    def send_direct(self, user_id: str, text: str, blocks: List[Dict[str, Any]] | None = None) -> SentMessage:
        """Send a direct message to a user."""
        ...

    @abstractmethod
    def send_to_channel(
        self,
        channel_id: str,
        text: str,
        blocks: List[Dict[str, Any]] | None = None,
    ) -> SentMessage:
        """Post a message to a channel."""
        ...
