"""VCS and messaging provider adapters."""

from gitrouter.adapters.base import (
    MessagingError,
    MessagingProvider,
    PullRequestInfo,
    SentMessage,
    VCSError,
    VCSProvider,
)
from gitrouter.adapters.github import GitHubAdapter
from gitrouter.adapters.slack import SlackAdapter

__all__ = [
    "GitHubAdapter",
    "MessagingError",
    "MessagingProvider",
    "PullRequestInfo",
    "SentMessage",
    "SlackAdapter",
    "VCSError",
    "VCSProvider",
]
