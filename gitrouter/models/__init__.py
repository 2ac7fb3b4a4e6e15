"""Domain models for events, rules and persistent records (Pydantic)."""

from gitrouter.models.events import (
    IngestResult,
    PullRequestEvent,
    ReviewSubmittedEvent,
)
from gitrouter.models.records import (
    NotificationRecord,
    Organization,
    PullRequestRecord,
    Repository,
    ReviewAssignment,
    Reviewer,
)
from gitrouter.models.rules import (
    AuthorCondition,
    BranchCondition,
    ConditionResult,
    FilePatternCondition,
    LabelCondition,
    MatchResult,
    RoutingCondition,
    RoutingContext,
    RoutingResult,
    RoutingRule,
    TimeWindowCondition,
)

__all__ = [
    "AuthorCondition",
    "BranchCondition",
    "ConditionResult",
    "FilePatternCondition",
    "IngestResult",
    "LabelCondition",
    "MatchResult",
    "NotificationRecord",
    "Organization",
    "PullRequestEvent",
    "PullRequestRecord",
    "Repository",
    "ReviewAssignment",
    "ReviewSubmittedEvent",
    "Reviewer",
    "RoutingCondition",
    "RoutingContext",
    "RoutingResult",
    "RoutingRule",
    "TimeWindowCondition",
]
