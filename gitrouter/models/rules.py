"""Routing rules, their conditions, and routing inputs/outputs.

A rule's conditions are a tagged union on ``type``; each tag has exactly one
evaluator in gitrouter.routing.conditions.
"""

from datetime import UTC, datetime
from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, Field

from gitrouter.models.events import PullRequestEvent
from gitrouter.models.records import Reviewer

Weekday = Literal["mon", "tue", "wed", "thu", "fri", "sat", "sun"]


class FilePatternCondition(BaseModel):
    """Changed file paths against regex patterns."""

    type: Literal["file_pattern"] = "file_pattern"
    patterns: List[str] = Field(min_length=1)
    match_mode: Literal["any", "all"] = "any"


class AuthorCondition(BaseModel):
    """PR author in (include) or not in (exclude) a username list."""

    type: Literal["author"] = "author"
    usernames: List[str] = Field(min_length=1)
    mode: Literal["include", "exclude"] = "exclude"


class BranchCondition(BaseModel):
    """Head or base branch name against regex patterns."""

    type: Literal["branch"] = "branch"
    patterns: List[str] = Field(min_length=1)
    branch_type: Literal["head", "base"] = "base"


class LabelCondition(BaseModel):
    """PR labels against a required label list."""

    type: Literal["label"] = "label"
    labels: List[str] = Field(min_length=1)
    match_mode: Literal["any", "all"] = "any"


class TimeWindowCondition(BaseModel):
    """Weekdays and [start_hour, end_hour) in a timezone; start > end wraps midnight."""

    type: Literal["time_window"] = "time_window"
    timezone: str = "UTC"
    days: List[Weekday] = Field(min_length=1)
    start_hour: int = Field(ge=0, le=23)
    end_hour: int = Field(ge=0, le=23)


RoutingCondition = Annotated[
    Union[
        FilePatternCondition,
        AuthorCondition,
        BranchCondition,
        LabelCondition,
        TimeWindowCondition,
    ],
    Field(discriminator="type"),
]


class RoutingRule(BaseModel):
    """Organization-scoped rule; lower priority is evaluated first."""

    id: int
    organization_id: int
    name: str
    description: str | None = None
    priority: int = 0
    is_active: bool = True
    conditions: List[RoutingCondition] = Field(default_factory=list)
    reviewer_ids: List[int] = Field(default_factory=list)
    repository: str | None = Field(default=None, description="Repository full_name; None applies to all")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def applies_to(self, repository: str) -> bool:
        return self.repository is None or self.repository.lower() == repository.lower()


class RoutingContext(BaseModel):
    """PR attributes the conditions are evaluated against."""

    repository: str
    author: str
    number: int | None = None
    title: str = ""
    body: str = ""
    head_branch: str = ""
    base_branch: str = ""
    labels: List[str] = Field(default_factory=list)
    changed_files: List[str] = Field(default_factory=list)
    additions: int = 0
    deletions: int = 0

    @classmethod
    def from_event(cls, event: PullRequestEvent) -> "RoutingContext":
        return cls(
            repository=event.repository,
            author=event.author,
            number=event.number,
            title=event.title,
            body=event.body,
            head_branch=event.head_branch,
            base_branch=event.base_branch,
            labels=list(event.labels),
            changed_files=list(event.changed_files),
            additions=event.additions,
            deletions=event.deletions,
        )


class ConditionResult(BaseModel):
    """Result of evaluating one condition."""

    type: str
    matched: bool
    details: str = ""


class MatchResult(BaseModel):
    """Result of evaluating a rule's conditions (stops at first failure)."""

    matched: bool
    results: List[ConditionResult] = Field(default_factory=list)


class RoutingResult(BaseModel):
    """Reviewers selected for a PR and why."""

    matched: bool
    rule: RoutingRule | None = None
    reviewers: List[Reviewer] = Field(default_factory=list)
    reason: str = ""
    fallback_used: bool = False
    evaluated_rules: int = 0

    @property
    def rule_id(self) -> int | None:
        return self.rule.id if self.rule else None
