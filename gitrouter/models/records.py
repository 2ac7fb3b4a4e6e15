"""Persistent records as seen by the engine (store rows converted to models)."""

from datetime import datetime
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field

AssignmentStatus = Literal["pending", "approved", "changes_requested", "commented", "dismissed"]
EscalationLevel = Literal["none", "reminded", "escalated"]
MessageType = Literal["new_pr", "reminder", "escalation", "pr_closed", "pr_merged"]
DeliveryStatus = Literal["sent", "failed", "skipped"]
NotificationDestination = Literal["channel", "dm"]
PullRequestStatus = Literal["open", "closed", "merged"]

# Position in the state machine; levels only move forward
ESCALATION_ORDER = {"none": 0, "reminded": 1, "escalated": 2}

# Assignment timestamp stamped after a successful notification of each type
GUARD_FIELDS = {
    "new_pr": "first_notified_at",
    "reminder": "reminded_at",
    "escalation": "escalated_at",
}


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class Organization(_Record):
    id: int
    name: str
    default_reviewer_id: int | None = None
    team_lead_id: int | None = None
    escalation_channel_id: str | None = None
    team_channel_id: str | None = None
    slack_notifications: bool = True
    # channel: new PR notices go to the team channel, escalations to the escalation or team channel
    # dm: new PR notices go to each reviewer, escalations to the team lead
    notification_destination: NotificationDestination = "channel"


class Repository(_Record):
    id: int
    organization_id: int
    full_name: str
    default_reviewer_id: int | None = None


class Reviewer(_Record):
    id: int
    organization_id: int
    name: str = ""
    github_username: str
    slack_user_id: str | None = None
    is_team_lead: bool = False
    is_active: bool = True


class PullRequestRecord(_Record):
    """Stored pull request; status feeds the 'still open' escalation guard."""

    id: int
    organization_id: int
    repository: str
    number: int
    provider_id: int
    title: str = ""
    author: str = ""
    html_url: str | None = None
    status: PullRequestStatus = "open"
    files: List[str] = Field(default_factory=list)
    additions: int = 0
    deletions: int = 0

    @property
    def is_open(self) -> bool:
        return self.status == "open"


class ReviewAssignment(_Record):
    """One reviewer responsible for one pull request."""

    id: int
    pull_request_id: int
    reviewer_id: int
    routing_rule_id: int | None = None
    status: AssignmentStatus = "pending"
    escalation_level: EscalationLevel = "none"
    assigned_at: datetime
    first_notified_at: datetime | None = None
    reminded_at: datetime | None = None
    escalated_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"


class NotificationRecord(_Record):
    """One delivery attempt; append-only. PR status notices carry no assignment."""

    id: int | None = None
    organization_id: int
    assignment_id: int | None = None
    channel: str = "slack"
    recipient: str = ""
    message_type: MessageType
    status: DeliveryStatus
    external_id: str | None = None
    error: str | None = None
    attempt: int = 1
    created_at: datetime | None = None
