"""Normalized webhook events and ingestion results.

GitHub events accepted by the ingestion gate:
- pull_request (opened, reopened, ready_for_review, synchronize, closed): PullRequestEvent
- pull_request_review (submitted): ReviewSubmittedEvent
"""

from typing import List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

PullRequestAction = Literal["opened", "reopened", "ready_for_review", "synchronize", "closed"]

# Actions that trigger routing; the others only update the stored PR
ROUTING_ACTIONS = ("opened", "reopened", "ready_for_review")


class PullRequestEvent(BaseModel):
    """Pull request lifecycle change (pull_request webhook)."""

    model_config = ConfigDict(frozen=True)

    delivery_id: str
    action: PullRequestAction
    repository: str = Field(description="Repository full_name (owner/repo)")
    number: int
    provider_id: int = Field(description="GitHub pull request id (stable across renames)")
    author: str = Field(description="PR author login")
    title: str = ""
    body: str = ""
    head_branch: str = ""
    base_branch: str = ""
    labels: List[str] = Field(default_factory=list)
    changed_files: List[str] = Field(default_factory=list)
    additions: int = 0
    deletions: int = 0
    html_url: str | None = None
    draft: bool = False
    merged: bool = False

    @property
    def status(self) -> str:
        """Stored PR status implied by this event: open, closed or merged."""
        if self.action != "closed":
            return "open"
        return "merged" if self.merged else "closed"

    @property
    def triggers_routing(self) -> bool:
        return self.action in ROUTING_ACTIONS


class ReviewSubmittedEvent(BaseModel):
    """Review submitted (pull_request_review webhook, action=submitted).

    state is the raw GitHub review state (approved, changes_requested,
    commented, dismissed); the assignment manager maps it.
    """

    model_config = ConfigDict(frozen=True)

    delivery_id: str
    repository: str
    number: int
    provider_id: int | None = None
    reviewer: str = Field(description="Review author login")
    state: str = "commented"


InboundEvent = Union[PullRequestEvent, ReviewSubmittedEvent]

IngestStatus = Literal["accepted", "duplicate", "ignored", "rejected"]


class IngestResult(BaseModel):
    """Outcome of one inbound delivery at the ingestion gate."""

    status: IngestStatus
    reason: str = ""
    delivery_id: str | None = None
    event_type: str | None = None
    event: PullRequestEvent | ReviewSubmittedEvent | None = None

    @classmethod
    def accepted(cls, event: InboundEvent, event_type: str) -> "IngestResult":
        return cls(status="accepted", delivery_id=event.delivery_id, event_type=event_type, event=event)

    @classmethod
    def duplicate(cls, delivery_id: str) -> "IngestResult":
        return cls(status="duplicate", reason="already_processed", delivery_id=delivery_id)

    @classmethod
    def ignored(cls, delivery_id: str, event_type: str, reason: str) -> "IngestResult":
        return cls(status="ignored", reason=reason, delivery_id=delivery_id, event_type=event_type)

    @classmethod
    def rejected(cls, reason: str, delivery_id: str | None = None) -> "IngestResult":
        return cls(status="rejected", reason=reason, delivery_id=delivery_id)

    def to_response(self) -> dict:
        """Terse body returned to the webhook sender."""
        status = "ignored" if self.status == "duplicate" else self.status
        body = {"status": status}
        if self.reason:
            body["reason"] = self.reason
        if self.delivery_id:
            body["delivery_id"] = self.delivery_id
        return body
