"""Abstract persistence store.

The engine depends on BaseStore, not on a concrete backend. Every query the
routing, assignment and escalation code needs is expressed here; the
conditional updates (advance_escalation_level, stamp_assignment) are what
keep escalation transitions exactly-once across overlapping sweeps.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Sequence

from gitrouter.models.events import PullRequestEvent
from gitrouter.models.records import (
    EscalationLevel,
    MessageType,
    NotificationRecord,
    Organization,
    PullRequestRecord,
    Repository,
    ReviewAssignment,
    Reviewer,
)
from gitrouter.models.rules import RoutingCondition, RoutingRule


class StoreError(Exception):
    """Raised when a persistence operation fails or refers to a missing row."""

    pass


class BaseStore(ABC):
    """Persistence for organizations, rules, reviewers, assignments,
    notifications and the processed-event ledger."""

    # Organizations and repositories

    @abstractmethod
    def create_organization(self, name: str, **fields: Any) -> Organization: ...

    @abstractmethod
    def get_organization(self, org_id: int) -> Organization | None: ...

    @abstractmethod
    def update_organization(self, org_id: int, **fields: Any) -> Organization: ...

    @abstractmethod
    def create_repository(
        self,
        org_id: int,
        full_name: str,
        default_reviewer_id: int | None = None,
    ) -> Repository: ...

    @abstractmethod
    def get_repository(self, full_name: str) -> Repository | None:
        """Look up a repository by full_name (case-insensitive)."""

    # Reviewers

    @abstractmethod
    def create_reviewer(
        self,
        org_id: int,
        github_username: str,
        name: str = "",
        slack_user_id: str | None = None,
        is_team_lead: bool = False,
        is_active: bool = True,
    ) -> Reviewer: ...

    @abstractmethod
    def get_reviewer(self, reviewer_id: int) -> Reviewer | None: ...

    @abstractmethod
    def get_reviewers(self, reviewer_ids: Sequence[int]) -> List[Reviewer]:
        """Return reviewers for the ids that exist, in the order given."""

    @abstractmethod
    def find_reviewer_by_username(self, org_id: int, username: str) -> Reviewer | None: ...

    @abstractmethod
    def list_reviewers(self, org_id: int) -> List[Reviewer]: ...

    # Routing rules

    @abstractmethod
    def create_rule(
        self,
        org_id: int,
        name: str,
        conditions: Sequence[RoutingCondition | dict],
        reviewer_ids: Sequence[int],
        priority: int = 0,
        is_active: bool = True,
        description: str | None = None,
        repository: str | None = None,
    ) -> RoutingRule: ...

    @abstractmethod
    def update_rule(self, rule_id: int, **fields: Any) -> RoutingRule: ...

    @abstractmethod
    def delete_rule(self, rule_id: int) -> bool: ...

    @abstractmethod
    def list_rules(self, org_id: int) -> List[RoutingRule]:
        """All rules of the organization, active or not, in no particular order."""

    # Pull requests

    @abstractmethod
    def upsert_pull_request(self, org_id: int, event: PullRequestEvent) -> PullRequestRecord:
        """Create or update the PR keyed by (organization, provider id).

        Files are replaced only when the event carries some.
        """

    @abstractmethod
    def get_pull_request(self, pull_request_id: int) -> PullRequestRecord | None: ...

    @abstractmethod
    def find_pull_request(self, org_id: int, repository: str, number: int) -> PullRequestRecord | None: ...

    @abstractmethod
    def set_pull_request_status(self, pull_request_id: int, status: str) -> PullRequestRecord | None:
        """Record a status learned outside the webhook stream (e.g. a PR closed while events were lost)."""

    # Assignments

    @abstractmethod
    def create_assignment(
        self,
        pull_request_id: int,
        reviewer_id: int,
        routing_rule_id: int | None,
        assigned_at: datetime,
    ) -> ReviewAssignment | None:
        """Insert a pending assignment; None if (pull request, reviewer) already exists."""

    @abstractmethod
    def get_assignment(self, assignment_id: int) -> ReviewAssignment | None: ...

    @abstractmethod
    def find_assignment(self, pull_request_id: int, reviewer_id: int) -> ReviewAssignment | None: ...

    @abstractmethod
    def list_assignments(self, pull_request_id: int) -> List[ReviewAssignment]: ...

    @abstractmethod
    def update_assignment_status(
        self,
        assignment_id: int,
        status: str,
        completed_at: datetime | None,
    ) -> ReviewAssignment | None: ...

    @abstractmethod
    def advance_escalation_level(
        self,
        assignment_id: int,
        from_level: EscalationLevel,
        to_level: EscalationLevel,
    ) -> bool:
        """Move a pending assignment from from_level to to_level.

        False if the assignment is no longer pending or no longer at from_level
        (another sweep got there first).
        """

    @abstractmethod
    def stamp_assignment(self, assignment_id: int, field: str, when: datetime) -> bool:
        """Set first_notified_at/reminded_at/escalated_at only if still NULL."""

    @abstractmethod
    def claim_assignment(
        self,
        assignment_id: int,
        guard_field: str,
        now: datetime,
        lease_until: datetime,
    ) -> str | None:
        """Take a delivery lease on a pending assignment whose guard_field is still NULL.

        Returns a claim token, or None when the assignment is resolved, already
        stamped, or leased by another worker until after now.
        """

    @abstractmethod
    def release_assignment(self, assignment_id: int, token: str) -> bool:
        """Drop the lease if token still owns it."""

    @abstractmethod
    def list_due_assignments(
        self,
        levels: Sequence[EscalationLevel],
        guard_field: str,
        assigned_before: datetime,
    ) -> List[ReviewAssignment]:
        """Pending assignments on open PRs at one of levels, with guard_field NULL
        and assigned_at <= assigned_before, oldest first."""

    # Notifications

    @abstractmethod
    def add_notification(self, record: NotificationRecord) -> NotificationRecord: ...

    @abstractmethod
    def list_notifications(
        self,
        assignment_id: int | None = None,
        message_type: MessageType | None = None,
    ) -> List[NotificationRecord]: ...

    @abstractmethod
    def find_sent_notification(self, assignment_id: int, message_type: MessageType) -> NotificationRecord | None:
        """The first successful notification of that type for the assignment, if any."""

    # Processed events ledger

    @abstractmethod
    def is_event_processed(self, delivery_id: str) -> bool: ...

    @abstractmethod
    def mark_event_processed(self, delivery_id: str, event_type: str, outcome: str = "processed") -> bool:
        """Record a delivery id; False if it was already recorded."""

    def close(self) -> None:
        """Release any resources held by the store. Default is a no-op."""
