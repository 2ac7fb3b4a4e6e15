"""SQLStore: SQLAlchemy-backed persistence (SQLite by default, any SQLAlchemy URL works).

Each public method runs in its own short transaction. The unique
constraints on (pull_request, reviewer) and on processed delivery ids, and
the conditional UPDATEs used by the escalation sweep, are the correctness
backstops; callers never hold a session across provider calls.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, List, Sequence

from pydantic import TypeAdapter
from sqlalchemy import create_engine, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gitrouter.models.events import PullRequestEvent
from gitrouter.models.records import (
    ESCALATION_ORDER,
    GUARD_FIELDS,
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
from gitrouter.store.base import BaseStore, StoreError
from gitrouter.store.schema import (
    Base,
    NotificationRow,
    OrganizationRow,
    ProcessedEventRow,
    PullRequestRow,
    RepositoryRow,
    ReviewAssignmentRow,
    ReviewerRow,
    RoutingRuleRow,
    utcnow,
)

LOG = logging.getLogger("gitrouter.store.sql_store")

_conditions_adapter = TypeAdapter(List[RoutingCondition])

_ORGANIZATION_FIELDS = {
    "name",
    "default_reviewer_id",
    "team_lead_id",
    "escalation_channel_id",
    "team_channel_id",
    "slack_notifications",
    "notification_destination",
}
_RULE_FIELDS = {"name", "description", "priority", "is_active", "conditions", "reviewer_ids", "repository"}
_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def _dump_conditions(conditions: Sequence[Any]) -> List[dict]:
    """Validate conditions (models or dicts) and return them as plain dicts."""
    parsed = _conditions_adapter.validate_python(list(conditions))
    return [c.model_dump(mode="json") for c in parsed]


def _rule_from_row(row: RoutingRuleRow) -> RoutingRule:
    return RoutingRule(
        id=row.id,
        organization_id=row.organization_id,
        name=row.name,
        description=row.description,
        priority=row.priority,
        is_active=row.is_active,
        conditions=row.conditions or [],
        reviewer_ids=list(row.reviewer_ids or []),
        repository=row.repository,
        created_at=row.created_at,
    )


class SQLStore(BaseStore):
    """Stores everything in one relational database.

    Tables are created on startup (create_all); an in-memory SQLite URL
    shares a single connection so every session sees the same data.
    """

    def __init__(self, url: str = "sqlite:///gitrouter.db", echo: bool = False) -> None:
        kwargs: dict[str, Any] = {}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in _MEMORY_URLS:
                kwargs["poolclass"] = StaticPool
        self._engine = create_engine(url, echo=echo, **kwargs)
        Base.metadata.create_all(self._engine)
        self._sessions = sessionmaker(self._engine, expire_on_commit=False)
        LOG.debug("SQLStore ready at %s", self._engine.url.render_as_string(hide_password=True))

    # Organizations and repositories

    def create_organization(self, name: str, **fields: Any) -> Organization:
        unknown = set(fields) - _ORGANIZATION_FIELDS
        if unknown:
            raise StoreError(f"Unknown organization fields: {sorted(unknown)}")
        with self._sessions.begin() as session:
            row = OrganizationRow(name=name, **fields)
            session.add(row)
            session.flush()
            return Organization.model_validate(row)

    def get_organization(self, org_id: int) -> Organization | None:
        with self._sessions() as session:
            row = session.get(OrganizationRow, org_id)
            return Organization.model_validate(row) if row else None

    def update_organization(self, org_id: int, **fields: Any) -> Organization:
        unknown = set(fields) - _ORGANIZATION_FIELDS
        if unknown:
            raise StoreError(f"Unknown organization fields: {sorted(unknown)}")
        with self._sessions.begin() as session:
            row = session.get(OrganizationRow, org_id)
            if row is None:
                raise StoreError(f"Organization {org_id} not found")
            for key, value in fields.items():
                setattr(row, key, value)
            session.flush()
            return Organization.model_validate(row)

    def create_repository(
        self,
        org_id: int,
        full_name: str,
        default_reviewer_id: int | None = None,
    ) -> Repository:
        with self._sessions.begin() as session:
            row = RepositoryRow(
                organization_id=org_id,
                full_name=full_name.lower(),
                default_reviewer_id=default_reviewer_id,
            )
            session.add(row)
            session.flush()
            return Repository.model_validate(row)

    def get_repository(self, full_name: str) -> Repository | None:
        with self._sessions() as session:
            row = session.scalars(select(RepositoryRow).where(RepositoryRow.full_name == full_name.lower())).first()
            return Repository.model_validate(row) if row else None

    # Reviewers

    def create_reviewer(
        self,
        org_id: int,
        github_username: str,
        name: str = "",
        slack_user_id: str | None = None,
        is_team_lead: bool = False,
        is_active: bool = True,
    ) -> Reviewer:
        with self._sessions.begin() as session:
            row = ReviewerRow(
                organization_id=org_id,
                github_username=github_username,
                name=name or github_username,
                slack_user_id=slack_user_id,
                is_team_lead=is_team_lead,
                is_active=is_active,
            )
            session.add(row)
            session.flush()
            return Reviewer.model_validate(row)

    def get_reviewer(self, reviewer_id: int) -> Reviewer | None:
        with self._sessions() as session:
            row = session.get(ReviewerRow, reviewer_id)
            return Reviewer.model_validate(row) if row else None

    def get_reviewers(self, reviewer_ids: Sequence[int]) -> List[Reviewer]:
        if not reviewer_ids:
            return []
        with self._sessions() as session:
            rows = session.scalars(select(ReviewerRow).where(ReviewerRow.id.in_(list(reviewer_ids)))).all()
            by_id = {row.id: Reviewer.model_validate(row) for row in rows}
        return [by_id[i] for i in reviewer_ids if i in by_id]

    def find_reviewer_by_username(self, org_id: int, username: str) -> Reviewer | None:
        if not username:
            return None
        with self._sessions() as session:
            row = session.scalars(
                select(ReviewerRow)
                .where(
                    ReviewerRow.organization_id == org_id,
                    func.lower(ReviewerRow.github_username) == username.lower(),
                )
                .order_by(ReviewerRow.id)
            ).first()
            return Reviewer.model_validate(row) if row else None

    def list_reviewers(self, org_id: int) -> List[Reviewer]:
        with self._sessions() as session:
            rows = session.scalars(
                select(ReviewerRow).where(ReviewerRow.organization_id == org_id).order_by(ReviewerRow.id)
            ).all()
            return [Reviewer.model_validate(row) for row in rows]

    # Routing rules

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
    ) -> RoutingRule:
        with self._sessions.begin() as session:
            row = RoutingRuleRow(
                organization_id=org_id,
                name=name,
                description=description,
                priority=priority,
                is_active=is_active,
                conditions=_dump_conditions(conditions),
                reviewer_ids=[int(r) for r in reviewer_ids],
                repository=repository,
                created_at=utcnow(),
            )
            session.add(row)
            session.flush()
            return _rule_from_row(row)

    def update_rule(self, rule_id: int, **fields: Any) -> RoutingRule:
        unknown = set(fields) - _RULE_FIELDS
        if unknown:
            raise StoreError(f"Unknown rule fields: {sorted(unknown)}")
        if "conditions" in fields:
            fields["conditions"] = _dump_conditions(fields["conditions"])
        if "reviewer_ids" in fields:
            fields["reviewer_ids"] = [int(r) for r in fields["reviewer_ids"]]
        with self._sessions.begin() as session:
            row = session.get(RoutingRuleRow, rule_id)
            if row is None:
                raise StoreError(f"Rule {rule_id} not found")
            for key, value in fields.items():
                setattr(row, key, value)
            session.flush()
            return _rule_from_row(row)

    def delete_rule(self, rule_id: int) -> bool:
        with self._sessions.begin() as session:
            row = session.get(RoutingRuleRow, rule_id)
            if row is None:
                return False
            session.delete(row)
            return True

    def list_rules(self, org_id: int) -> List[RoutingRule]:
        with self._sessions() as session:
            rows = session.scalars(select(RoutingRuleRow).where(RoutingRuleRow.organization_id == org_id)).all()
            return [_rule_from_row(row) for row in rows]

    # Pull requests

    def upsert_pull_request(self, org_id: int, event: PullRequestEvent) -> PullRequestRecord:
        with self._sessions.begin() as session:
            row = session.scalars(
                select(PullRequestRow).where(
                    PullRequestRow.organization_id == org_id,
                    PullRequestRow.provider_id == event.provider_id,
                )
            ).first()
            if row is None:
                row = PullRequestRow(organization_id=org_id, provider_id=event.provider_id, files=[])
                session.add(row)
            row.repository = event.repository
            row.number = event.number
            row.title = event.title
            row.author = event.author
            row.html_url = event.html_url
            row.status = event.status
            row.additions = event.additions
            row.deletions = event.deletions
            if event.changed_files:
                row.files = list(event.changed_files)
            session.flush()
            return PullRequestRecord.model_validate(row)

    def get_pull_request(self, pull_request_id: int) -> PullRequestRecord | None:
        with self._sessions() as session:
            row = session.get(PullRequestRow, pull_request_id)
            return PullRequestRecord.model_validate(row) if row else None

    def find_pull_request(self, org_id: int, repository: str, number: int) -> PullRequestRecord | None:
        with self._sessions() as session:
            row = session.scalars(
                select(PullRequestRow)
                .where(
                    PullRequestRow.organization_id == org_id,
                    func.lower(PullRequestRow.repository) == repository.lower(),
                    PullRequestRow.number == number,
                )
                .order_by(PullRequestRow.id.desc())
            ).first()
            return PullRequestRecord.model_validate(row) if row else None

    def set_pull_request_status(self, pull_request_id: int, status: str) -> PullRequestRecord | None:
        with self._sessions.begin() as session:
            row = session.get(PullRequestRow, pull_request_id)
            if row is None:
                return None
            row.status = status
            session.flush()
            return PullRequestRecord.model_validate(row)

    # Assignments

    def create_assignment(
        self,
        pull_request_id: int,
        reviewer_id: int,
        routing_rule_id: int | None,
        assigned_at: datetime,
    ) -> ReviewAssignment | None:
        try:
            with self._sessions.begin() as session:
                row = ReviewAssignmentRow(
                    pull_request_id=pull_request_id,
                    reviewer_id=reviewer_id,
                    routing_rule_id=routing_rule_id,
                    status="pending",
                    escalation_level="none",
                    assigned_at=assigned_at,
                )
                session.add(row)
                session.flush()
                return ReviewAssignment.model_validate(row)
        except IntegrityError:
            LOG.debug("Assignment for PR %s / reviewer %s already exists", pull_request_id, reviewer_id)
            return None

    def get_assignment(self, assignment_id: int) -> ReviewAssignment | None:
        with self._sessions() as session:
            row = session.get(ReviewAssignmentRow, assignment_id)
            return ReviewAssignment.model_validate(row) if row else None

    def find_assignment(self, pull_request_id: int, reviewer_id: int) -> ReviewAssignment | None:
        with self._sessions() as session:
            row = session.scalars(
                select(ReviewAssignmentRow).where(
                    ReviewAssignmentRow.pull_request_id == pull_request_id,
                    ReviewAssignmentRow.reviewer_id == reviewer_id,
                )
            ).first()
            return ReviewAssignment.model_validate(row) if row else None

    def list_assignments(self, pull_request_id: int) -> List[ReviewAssignment]:
        with self._sessions() as session:
            rows = session.scalars(
                select(ReviewAssignmentRow)
                .where(ReviewAssignmentRow.pull_request_id == pull_request_id)
                .order_by(ReviewAssignmentRow.id)
            ).all()
            return [ReviewAssignment.model_validate(row) for row in rows]

    def update_assignment_status(
        self,
        assignment_id: int,
        status: str,
        completed_at: datetime | None,
    ) -> ReviewAssignment | None:
        with self._sessions.begin() as session:
            row = session.get(ReviewAssignmentRow, assignment_id)
            if row is None:
                return None
            row.status = status
            row.completed_at = completed_at
            session.flush()
            return ReviewAssignment.model_validate(row)

    def advance_escalation_level(
        self,
        assignment_id: int,
        from_level: EscalationLevel,
        to_level: EscalationLevel,
    ) -> bool:
        if ESCALATION_ORDER[to_level] <= ESCALATION_ORDER[from_level]:
            raise StoreError(f"Escalation level cannot move from {from_level} to {to_level}")
        with self._sessions.begin() as session:
            result = session.execute(
                update(ReviewAssignmentRow)
                .where(
                    ReviewAssignmentRow.id == assignment_id,
                    ReviewAssignmentRow.status == "pending",
                    ReviewAssignmentRow.escalation_level == from_level,
                )
                .values(escalation_level=to_level)
            )
            return result.rowcount == 1

    def stamp_assignment(self, assignment_id: int, field: str, when: datetime) -> bool:
        if field not in GUARD_FIELDS.values():
            raise StoreError(f"Not an assignment timestamp field: {field}")
        column = getattr(ReviewAssignmentRow, field)
        with self._sessions.begin() as session:
            result = session.execute(
                update(ReviewAssignmentRow)
                .where(ReviewAssignmentRow.id == assignment_id, column.is_(None))
                .values({field: when})
            )
            return result.rowcount == 1

    def claim_assignment(
        self,
        assignment_id: int,
        guard_field: str,
        now: datetime,
        lease_until: datetime,
    ) -> str | None:
        if guard_field not in GUARD_FIELDS.values():
            raise StoreError(f"Not an assignment timestamp field: {guard_field}")
        guard = getattr(ReviewAssignmentRow, guard_field)
        token = uuid.uuid4().hex
        with self._sessions.begin() as session:
            result = session.execute(
                update(ReviewAssignmentRow)
                .where(
                    ReviewAssignmentRow.id == assignment_id,
                    ReviewAssignmentRow.status == "pending",
                    guard.is_(None),
                    or_(ReviewAssignmentRow.claimed_until.is_(None), ReviewAssignmentRow.claimed_until <= now),
                )
                .values(claim_token=token, claimed_until=lease_until)
            )
            return token if result.rowcount == 1 else None

    def release_assignment(self, assignment_id: int, token: str) -> bool:
        with self._sessions.begin() as session:
            result = session.execute(
                update(ReviewAssignmentRow)
                .where(ReviewAssignmentRow.id == assignment_id, ReviewAssignmentRow.claim_token == token)
                .values(claim_token=None, claimed_until=None)
            )
            return result.rowcount == 1

    def list_due_assignments(
        self,
        levels: Sequence[EscalationLevel],
        guard_field: str,
        assigned_before: datetime,
    ) -> List[ReviewAssignment]:
        if guard_field not in GUARD_FIELDS.values():
            raise StoreError(f"Not an assignment timestamp field: {guard_field}")
        guard = getattr(ReviewAssignmentRow, guard_field)
        with self._sessions() as session:
            rows = session.scalars(
                select(ReviewAssignmentRow)
                .join(PullRequestRow, PullRequestRow.id == ReviewAssignmentRow.pull_request_id)
                .where(
                    ReviewAssignmentRow.status == "pending",
                    ReviewAssignmentRow.escalation_level.in_(list(levels)),
                    guard.is_(None),
                    ReviewAssignmentRow.assigned_at <= assigned_before,
                    PullRequestRow.status == "open",
                )
                .order_by(ReviewAssignmentRow.assigned_at, ReviewAssignmentRow.id)
            ).all()
            return [ReviewAssignment.model_validate(row) for row in rows]

    # Notifications

    def add_notification(self, record: NotificationRecord) -> NotificationRecord:
        with self._sessions.begin() as session:
            row = NotificationRow(
                **record.model_dump(exclude={"id", "created_at"}),
                created_at=record.created_at or utcnow(),
            )
            session.add(row)
            session.flush()
            return NotificationRecord.model_validate(row)

    def list_notifications(
        self,
        assignment_id: int | None = None,
        message_type: MessageType | None = None,
    ) -> List[NotificationRecord]:
        stmt = select(NotificationRow)
        if assignment_id is not None:
            stmt = stmt.where(NotificationRow.assignment_id == assignment_id)
        if message_type is not None:
            stmt = stmt.where(NotificationRow.message_type == message_type)
        with self._sessions() as session:
            rows = session.scalars(stmt.order_by(NotificationRow.id)).all()
            return [NotificationRecord.model_validate(row) for row in rows]

    def find_sent_notification(self, assignment_id: int, message_type: MessageType) -> NotificationRecord | None:
        with self._sessions() as session:
            row = session.scalars(
                select(NotificationRow)
                .where(
                    NotificationRow.assignment_id == assignment_id,
                    NotificationRow.message_type == message_type,
                    NotificationRow.status == "sent",
                )
                .order_by(NotificationRow.id)
            ).first()
            return NotificationRecord.model_validate(row) if row else None

    # Processed events ledger

    def is_event_processed(self, delivery_id: str) -> bool:
        with self._sessions() as session:
            stmt = select(ProcessedEventRow.id).where(ProcessedEventRow.delivery_id == delivery_id)
            return session.scalars(stmt).first() is not None

    def mark_event_processed(self, delivery_id: str, event_type: str, outcome: str = "processed") -> bool:
        try:
            with self._sessions.begin() as session:
                session.add(ProcessedEventRow(delivery_id=delivery_id, event_type=event_type, outcome=outcome))
            return True
        except IntegrityError:
            return False

    def close(self) -> None:
        self._engine.dispose()
