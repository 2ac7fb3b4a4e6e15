"""SQLAlchemy tables backing SQLStore."""

from datetime import UTC, datetime
from typing import Any, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes, stored naive on backends (SQLite) that drop tzinfo."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    pass


class OrganizationRow(Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    default_reviewer_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    team_lead_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    escalation_channel_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    team_channel_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    slack_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    notification_destination: Mapped[str] = mapped_column(String(16), default="channel")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class RepositoryRow(Base):
    __tablename__ = "repositories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False, index=True)
    # Lowercased owner/repo
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    default_reviewer_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class ReviewerRow(Base):
    __tablename__ = "reviewers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    github_username: Mapped[str] = mapped_column(String(255), nullable=False)
    slack_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_team_lead: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (Index("idx_reviewer_org_username", "organization_id", "github_username"),)


class RoutingRuleRow(Base):
    __tablename__ = "routing_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    conditions: Mapped[List[dict]] = mapped_column(JSON, default=list)
    reviewer_ids: Mapped[List[int]] = mapped_column(JSON, default=list)
    repository: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class PullRequestRow(Base):
    __tablename__ = "pull_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    repository: Mapped[str] = mapped_column(String(255), nullable=False)
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    provider_id: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(Text, default="")
    author: Mapped[str] = mapped_column(String(255), default="")
    html_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="open")
    files: Mapped[List[str]] = mapped_column(JSON, default=list)
    additions: Mapped[int] = mapped_column(Integer, default=0)
    deletions: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("organization_id", "provider_id", name="uq_pull_request_provider"),
        Index("idx_pull_request_repo_number", "repository", "number"),
    )


class ReviewAssignmentRow(Base):
    __tablename__ = "review_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pull_request_id: Mapped[int] = mapped_column(ForeignKey("pull_requests.id"), nullable=False)
    reviewer_id: Mapped[int] = mapped_column(ForeignKey("reviewers.id"), nullable=False)
    routing_rule_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="pending")
    escalation_level: Mapped[str] = mapped_column(String(16), default="none")
    assigned_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    first_notified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    reminded_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    escalated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    # Sweep lease: one worker at a time delivers a reminder or escalation
    claim_token: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    claimed_until: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("pull_request_id", "reviewer_id", name="uq_assignment_pr_reviewer"),
        Index("idx_assignment_sweep", "status", "escalation_level", "assigned_at"),
    )


class NotificationRow(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    assignment_id: Mapped[Optional[int]] = mapped_column(ForeignKey("review_assignments.id"), nullable=True)
    channel: Mapped[str] = mapped_column(String(32), default="slack")
    recipient: Mapped[str] = mapped_column(String(255), default="")
    message_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    external_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attempt: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    __table_args__ = (Index("idx_notification_assignment_type", "assignment_id", "message_type", "status"),)


class ProcessedEventRow(Base):
    __tablename__ = "processed_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    delivery_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(String(64), default="")
    outcome: Mapped[str] = mapped_column(String(16), default="processed")
    processed_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
