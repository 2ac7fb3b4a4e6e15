"""Notification dispatcher: builds the message, picks the target, records every attempt.

send() makes exactly one provider call and appends one NotificationRecord.
deliver() wraps send() in bounded retries with exponential backoff. The
assignment's guard timestamp (first_notified_at, reminded_at, escalated_at)
is stamped only after a successful send, so a failed delivery is picked up
again by the next escalation sweep. Organizations with Slack notifications
turned off get a "skipped" record and a stamp instead of a provider call.
"""

import logging
import time
from datetime import UTC, datetime
from typing import Callable, Tuple

from gitrouter.adapters.base import MessagingError, MessagingProvider, SentMessage
from gitrouter.config import NotificationConfig
from gitrouter.models.records import (
    GUARD_FIELDS,
    MessageType,
    NotificationRecord,
    Organization,
    PullRequestRecord,
    ReviewAssignment,
    Reviewer,
)
from gitrouter.notifications.messages import (
    Blocks,
    escalation_message,
    new_pr_message,
    pr_closed_message,
    pr_merged_message,
    reminder_message,
)
from gitrouter.store.base import BaseStore

LOG = logging.getLogger("gitrouter.notifications.dispatcher")


class NotificationError(Exception):
    """Delivery attempt failed; record is the failed NotificationRecord."""

    def __init__(self, message: str, record: NotificationRecord | None = None) -> None:
        super().__init__(message)
        self.record = record


class NotificationTargetError(NotificationError):
    """Nobody to deliver to (no Slack id, no channel). Retrying cannot help."""

    pass


class RetryPolicy:
    """Bounded retries: delay before retry n (0-based) is base_delay * 2**n, capped at max_delay."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.sleep = sleep

    @classmethod
    def from_config(cls, config: NotificationConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_seconds,
            max_delay=config.max_delay_seconds,
        )

    def delay(self, retry: int) -> float:
        return min(self.base_delay * (2**retry), self.max_delay)


def hours_pending(assignment: ReviewAssignment, now: datetime) -> int:
    return max(0, int((now - assignment.assigned_at).total_seconds() // 3600))


class NotificationDispatcher:
    """Sends review notifications through the messaging provider."""

    def __init__(
        self,
        store: BaseStore,
        messaging: MessagingProvider | None,
        retry: RetryPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._messaging = messaging
        self._retry = retry or RetryPolicy()
        self._clock = clock or (lambda: datetime.now(UTC))

    def send(
        self,
        message_type: MessageType,
        assignment: ReviewAssignment,
        pull_request: PullRequestRecord,
        reviewer: Reviewer,
        team_lead: Reviewer | None = None,
        attempt: int = 1,
    ) -> NotificationRecord:
        """Single delivery attempt. Raises NotificationTargetError or NotificationError on failure."""
        guard_field = GUARD_FIELDS[message_type]
        now = self._clock()

        existing = self._store.find_sent_notification(assignment.id, message_type)
        if existing is not None:
            LOG.debug("%s for assignment %s already sent, not resending", message_type, assignment.id)
            self._store.stamp_assignment(assignment.id, guard_field, existing.created_at or now)
            return existing

        organization = self._store.get_organization(pull_request.organization_id)
        if organization is not None and not organization.slack_notifications:
            record = self._record(
                message_type, assignment, pull_request, "", "skipped", attempt, error="notifications disabled"
            )
            self._store.stamp_assignment(assignment.id, guard_field, now)
            LOG.info("Notifications disabled for organization %s, skipped %s", organization.id, message_type)
            return record

        target = self._resolve_target(message_type, organization, reviewer, team_lead)
        if target is None or self._messaging is None:
            error = "no messaging provider configured" if self._messaging is None else "no delivery target"
            record = self._record(message_type, assignment, pull_request, "", "failed", attempt, error=error)
            raise NotificationTargetError(f"{message_type} for assignment {assignment.id}: {error}", record)

        kind, recipient = target
        text, blocks = self._build(message_type, assignment, pull_request, reviewer, team_lead, now, kind)
        try:
            sent = self._post(kind, recipient, text, blocks)
        except MessagingError as e:
            record = self._record(message_type, assignment, pull_request, recipient, "failed", attempt, error=str(e))
            raise NotificationError(f"{message_type} for assignment {assignment.id} failed: {e}", record) from e

        record = self._record(
            message_type,
            assignment,
            pull_request,
            recipient,
            "sent",
            attempt,
            external_id=sent.ts,
        )
        self._store.stamp_assignment(assignment.id, guard_field, now)
        LOG.info("Sent %s for %s#%s to %s", message_type, pull_request.repository, pull_request.number, recipient)
        return record

    def deliver(
        self,
        message_type: MessageType,
        assignment: ReviewAssignment,
        pull_request: PullRequestRecord,
        reviewer: Reviewer,
        team_lead: Reviewer | None = None,
    ) -> NotificationRecord | None:
        """send() with retries; returns the sent record or the last failed one."""
        last: NotificationRecord | None = None
        for attempt in range(1, self._retry.max_attempts + 1):
            try:
                return self.send(message_type, assignment, pull_request, reviewer, team_lead, attempt=attempt)
            except NotificationTargetError as e:
                LOG.warning("Cannot deliver %s: %s", message_type, e)
                return e.record
            except NotificationError as e:
                last = e.record
                if attempt < self._retry.max_attempts:
                    delay = self._retry.delay(attempt - 1)
                    LOG.info("%s (attempt %d/%d), retrying in %.1fs", e, attempt, self._retry.max_attempts, delay)
                    self._retry.sleep(delay)
        LOG.warning(
            "Giving up on %s for assignment %s after %d attempts",
            message_type,
            assignment.id,
            self._retry.max_attempts,
        )
        return last

    def announce_status(self, pull_request: PullRequestRecord) -> NotificationRecord | None:
        """Post a closed/merged notice to the organization's team channel, with retries.

        Returns None when there is nothing to post: notifications disabled,
        no team channel, or no messaging provider.
        """
        if pull_request.status not in ("closed", "merged") or self._messaging is None:
            return None
        organization = self._store.get_organization(pull_request.organization_id)
        if organization is None or not organization.slack_notifications or not organization.team_channel_id:
            return None

        message_type: MessageType = "pr_merged" if pull_request.status == "merged" else "pr_closed"
        if message_type == "pr_merged":
            text, blocks = pr_merged_message(pull_request)
        else:
            text, blocks = pr_closed_message(pull_request)
        channel = organization.team_channel_id

        record: NotificationRecord | None = None
        for attempt in range(1, self._retry.max_attempts + 1):
            try:
                sent = self._post("channel", channel, text, blocks)
            except MessagingError as e:
                record = self._record(message_type, None, pull_request, channel, "failed", attempt, error=str(e))
                if attempt < self._retry.max_attempts:
                    self._retry.sleep(self._retry.delay(attempt - 1))
                continue
            LOG.info("Announced %s for %s#%s", message_type, pull_request.repository, pull_request.number)
            return self._record(message_type, None, pull_request, channel, "sent", attempt, external_id=sent.ts)
        LOG.warning("Giving up on %s for %s#%s", message_type, pull_request.repository, pull_request.number)
        return record

    def _post(self, kind: str, recipient: str, text: str, blocks: Blocks) -> SentMessage:
        if kind == "direct":
            return self._messaging.send_direct(recipient, text, blocks)
        return self._messaging.send_to_channel(recipient, text, blocks)

    def _resolve_target(
        self,
        message_type: MessageType,
        organization: Organization | None,
        reviewer: Reviewer,
        team_lead: Reviewer | None,
    ) -> Tuple[str, str] | None:
        reviewer_dm = ("direct", reviewer.slack_user_id) if reviewer.slack_user_id else None
        lead_dm = ("direct", team_lead.slack_user_id) if team_lead and team_lead.slack_user_id else None
        destination = organization.notification_destination if organization else "channel"

        if message_type == "reminder":
            return reviewer_dm
        if message_type == "new_pr":
            if destination == "channel" and organization and organization.team_channel_id:
                return "channel", organization.team_channel_id
            return reviewer_dm
        if destination == "dm":
            return lead_dm
        if organization and organization.escalation_channel_id:
            return "channel", organization.escalation_channel_id
        if organization and organization.team_channel_id:
            return "channel", organization.team_channel_id
        return lead_dm

    def _build(
        self,
        message_type: MessageType,
        assignment: ReviewAssignment,
        pull_request: PullRequestRecord,
        reviewer: Reviewer,
        team_lead: Reviewer | None,
        now: datetime,
        kind: str = "direct",
    ) -> Tuple[str, Blocks]:
        if message_type == "new_pr":
            return new_pr_message(pull_request, mention=reviewer if kind == "channel" else None)
        if message_type == "reminder":
            return reminder_message(pull_request, hours_pending(assignment, now))
        return escalation_message(pull_request, reviewer, hours_pending(assignment, now), team_lead)

    def _record(
        self,
        message_type: MessageType,
        assignment: ReviewAssignment | None,
        pull_request: PullRequestRecord,
        recipient: str,
        status: str,
        attempt: int,
        external_id: str | None = None,
        error: str | None = None,
    ) -> NotificationRecord:
        return self._store.add_notification(
            NotificationRecord(
                organization_id=pull_request.organization_id,
                assignment_id=assignment.id if assignment else None,
                recipient=recipient,
                message_type=message_type,
                status=status,
                external_id=external_id,
                error=error,
                attempt=attempt,
                created_at=self._clock(),
            )
        )
