"""Escalation scheduler: every interval, remind stale reviewers and escalate to the team lead.

Per assignment, the escalation level only moves forward:
none -> reminded (after reminder_hours) -> escalated (after escalation_hours).

Before each delivery the sweep takes a short lease on the row with a
conditional update, so two workers (threads or nodes) never send the same
reminder or escalation at once. The reminded_at / escalated_at timestamp is
stamped by the dispatcher only after a successful send; failed deliveries
release the lease and are retried on the next sweep.
"""

import logging
import threading
import time
from datetime import UTC, datetime, timedelta
from typing import Callable, Dict

from pydantic import BaseModel

from gitrouter.adapters.base import VCSError, VCSProvider
from gitrouter.config import EscalationConfig
from gitrouter.models.records import PullRequestRecord, ReviewAssignment, Reviewer
from gitrouter.notifications.dispatcher import NotificationDispatcher
from gitrouter.store.base import BaseStore

LOG = logging.getLogger("gitrouter.escalation.scheduler")


class SweepStats(BaseModel):
    """Counters for one sweep."""

    processed: int = 0
    reminders_sent: int = 0
    escalations_sent: int = 0
    escalations_without_lead: int = 0
    closed_upstream: int = 0
    errors: int = 0
    skipped: bool = False


class EscalationScheduler:
    """Runs escalation sweeps; one sweep at a time per process."""

    def __init__(
        self,
        store: BaseStore,
        dispatcher: NotificationDispatcher,
        config: EscalationConfig,
        clock: Callable[[], datetime] | None = None,
        vcs: VCSProvider | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._reminder_after = timedelta(hours=config.reminder_hours)
        self._escalation_after = timedelta(hours=config.escalation_hours)
        self._claim_ttl = timedelta(seconds=config.claim_ttl_seconds)
        self._vcs = vcs if config.verify_open else None
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.Lock()

    def sweep(self) -> SweepStats:
        """Process due reminders and escalations. Skips if a sweep is already running."""
        if not self._lock.acquire(blocking=False):
            LOG.info("Escalation sweep already running, skipping")
            return SweepStats(skipped=True)
        try:
            return self._sweep()
        finally:
            self._lock.release()

    def _sweep(self) -> SweepStats:
        now = self._clock()
        # Both sets are read up front so an assignment moves at most one level per sweep
        reminders = self._store.list_due_assignments(("none", "reminded"), "reminded_at", now - self._reminder_after)
        escalations = self._store.list_due_assignments(
            ("reminded", "escalated"),
            "escalated_at",
            now - self._escalation_after,
        )
        stats = SweepStats()
        checked: Dict[int, bool] = {}

        for assignment in reminders:
            stats.processed += 1
            try:
                outcome = self._remind(assignment, now, checked)
                if outcome == "sent":
                    stats.reminders_sent += 1
                elif outcome == "closed":
                    stats.closed_upstream += 1
            except Exception as e:
                stats.errors += 1
                LOG.exception("Reminder for assignment %s failed: %s", assignment.id, e)

        for assignment in escalations:
            stats.processed += 1
            try:
                outcome = self._escalate(assignment, now, checked)
                if outcome == "sent":
                    stats.escalations_sent += 1
                elif outcome == "no_lead":
                    stats.escalations_without_lead += 1
                elif outcome == "closed":
                    stats.closed_upstream += 1
            except Exception as e:
                stats.errors += 1
                LOG.exception("Escalation for assignment %s failed: %s", assignment.id, e)

        LOG.info(
            "Escalation sweep: processed=%d reminders=%d escalations=%d without_lead=%d closed=%d errors=%d",
            stats.processed,
            stats.reminders_sent,
            stats.escalations_sent,
            stats.escalations_without_lead,
            stats.closed_upstream,
            stats.errors,
        )
        return stats

    def _remind(self, assignment: ReviewAssignment, now: datetime, checked: Dict[int, bool]) -> str:
        pull_request = self._store.get_pull_request(assignment.pull_request_id)
        reviewer = self._store.get_reviewer(assignment.reviewer_id)
        if pull_request is None or reviewer is None:
            LOG.warning("Assignment %s refers to a missing PR or reviewer", assignment.id)
            return "skipped"
        if not self._still_open(pull_request, checked):
            return "closed"
        if assignment.escalation_level == "none":
            if not self._store.advance_escalation_level(assignment.id, "none", "reminded"):
                LOG.debug("Assignment %s changed since the sweep started, skipping reminder", assignment.id)
                return "skipped"

        token = self._store.claim_assignment(assignment.id, "reminded_at", now, now + self._claim_ttl)
        if token is None:
            LOG.debug("Assignment %s is being reminded by another worker", assignment.id)
            return "skipped"
        try:
            record = self._dispatcher.deliver("reminder", assignment, pull_request, reviewer)
        finally:
            self._store.release_assignment(assignment.id, token)
        return record.status if record is not None else "failed"

    def _escalate(self, assignment: ReviewAssignment, now: datetime, checked: Dict[int, bool]) -> str:
        pull_request = self._store.get_pull_request(assignment.pull_request_id)
        reviewer = self._store.get_reviewer(assignment.reviewer_id)
        if pull_request is None or reviewer is None:
            LOG.warning("Assignment %s refers to a missing PR or reviewer", assignment.id)
            return "skipped"
        if not self._still_open(pull_request, checked):
            return "closed"
        if assignment.escalation_level == "reminded":
            if not self._store.advance_escalation_level(assignment.id, "reminded", "escalated"):
                LOG.debug("Assignment %s changed since the sweep started, skipping escalation", assignment.id)
                return "skipped"

        token = self._store.claim_assignment(assignment.id, "escalated_at", now, now + self._claim_ttl)
        if token is None:
            LOG.debug("Assignment %s is being escalated by another worker", assignment.id)
            return "skipped"
        try:
            team_lead = self.find_team_lead(pull_request.organization_id)
            if team_lead is None:
                self._store.stamp_assignment(assignment.id, "escalated_at", now)
                LOG.warning(
                    "No team lead for organization %s; %s#%s escalated without notification",
                    pull_request.organization_id,
                    pull_request.repository,
                    pull_request.number,
                )
                return "no_lead"
            record = self._dispatcher.deliver("escalation", assignment, pull_request, reviewer, team_lead=team_lead)
        finally:
            self._store.release_assignment(assignment.id, token)
        return record.status if record is not None else "failed"

    def _still_open(self, pull_request: PullRequestRecord, checked: Dict[int, bool]) -> bool:
        """Confirm with the VCS provider that the PR is open; a lost close webhook is repaired here.

        Provider errors count as open so an outage never silences reminders.
        Results are cached per sweep.
        """
        if self._vcs is None:
            return True
        if pull_request.id in checked:
            return checked[pull_request.id]
        try:
            info = self._vcs.get_pull_request(pull_request.repository, pull_request.number)
        except VCSError as e:
            LOG.warning("Could not check %s#%s state: %s", pull_request.repository, pull_request.number, e)
            checked[pull_request.id] = True
            return True

        is_open = info.state == "open" and not info.merged
        if not is_open:
            status = "merged" if info.merged else "closed"
            self._store.set_pull_request_status(pull_request.id, status)
            LOG.info("%s#%s is %s upstream; no more reminders", pull_request.repository, pull_request.number, status)
        checked[pull_request.id] = is_open
        return is_open

    def find_team_lead(self, org_id: int) -> Reviewer | None:
        """Organization's configured lead, else the first active reviewer flagged as lead."""
        organization = self._store.get_organization(org_id)
        if organization and organization.team_lead_id is not None:
            lead = self._store.get_reviewer(organization.team_lead_id)
            if lead is not None and lead.is_active:
                return lead
        for reviewer in self._store.list_reviewers(org_id):
            if reviewer.is_team_lead and reviewer.is_active:
                return reviewer
        return None


def run_scheduler_loop(scheduler: EscalationScheduler, interval_seconds: int = 3600) -> None:
    """Loop: sweep, then sleep interval_seconds. Tick errors are logged, never fatal."""
    while True:
        try:
            scheduler.sweep()
        except Exception as e:
            LOG.exception("Escalation scheduler tick error: %s", e)
        time.sleep(interval_seconds)


def start_scheduler_thread(scheduler: EscalationScheduler, interval_seconds: int = 3600) -> threading.Thread:
    """Start the sweep loop in a daemon thread."""
    thread = threading.Thread(
        target=run_scheduler_loop,
        args=(scheduler,),
        kwargs={"interval_seconds": interval_seconds},
        name="gitrouter-escalation",
        daemon=True,
    )
    thread.start()
    LOG.info("Escalation scheduler started (every %ss)", interval_seconds)
    return thread
