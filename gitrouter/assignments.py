"""Assignment manager: creates review assignments and tracks submitted reviews.

New assignments are requested on the VCS provider and announced to each
reviewer. Provider and notification failures are logged; they never undo an
assignment.
"""

import logging
from concurrent.futures import Executor
from datetime import UTC, datetime
from typing import Callable, List, Tuple

from gitrouter.adapters.base import VCSProvider
from gitrouter.models.events import ReviewSubmittedEvent
from gitrouter.models.records import AssignmentStatus, PullRequestRecord, ReviewAssignment, Reviewer
from gitrouter.models.rules import RoutingResult
from gitrouter.notifications.dispatcher import NotificationDispatcher
from gitrouter.store.base import BaseStore

LOG = logging.getLogger("gitrouter.assignments")

REVIEW_STATES = ("approved", "changes_requested", "commented", "dismissed")


def map_review_state(state: str | None) -> AssignmentStatus:
    """Map a GitHub review state to an assignment status; unknown states count as commented."""
    normalized = (state or "").strip().lower()
    return normalized if normalized in REVIEW_STATES else "commented"


class AssignmentManager:
    """Owns ReviewAssignment lifecycle outside the escalation sweep."""

    def __init__(
        self,
        store: BaseStore,
        dispatcher: NotificationDispatcher,
        vcs: VCSProvider | None = None,
        executor: Executor | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._vcs = vcs
        self._executor = executor
        self._clock = clock or (lambda: datetime.now(UTC))

    def assign(self, pull_request: PullRequestRecord, result: RoutingResult) -> List[int]:
        """Create pending assignments for the routed reviewers; returns ids of the new ones."""
        now = self._clock()
        created: List[Tuple[ReviewAssignment, Reviewer]] = []
        for reviewer in result.reviewers:
            assignment = self._store.create_assignment(pull_request.id, reviewer.id, result.rule_id, now)
            if assignment is None:
                LOG.debug(
                    "%s already assigned to %s#%s",
                    reviewer.github_username,
                    pull_request.repository,
                    pull_request.number,
                )
                continue
            created.append((assignment, reviewer))

        if not created:
            return []

        usernames = [reviewer.github_username for _, reviewer in created]
        LOG.info("Assigned %s#%s to %s", pull_request.repository, pull_request.number, ", ".join(usernames))
        if self._vcs is not None:
            try:
                self._vcs.request_reviewers(pull_request.repository, pull_request.number, usernames)
            except Exception as e:
                LOG.warning(
                    "Failed to request reviewers on %s#%s: %s",
                    pull_request.repository,
                    pull_request.number,
                    e,
                )

        for assignment, reviewer in created:
            if self._executor is not None:
                self._executor.submit(self._notify_new, assignment, pull_request, reviewer)
            else:
                self._notify_new(assignment, pull_request, reviewer)
        return [assignment.id for assignment, _ in created]

    def _notify_new(self, assignment: ReviewAssignment, pull_request: PullRequestRecord, reviewer: Reviewer) -> None:
        try:
            self._dispatcher.deliver("new_pr", assignment, pull_request, reviewer)
        except Exception as e:
            LOG.exception("new_pr notification for assignment %s failed: %s", assignment.id, e)

    def record_review(self, org_id: int, event: ReviewSubmittedEvent) -> ReviewAssignment | None:
        """Apply a submitted review to the reviewer's assignment; None if nothing matches."""
        pull_request = self._store.find_pull_request(org_id, event.repository, event.number)
        if pull_request is None:
            LOG.debug("Review on unknown PR %s#%s", event.repository, event.number)
            return None
        reviewer = self._store.find_reviewer_by_username(org_id, event.reviewer)
        if reviewer is None:
            LOG.debug("Review by unknown reviewer %s on %s#%s", event.reviewer, event.repository, event.number)
            return None
        assignment = self._store.find_assignment(pull_request.id, reviewer.id)
        if assignment is None:
            LOG.debug("%s reviewed %s#%s without an assignment", event.reviewer, event.repository, event.number)
            return None

        status = map_review_state(event.state)
        completed_at = self._clock() if status == "approved" else None
        updated = self._store.update_assignment_status(assignment.id, status, completed_at)
        LOG.info("%s %s %s#%s", event.reviewer, status, event.repository, event.number)
        return updated
