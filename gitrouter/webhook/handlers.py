"""Handle accepted webhook events.

- pull_request: upsert the stored PR; opened/reopened/ready_for_review also route
  and assign; closing an open PR posts a closed or merged notice to the team channel
- pull_request_review: apply the review to the reviewer's assignment

Events for repositories not registered with an organization are skipped.
"""

import logging
from typing import List

from pydantic import BaseModel, Field

from gitrouter.adapters.base import VCSError, VCSProvider
from gitrouter.assignments import AssignmentManager
from gitrouter.models.events import InboundEvent, PullRequestEvent, ReviewSubmittedEvent
from gitrouter.models.records import PullRequestRecord
from gitrouter.models.rules import RoutingContext, RoutingResult
from gitrouter.notifications.dispatcher import NotificationDispatcher
from gitrouter.routing.engine import RoutingEngine
from gitrouter.store.base import BaseStore

LOG = logging.getLogger("gitrouter.webhook.handlers")


class PipelineResult(BaseModel):
    """What handling one event did."""

    outcome: str
    pull_request_id: int | None = None
    routing: RoutingResult | None = None
    assignment_ids: List[int] = Field(default_factory=list)


class EventPipeline:
    """Runs accepted events through routing and assignment."""

    def __init__(
        self,
        store: BaseStore,
        engine: RoutingEngine,
        assignments: AssignmentManager,
        vcs: VCSProvider | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ) -> None:
        self._store = store
        self._engine = engine
        self._assignments = assignments
        self._vcs = vcs
        self._dispatcher = dispatcher

    def handle(self, event: InboundEvent) -> PipelineResult:
        repository = self._store.get_repository(event.repository)
        if repository is None:
            LOG.info("Repository %s is not registered, skipping delivery %s", event.repository, event.delivery_id)
            return PipelineResult(outcome="unknown_repository")
        if isinstance(event, PullRequestEvent):
            return self._handle_pull_request(repository.organization_id, event)
        return self._handle_review(repository.organization_id, event)

    def _with_changed_files(self, event: PullRequestEvent) -> PullRequestEvent:
        if event.changed_files or self._vcs is None:
            return event
        try:
            files = self._vcs.list_changed_files(event.repository, event.number)
        except VCSError as e:
            LOG.warning("Could not list files of %s#%s, routing without them: %s", event.repository, event.number, e)
            return event
        return event.model_copy(update={"changed_files": files})

    def _handle_pull_request(self, org_id: int, event: PullRequestEvent) -> PipelineResult:
        if event.triggers_routing:
            event = self._with_changed_files(event)
        previous = self._store.find_pull_request(org_id, event.repository, event.number)
        pull_request = self._store.upsert_pull_request(org_id, event)
        if not event.triggers_routing:
            LOG.info("PR %s#%s %s, status %s", event.repository, event.number, event.action, pull_request.status)
            if previous is not None and previous.is_open and not pull_request.is_open:
                self._announce(pull_request)
            return PipelineResult(outcome="updated", pull_request_id=pull_request.id)

        routing = self._engine.route(org_id, RoutingContext.from_event(event))
        assignment_ids = self._assignments.assign(pull_request, routing)
        return PipelineResult(
            outcome="routed",
            pull_request_id=pull_request.id,
            routing=routing,
            assignment_ids=assignment_ids,
        )

    def _announce(self, pull_request: PullRequestRecord) -> None:
        if self._dispatcher is None:
            return
        try:
            self._dispatcher.announce_status(pull_request)
        except Exception as e:
            LOG.exception("Status notice for %s#%s failed: %s", pull_request.repository, pull_request.number, e)

    def _handle_review(self, org_id: int, event: ReviewSubmittedEvent) -> PipelineResult:
        assignment = self._assignments.record_review(org_id, event)
        if assignment is None:
            return PipelineResult(outcome="review_unmatched")
        return PipelineResult(
            outcome="review_recorded",
            pull_request_id=assignment.pull_request_id,
            assignment_ids=[assignment.id],
        )
