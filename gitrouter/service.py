"""GitRouterService: the engine instances wired together behind four operations.

Constructed explicitly (no module-level singletons) and shared by the webhook
server, the escalation thread and the CLI.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from typing import Any, Callable, Mapping

from gitrouter.adapters.base import MessagingProvider, VCSProvider
from gitrouter.adapters.github import GitHubAdapter
from gitrouter.adapters.slack import SlackAdapter
from gitrouter.assignments import AssignmentManager
from gitrouter.config import AppConfig, EscalationConfig, NotificationConfig, RoutingConfig
from gitrouter.escalation.scheduler import EscalationScheduler, SweepStats
from gitrouter.models.events import IngestResult
from gitrouter.models.rules import RoutingContext, RoutingResult
from gitrouter.notifications.dispatcher import NotificationDispatcher, RetryPolicy
from gitrouter.routing.cache import RuleCache
from gitrouter.routing.engine import RoutingEngine
from gitrouter.store.base import BaseStore
from gitrouter.store.sql_store import SQLStore
from gitrouter.webhook.gate import IngestionGate
from gitrouter.webhook.handlers import EventPipeline

LOG = logging.getLogger("gitrouter.service")

NOTIFY_WORKERS = 4


class GitRouterService:
    """Ingest webhooks, route PRs, invalidate cached rules, run escalation sweeps."""

    def __init__(
        self,
        store: BaseStore,
        vcs: VCSProvider | None = None,
        messaging: MessagingProvider | None = None,
        webhook_secret: str = "",
        routing: RoutingConfig | None = None,
        escalation: EscalationConfig | None = None,
        notifications: NotificationConfig | None = None,
        retry: RetryPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        routing = routing or RoutingConfig()
        escalation = escalation or EscalationConfig()
        notifications = notifications or NotificationConfig()
        clock = clock or (lambda: datetime.now(UTC))

        self.store = store
        self._executor = (
            ThreadPoolExecutor(max_workers=NOTIFY_WORKERS, thread_name_prefix="gitrouter-notify")
            if notifications.async_new_pr
            else None
        )
        self.cache = RuleCache(store.list_rules, ttl_seconds=routing.rule_cache_ttl_seconds)
        self.engine = RoutingEngine(store, self.cache)
        self.dispatcher = NotificationDispatcher(
            store,
            messaging,
            retry=retry or RetryPolicy.from_config(notifications),
            clock=clock,
        )
        self.assignments = AssignmentManager(store, self.dispatcher, vcs=vcs, executor=self._executor, clock=clock)
        self.gate = IngestionGate(store, webhook_secret)
        self.pipeline = EventPipeline(store, self.engine, self.assignments, vcs=vcs, dispatcher=self.dispatcher)
        self.scheduler = EscalationScheduler(store, self.dispatcher, escalation, clock=clock, vcs=vcs)

    @classmethod
    def from_config(cls, config: AppConfig) -> "GitRouterService":
        """Build the service with SQLStore and the GitHub/Slack adapters from config."""
        store = SQLStore(config.database.url, echo=config.database.echo)

        vcs = None
        github_token = config.github_token_resolved
        if github_token:
            vcs = GitHubAdapter(token=github_token, api_url=config.github.api_url)
        else:
            LOG.warning("GITHUB_TOKEN not set; reviewers will not be requested on GitHub")

        messaging = None
        slack_token = config.slack_token_resolved
        if slack_token:
            messaging = SlackAdapter(token=slack_token, api_url=config.slack.api_url)
        else:
            LOG.warning("SLACK_BOT_TOKEN not set; notifications will be recorded as failed")

        secret = config.webhook_secret_resolved
        if not secret:
            LOG.warning("GITHUB_WEBHOOK_SECRET not set; every webhook delivery will be rejected")

        return cls(
            store,
            vcs=vcs,
            messaging=messaging,
            webhook_secret=secret,
            routing=config.routing,
            escalation=config.escalation,
            notifications=config.notifications,
        )

    def ingest(self, raw_payload: bytes, headers: Mapping[str, Any]) -> IngestResult:
        """Gate one delivery and, if accepted, run it through the pipeline.

        Pipeline errors propagate to the caller (the HTTP layer answers 500).
        """
        result = self.gate.accept(raw_payload, headers)
        if result.status == "accepted" and result.event is not None:
            outcome = self.pipeline.handle(result.event)
            LOG.debug("Delivery %s: %s", result.delivery_id, outcome.outcome)
        return result

    def route(self, org_id: int, context: RoutingContext) -> RoutingResult:
        return self.engine.route(org_id, context)

    def invalidate_rule_cache(self, org_id: int | None = None) -> None:
        """Drop cached rules for one organization, or all of them."""
        if org_id is None:
            self.cache.invalidate_all()
        else:
            self.cache.invalidate(org_id)

    def run_escalation_sweep(self) -> SweepStats:
        return self.scheduler.sweep()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        self.store.close()
