"""
GitRouter daemon: webhook server and escalation scheduler.

Listens for GitHub webhooks and routes new pull requests to reviewers; a
daemon thread sweeps pending assignments every escalation.interval_seconds
and sends reminders and escalations.
"""

import logging

from gitrouter.config import AppConfig
from gitrouter.escalation.scheduler import start_scheduler_thread
from gitrouter.logging import GitRouterLogging
from gitrouter.service import GitRouterService
from gitrouter.webhook.server import run_webhook_server


def run_daemon(config: AppConfig) -> None:
    """Run the webhook server and the escalation scheduler until interrupted."""
    GitRouterLogging(config.logging).setup()
    log = logging.getLogger("gitrouter.daemon")

    service = GitRouterService.from_config(config)
    log.info(
        "GitRouter daemon started | webhook=%s | escalation=%s (every %ss, %sh/%sh)",
        config.webhook.enabled,
        config.escalation.enabled,
        config.escalation.interval_seconds,
        config.escalation.reminder_hours,
        config.escalation.escalation_hours,
    )
    try:
        scheduler_thread = None
        if config.escalation.enabled:
            scheduler_thread = start_scheduler_thread(service.scheduler, config.escalation.interval_seconds)
        if config.webhook.enabled:
            run_webhook_server(config, service)
        elif scheduler_thread is not None:
            log.warning("Webhook disabled in config; running escalation sweeps only.")
            scheduler_thread.join()
        else:
            log.warning("Webhook and escalation both disabled; nothing to do.")
    finally:
        service.close()
