"""Ingestion gate: authenticity, de-duplication and normalization of webhook deliveries.

Checks run in this order and stop at the first failure:
1. Required headers present (rejected: bad_headers)
2. Signature valid (rejected: bad_signature)
3. Delivery not seen before (duplicate)
4. Body is a JSON object (rejected: bad_payload, not recorded)
5. Supported event/action and not a draft (ignored, recorded)
6. Normalized, recorded as processed, then accepted

The gate never calls providers; enrichment (changed files) happens downstream.
"""

import json
import logging
from typing import Any, Dict, Mapping

from pydantic import ValidationError

from gitrouter.models.events import IngestResult, PullRequestEvent, ReviewSubmittedEvent
from gitrouter.store.base import BaseStore
from gitrouter.webhook.signature import (
    DELIVERY_HEADER,
    EVENT_HEADER,
    SIGNATURE_HEADER,
    get_header,
    missing_headers,
    verify_signature,
)

LOG = logging.getLogger("gitrouter.webhook.gate")

SUPPORTED_EVENTS = ("pull_request", "pull_request_review")
PULL_REQUEST_ACTIONS = ("opened", "reopened", "ready_for_review", "synchronize", "closed")
REVIEW_ACTIONS = ("submitted",)


def _labels(data: Dict[str, Any]) -> list:
    return [lb["name"] for lb in (data.get("labels") or []) if isinstance(lb, dict) and "name" in lb]


def normalize_pull_request(delivery_id: str, payload: Dict[str, Any]) -> PullRequestEvent:
    """Build a PullRequestEvent from a pull_request payload. Raises KeyError/ValidationError."""
    pr = payload["pull_request"]
    user = pr.get("user") or {}
    head = pr.get("head") or {}
    base = pr.get("base") or {}
    return PullRequestEvent(
        delivery_id=delivery_id,
        action=payload["action"],
        repository=payload["repository"]["full_name"],
        number=pr.get("number") or payload["number"],
        provider_id=pr["id"],
        author=user.get("login", ""),
        title=pr.get("title") or "",
        body=pr.get("body") or "",
        head_branch=head.get("ref", ""),
        base_branch=base.get("ref", ""),
        labels=_labels(pr),
        additions=pr.get("additions") or 0,
        deletions=pr.get("deletions") or 0,
        html_url=pr.get("html_url"),
        draft=bool(pr.get("draft")),
        merged=bool(pr.get("merged")),
    )


def normalize_review(delivery_id: str, payload: Dict[str, Any]) -> ReviewSubmittedEvent:
    """Build a ReviewSubmittedEvent from a pull_request_review payload."""
    review = payload["review"]
    pr = payload["pull_request"]
    user = review.get("user") or {}
    return ReviewSubmittedEvent(
        delivery_id=delivery_id,
        repository=payload["repository"]["full_name"],
        number=pr["number"],
        provider_id=pr.get("id"),
        reviewer=user.get("login", ""),
        state=(review.get("state") or "commented").lower(),
    )


def _ignore_reason(event_type: str, payload: Dict[str, Any]) -> str | None:
    if event_type not in SUPPORTED_EVENTS:
        return "unsupported_event"
    action = payload.get("action")
    if event_type == "pull_request":
        if action not in PULL_REQUEST_ACTIONS:
            return "unsupported_action"
        pr = payload.get("pull_request") or {}
        if pr.get("draft") and action != "closed":
            return "draft"
        return None
    if action not in REVIEW_ACTIONS:
        return "unsupported_action"
    return None


class IngestionGate:
    """Turns raw webhook deliveries into at most one accepted event each."""

    def __init__(self, store: BaseStore, secret: str) -> None:
        self._store = store
        self._secret = secret

    def accept(self, raw_payload: bytes, headers: Mapping[str, Any]) -> IngestResult:
        missing = missing_headers(headers)
        if missing:
            LOG.warning("Webhook rejected: missing headers %s", ", ".join(missing))
            return IngestResult.rejected("bad_headers", get_header(headers, DELIVERY_HEADER))

        delivery_id = get_header(headers, DELIVERY_HEADER) or ""
        event_type = get_header(headers, EVENT_HEADER) or ""
        if not verify_signature(self._secret, raw_payload, get_header(headers, SIGNATURE_HEADER)):
            LOG.warning("Webhook rejected: bad signature (delivery %s)", delivery_id)
            return IngestResult.rejected("bad_signature", delivery_id)

        if self._store.is_event_processed(delivery_id):
            LOG.info("Duplicate delivery %s, skipping", delivery_id)
            return IngestResult.duplicate(delivery_id)

        try:
            payload = json.loads(raw_payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            LOG.warning("Webhook rejected: invalid JSON (delivery %s)", delivery_id)
            return IngestResult.rejected("bad_payload", delivery_id)
        if not isinstance(payload, dict):
            LOG.warning("Webhook rejected: payload is not an object (delivery %s)", delivery_id)
            return IngestResult.rejected("bad_payload", delivery_id)

        reason = _ignore_reason(event_type, payload)
        if reason:
            LOG.debug("Ignoring %s/%s delivery %s: %s", event_type, payload.get("action"), delivery_id, reason)
            self._store.mark_event_processed(delivery_id, event_type, outcome="ignored")
            return IngestResult.ignored(delivery_id, event_type, reason)

        try:
            if event_type == "pull_request":
                event = normalize_pull_request(delivery_id, payload)
            else:
                event = normalize_review(delivery_id, payload)
        except (KeyError, TypeError, ValidationError) as e:
            LOG.warning("Webhook rejected: malformed %s payload (delivery %s): %s", event_type, delivery_id, e)
            return IngestResult.rejected("bad_payload", delivery_id)

        if not self._store.mark_event_processed(delivery_id, event_type, outcome="processed"):
            LOG.info("Delivery %s recorded concurrently, skipping", delivery_id)
            return IngestResult.duplicate(delivery_id)

        LOG.info("Accepted %s delivery %s for %s#%s", event_type, delivery_id, event.repository, event.number)
        return IngestResult.accepted(event, event_type)
