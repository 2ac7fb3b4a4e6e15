"""Routing engine: first matching rule wins, with default-reviewer fallback.

Routing order:
1. Active rules for the organization (cached), in (priority, created_at, id) order
2. Rules scoped to another repository are skipped
3. The first rule whose conditions all match selects its reviewers
4. No rule matches: repository default reviewer, then organization default
5. The PR author is never returned as a reviewer
"""

import logging
from datetime import datetime
from typing import List, Sequence

from gitrouter.models.records import Reviewer
from gitrouter.models.rules import RoutingContext, RoutingResult
from gitrouter.routing.cache import RuleCache
from gitrouter.routing.matcher import evaluate_conditions
from gitrouter.store.base import BaseStore

LOG = logging.getLogger("gitrouter.routing.engine")


class RoutingEngine:
    """Selects reviewers for a pull request from organization rules."""

    def __init__(self, store: BaseStore, cache: RuleCache) -> None:
        self._store = store
        self._cache = cache

    def route(self, org_id: int, context: RoutingContext, now: datetime | None = None) -> RoutingResult:
        """Route one PR. Store errors propagate; 'nobody to assign' is a result, not an error."""
        rules = self._cache.get_rules(org_id)
        author_reviewer = self._store.find_reviewer_by_username(org_id, context.author)
        author_id = author_reviewer.id if author_reviewer else None

        evaluated = 0
        for rule in rules:
            if not rule.applies_to(context.repository):
                continue
            evaluated += 1
            match = evaluate_conditions(rule.conditions, context, now)
            if not match.matched:
                continue
            reviewers = self._resolve_reviewers(rule.reviewer_ids, context.author, author_id)
            if not reviewers:
                LOG.warning(
                    "Rule %r matched %s#%s but left no eligible reviewers",
                    rule.name,
                    context.repository,
                    context.number,
                )
            else:
                LOG.info(
                    "Rule %r matched %s#%s: %s",
                    rule.name,
                    context.repository,
                    context.number,
                    ", ".join(r.github_username for r in reviewers),
                )
            return RoutingResult(
                matched=True,
                rule=rule,
                reviewers=reviewers,
                reason=f"Matched rule {rule.name!r}",
                evaluated_rules=evaluated,
            )

        return self._fallback(org_id, context, author_id, evaluated)

    def _fallback(
        self,
        org_id: int,
        context: RoutingContext,
        author_id: int | None,
        evaluated: int,
    ) -> RoutingResult:
        candidates = []
        repository = self._store.get_repository(context.repository)
        if repository and repository.default_reviewer_id is not None:
            candidates.append(("repository default reviewer", repository.default_reviewer_id))
        organization = self._store.get_organization(org_id)
        if organization and organization.default_reviewer_id is not None:
            candidates.append(("organization default reviewer", organization.default_reviewer_id))

        for source, reviewer_id in candidates:
            reviewers = self._resolve_reviewers([reviewer_id], context.author, author_id)
            if reviewers:
                LOG.info(
                    "No rule matched %s#%s, using %s %s",
                    context.repository,
                    context.number,
                    source,
                    reviewers[0].github_username,
                )
                return RoutingResult(
                    matched=False,
                    reviewers=reviewers,
                    reason=f"Fallback to {source}",
                    fallback_used=True,
                    evaluated_rules=evaluated,
                )

        LOG.warning("No rule matched %s#%s and no default reviewer is available", context.repository, context.number)
        return RoutingResult(
            matched=False,
            reviewers=[],
            reason="No matching rule and no default reviewer",
            fallback_used=True,
            evaluated_rules=evaluated,
        )

    def _resolve_reviewers(
        self,
        reviewer_ids: Sequence[int],
        author: str,
        author_id: int | None,
    ) -> List[Reviewer]:
        """Load reviewers in rule order, dropping inactive ones, duplicates and the author."""
        author_lower = author.lower()
        seen = set()
        result = []
        for reviewer in self._store.get_reviewers(list(reviewer_ids)):
            if reviewer.id in seen or not reviewer.is_active:
                continue
            if reviewer.id == author_id or reviewer.github_username.lower() == author_lower:
                continue
            seen.add(reviewer.id)
            result.append(reviewer)
        return result
