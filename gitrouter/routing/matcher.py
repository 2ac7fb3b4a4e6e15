"""Rule matcher: all conditions must match (AND), stopping at the first miss."""

from datetime import datetime
from typing import Sequence

from gitrouter.models.rules import MatchResult, RoutingCondition, RoutingContext
from gitrouter.routing.conditions import evaluate_condition


def evaluate_conditions(
    conditions: Sequence[RoutingCondition],
    context: RoutingContext,
    now: datetime | None = None,
) -> MatchResult:
    """Evaluate conditions in stored order.

    Results hold every condition evaluated up to and including the first one
    that failed. A rule with no conditions matches.
    """
    results = []
    for condition in conditions:
        result = evaluate_condition(condition, context, now)
        results.append(result)
        if not result.matched:
            return MatchResult(matched=False, results=results)
    return MatchResult(matched=True, results=results)
