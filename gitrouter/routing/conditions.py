"""Condition evaluators: one pure function per condition type.

Evaluators never raise and never mutate the condition or the context. Regex
patterns are compiled per evaluation; a pattern that does not compile is
treated as non-matching.
"""

import logging
import re
from datetime import UTC, datetime
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from gitrouter.models.rules import (
    AuthorCondition,
    BranchCondition,
    ConditionResult,
    FilePatternCondition,
    LabelCondition,
    RoutingCondition,
    RoutingContext,
    TimeWindowCondition,
)

LOG = logging.getLogger("gitrouter.routing.conditions")

WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def _compile_patterns(patterns: List[str]) -> List[re.Pattern]:
    """Compile regex patterns, dropping invalid ones with a warning."""
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except (re.error, TypeError) as e:
            LOG.warning("Invalid regex pattern %r: %s", pattern, e)
    return compiled


def match_file_pattern(condition: FilePatternCondition, context: RoutingContext) -> ConditionResult:
    """Match changed files against patterns (any: one file, all: every file)."""
    files = context.changed_files
    if not files:
        return ConditionResult(type="file_pattern", matched=False, details="No files changed")
    regexes = _compile_patterns(condition.patterns)
    if not regexes:
        return ConditionResult(type="file_pattern", matched=False, details="No valid patterns")

    file_matches = [f for f in files if any(r.search(f) for r in regexes)]
    if condition.match_mode == "all":
        matched = len(file_matches) == len(files)
    else:
        matched = len(file_matches) > 0
    return ConditionResult(
        type="file_pattern",
        matched=matched,
        details=f"{len(file_matches)}/{len(files)} files matched",
    )


def match_author(condition: AuthorCondition, context: RoutingContext) -> ConditionResult:
    author = context.author.lower()
    in_list = author in {u.lower() for u in condition.usernames}
    matched = in_list if condition.mode == "include" else not in_list
    return ConditionResult(
        type="author",
        matched=matched,
        details=f"Author {context.author} {'in' if in_list else 'not in'} list, mode={condition.mode}",
    )


def match_branch(condition: BranchCondition, context: RoutingContext) -> ConditionResult:
    branch = context.head_branch if condition.branch_type == "head" else context.base_branch
    regexes = _compile_patterns(condition.patterns)
    if not regexes:
        return ConditionResult(type="branch", matched=False, details="No valid patterns")
    matched = any(r.search(branch) for r in regexes)
    return ConditionResult(
        type="branch",
        matched=matched,
        details=f'{condition.branch_type} branch "{branch}" {"matched" if matched else "did not match"}',
    )


def match_label(condition: LabelCondition, context: RoutingContext) -> ConditionResult:
    if not context.labels:
        return ConditionResult(type="label", matched=False, details="PR has no labels")
    pr_labels = {label.lower() for label in context.labels}
    required = [label.lower() for label in condition.labels]
    found = [label for label in required if label in pr_labels]
    if condition.match_mode == "all":
        matched = len(found) == len(required)
    else:
        matched = len(found) > 0
    return ConditionResult(
        type="label",
        matched=matched,
        details=f"{len(found)}/{len(required)} labels matched",
    )


def _resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        LOG.warning("Unknown timezone %r, using UTC", name)
        return ZoneInfo("UTC")


def hour_in_window(hour: int, start_hour: int, end_hour: int) -> bool:
    """True if hour is in [start_hour, end_hour), wrapping past midnight when start > end."""
    if start_hour <= end_hour:
        return start_hour <= hour < end_hour
    return hour >= start_hour or hour < end_hour


def match_time_window(
    condition: TimeWindowCondition,
    context: RoutingContext,
    now: datetime | None = None,
) -> ConditionResult:
    """Match if now (in the condition's timezone) is on a listed day and inside the hour range."""
    current = now or datetime.now(UTC)
    if current.tzinfo is None:
        current = current.replace(tzinfo=UTC)
    local = current.astimezone(_resolve_timezone(condition.timezone))
    weekday = WEEKDAYS[local.weekday()]
    day_matches = weekday in condition.days
    hour_matches = hour_in_window(local.hour, condition.start_hour, condition.end_hour)
    return ConditionResult(
        type="time_window",
        matched=day_matches and hour_matches,
        details=f"{weekday} {local.hour}:00 in {condition.timezone}, day={day_matches}, hour={hour_matches}",
    )


def evaluate_condition(
    condition: RoutingCondition,
    context: RoutingContext,
    now: datetime | None = None,
) -> ConditionResult:
    """Dispatch one condition to its evaluator."""
    if condition.type == "file_pattern":
        return match_file_pattern(condition, context)
    if condition.type == "author":
        return match_author(condition, context)
    if condition.type == "branch":
        return match_branch(condition, context)
    if condition.type == "label":
        return match_label(condition, context)
    if condition.type == "time_window":
        return match_time_window(condition, context, now)
    return ConditionResult(type=str(condition.type), matched=False, details="Unknown condition type")
