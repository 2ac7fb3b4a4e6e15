"""Tests for the rule matcher (AND semantics, short-circuit)."""

from unittest.mock import patch

from gitrouter.models.rules import (
    AuthorCondition,
    BranchCondition,
    ConditionResult,
    FilePatternCondition,
    LabelCondition,
    RoutingContext,
)
from gitrouter.routing.matcher import evaluate_conditions


def _ctx() -> RoutingContext:
    return RoutingContext(
        repository="acme/api",
        author="dave",
        base_branch="main",
        labels=["backend"],
        changed_files=["src/app.py"],
    )


def test_empty_conditions_match() -> None:
    result = evaluate_conditions([], _ctx())
    assert result.matched
    assert result.results == []


def test_all_conditions_must_match() -> None:
    conditions = [
        FilePatternCondition(patterns=["^src/"]),
        BranchCondition(patterns=["^main$"]),
        LabelCondition(labels=["backend"]),
    ]
    result = evaluate_conditions(conditions, _ctx())
    assert result.matched
    assert [r.type for r in result.results] == ["file_pattern", "branch", "label"]


def test_stops_at_first_failure() -> None:
    """Conditions after the first miss are not evaluated."""
    conditions = [
        FilePatternCondition(patterns=["^src/"]),
        AuthorCondition(usernames=["dave"]),
        LabelCondition(labels=["backend"]),
    ]
    result = evaluate_conditions(conditions, _ctx())
    assert not result.matched
    assert [r.type for r in result.results] == ["file_pattern", "author"]
    assert result.results[-1].matched is False


def test_evaluator_not_called_after_miss() -> None:
    calls = []

    def fake(condition, context, now=None):
        calls.append(condition.type)
        return ConditionResult(type=condition.type, matched=condition.type != "branch")

    conditions = [BranchCondition(patterns=["x"]), LabelCondition(labels=["y"])]
    with patch("gitrouter.routing.matcher.evaluate_condition", side_effect=fake):
        result = evaluate_conditions(conditions, _ctx())
    assert not result.matched
    assert calls == ["branch"]
