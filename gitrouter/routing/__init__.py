"""Rule-based reviewer routing."""

from gitrouter.routing.cache import RuleCache, sort_rules
from gitrouter.routing.engine import RoutingEngine
from gitrouter.routing.matcher import evaluate_conditions

__all__ = ["RoutingEngine", "RuleCache", "evaluate_conditions", "sort_rules"]
