"""Per-organization TTL cache of active routing rules.

Owned by the service instance (no module-level singleton). Entries expire
after ttl_seconds; rule mutations outside the engine call invalidate() so
edits take effect before the TTL runs out. Concurrent refreshes for the same
organization are harmless: the last loader to finish wins.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Tuple

from gitrouter.models.rules import RoutingRule

LOG = logging.getLogger("gitrouter.routing.cache")

DEFAULT_TTL_SECONDS = 60.0


def sort_rules(rules: List[RoutingRule]) -> List[RoutingRule]:
    """Active rules in evaluation order: (priority, created_at, id)."""
    active = [r for r in rules if r.is_active]
    return sorted(active, key=lambda r: (r.priority, r.created_at, r.id))


class RuleCache:
    """TTL cache keyed by organization id."""

    def __init__(
        self,
        loader: Callable[[int], List[RoutingRule]],
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[int, Tuple[float, List[RoutingRule]]] = {}
        self._lock = threading.Lock()

    def get_rules(self, org_id: int) -> List[RoutingRule]:
        """Return active rules for org_id in evaluation order, loading on miss or expiry."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(org_id)
        if entry is not None and entry[0] > now:
            return list(entry[1])

        # Load outside the lock; the store call is network I/O
        rules = sort_rules(self._loader(org_id))
        with self._lock:
            self._entries[org_id] = (self._clock() + self._ttl, rules)
        LOG.debug("Loaded %d active rules for org %s", len(rules), org_id)
        return list(rules)

    def invalidate(self, org_id: int) -> None:
        with self._lock:
            self._entries.pop(org_id, None)
        LOG.debug("Rule cache invalidated for org %s", org_id)

    def invalidate_all(self) -> None:
        with self._lock:
            self._entries.clear()
        LOG.debug("Rule cache cleared")
