"""Shared fixtures: in-memory store, fake providers, fixed clock, seeded organization."""

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

from gitrouter.adapters.base import (
    MessagingError,
    MessagingProvider,
    PullRequestInfo,
    SentMessage,
    VCSError,
    VCSProvider,
)
from gitrouter.models.events import PullRequestEvent
from gitrouter.store.sql_store import SQLStore

START = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)


class FixedClock:
    """Callable clock the tests move forward by hand."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeMessaging(MessagingProvider):
    """Records messages; fails the first `failures` calls with MessagingError."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.calls = 0
        self.sent: List[Dict[str, Any]] = []

    def _deliver(self, kind: str, target: str, text: str, blocks: Any) -> SentMessage:
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise MessagingError("channel_not_found")
        self.sent.append({"kind": kind, "target": target, "text": text, "blocks": blocks})
        return SentMessage(channel=target, ts=f"1700000000.{len(self.sent):06d}")

    def send_direct(self, user_id: str, text: str, blocks: Any = None) -> SentMessage:
        return self._deliver("direct", user_id, text, blocks)

    def send_to_channel(self, channel_id: str, text: str, blocks: Any = None) -> SentMessage:
        return self._deliver("channel", channel_id, text, blocks)


class FakeVCS(VCSProvider):
    """In-memory VCS: changed files and state per PR number, records review requests."""

    def __init__(self, files: Dict[int, List[str]] | None = None, fail: bool = False) -> None:
        self.files = files or {}
        self.fail = fail
        self.requested: List[tuple] = []
        # number -> "open", "closed" or "merged"; missing means open
        self.states: Dict[int, str] = {}
        self.lookups: List[int] = []

    def list_changed_files(self, repo: str, number: int) -> List[str]:
        if self.fail:
            raise VCSError("502: Bad Gateway")
        return list(self.files.get(number, []))

    def request_reviewers(self, repo: str, number: int, usernames: List[str]) -> None:
        if self.fail:
            raise VCSError("422: Reviews may only be requested from collaborators")
        self.requested.append((repo, number, list(usernames)))

    def get_pull_request(self, repo: str, number: int) -> PullRequestInfo:
        self.lookups.append(number)
        if self.fail:
            raise VCSError("503: Service Unavailable")
        state = self.states.get(number, "open")
        merged = state == "merged"
        return PullRequestInfo(
            number=number,
            provider_id=1000 + number,
            state="closed" if merged else state,
            merged=merged,
        )


def make_pr_event(**overrides: Any) -> PullRequestEvent:
    data: Dict[str, Any] = {
        "delivery_id": "d-1",
        "action": "opened",
        "repository": "acme/api",
        "number": 7,
        "provider_id": 1007,
        "author": "dave",
        "title": "Add retries",
        "head_branch": "feature/retries",
        "base_branch": "main",
        "changed_files": ["src/app.py"],
        "additions": 10,
        "deletions": 2,
        "html_url": "https://github.com/acme/api/pull/7",
    }
    data.update(overrides)
    return PullRequestEvent(**data)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store() -> SQLStore:
    s = SQLStore("sqlite://")
    yield s
    s.close()


@pytest.fixture
def messaging() -> FakeMessaging:
    return FakeMessaging()


@pytest.fixture
def vcs() -> FakeVCS:
    return FakeVCS()


@pytest.fixture
def seeded(store: SQLStore) -> SimpleNamespace:
    """Organization Acme with reviewers alice, bob, carol (lead), dave (PR author) and repo acme/api."""
    org = store.create_organization("Acme", escalation_channel_id="C_ESCALATE")
    alice = store.create_reviewer(org.id, "alice", name="Alice", slack_user_id="U_ALICE")
    bob = store.create_reviewer(org.id, "bob", name="Bob", slack_user_id="U_BOB")
    carol = store.create_reviewer(org.id, "carol", name="Carol", slack_user_id="U_CAROL", is_team_lead=True)
    dave = store.create_reviewer(org.id, "Dave", name="Dave", slack_user_id="U_DAVE")
    repo = store.create_repository(org.id, "acme/api")
    return SimpleNamespace(org=org, alice=alice, bob=bob, carol=carol, dave=dave, repo=repo)
