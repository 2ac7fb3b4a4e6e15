"""Tests for NotificationDispatcher: targets, ledger, guard timestamps, retries."""

import logging
from datetime import timedelta

import pytest

from conftest import FakeMessaging, make_pr_event
from gitrouter.notifications.dispatcher import (
    NotificationDispatcher,
    NotificationError,
    NotificationTargetError,
    RetryPolicy,
)
from gitrouter.notifications.messages import escape_mrkdwn, format_files


class RecordingSleep:
    def __init__(self) -> None:
        self.delays = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def setup(store, seeded, clock):
    pr = store.upsert_pull_request(seeded.org.id, make_pr_event(changed_files=[f"src/f{i}.py" for i in range(7)]))
    assignment = store.create_assignment(pr.id, seeded.alice.id, None, clock.now - timedelta(hours=25))
    return pr, assignment


def _dispatcher(store, messaging, clock, sleep, attempts: int = 3) -> NotificationDispatcher:
    retry = RetryPolicy(max_attempts=attempts, base_delay=1.0, max_delay=30.0, sleep=sleep)
    return NotificationDispatcher(store, messaging, retry=retry, clock=clock)


def test_retry_policy_backoff_is_capped() -> None:
    policy = RetryPolicy(base_delay=1.0, max_delay=5.0)
    assert [policy.delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_new_pr_goes_to_reviewer_dm(store, seeded, clock, sleep, setup) -> None:
    pr, assignment = setup
    messaging = FakeMessaging()
    record = _dispatcher(store, messaging, clock, sleep).send("new_pr", assignment, pr, seeded.alice)

    assert record.status == "sent"
    assert record.recipient == "U_ALICE"
    assert record.external_id == "1700000000.000001"
    assert messaging.sent[0]["kind"] == "direct"
    assert store.get_assignment(assignment.id).first_notified_at == clock.now


def test_new_pr_message_lists_first_files(store, seeded, clock, sleep, setup) -> None:
    pr, assignment = setup
    messaging = FakeMessaging()
    _dispatcher(store, messaging, clock, sleep).send("new_pr", assignment, pr, seeded.alice)
    texts = [b["text"]["text"] for b in messaging.sent[0]["blocks"] if b.get("type") == "section" and "text" in b]
    files_block = next(t for t in texts if t.startswith("*Files Changed:*"))
    assert "src/f4.py" in files_block
    assert "src/f5.py" not in files_block
    assert "...and 2 more files" in files_block


def test_reminder_mentions_hours_pending(store, seeded, clock, sleep, setup) -> None:
    pr, assignment = setup
    messaging = FakeMessaging()
    record = _dispatcher(store, messaging, clock, sleep).send("reminder", assignment, pr, seeded.alice)
    assert record.message_type == "reminder"
    assert "25 hours" in messaging.sent[0]["text"]
    assert store.get_assignment(assignment.id).reminded_at == clock.now


def test_escalation_prefers_escalation_channel(store, seeded, clock, sleep, setup) -> None:
    pr, assignment = setup
    messaging = FakeMessaging()
    _dispatcher(store, messaging, clock, sleep).send("escalation", assignment, pr, seeded.alice, seeded.carol)
    sent = messaging.sent[0]
    assert (sent["kind"], sent["target"]) == ("channel", "C_ESCALATE")
    assert "Alice" in sent["text"]
    assert any("<@U_CAROL>" in b["text"]["text"] for b in sent["blocks"] if b.get("type") == "section" and "text" in b)


def test_escalation_falls_back_to_team_channel_then_lead_dm(store, seeded, clock, sleep, setup) -> None:
    pr, assignment = setup
    messaging = FakeMessaging()
    dispatcher = _dispatcher(store, messaging, clock, sleep)

    store.update_organization(seeded.org.id, escalation_channel_id=None, team_channel_id="C_TEAM")
    dispatcher.send("escalation", assignment, pr, seeded.alice, seeded.carol)
    assert messaging.sent[-1]["target"] == "C_TEAM"

    other = store.create_assignment(pr.id, seeded.bob.id, None, clock.now - timedelta(hours=50))
    store.update_organization(seeded.org.id, team_channel_id=None)
    dispatcher.send("escalation", other, pr, seeded.bob, seeded.carol)
    assert (messaging.sent[-1]["kind"], messaging.sent[-1]["target"]) == ("direct", "U_CAROL")


def test_missing_slack_id_is_target_error(store, seeded, clock, sleep, setup) -> None:
    pr, assignment = setup
    no_slack = store.create_reviewer(seeded.org.id, "erin")
    messaging = FakeMessaging()
    with pytest.raises(NotificationTargetError) as exc_info:
        _dispatcher(store, messaging, clock, sleep).send("reminder", assignment, pr, no_slack)
    assert exc_info.value.record.status == "failed"
    assert messaging.calls == 0
    assert store.get_assignment(assignment.id).reminded_at is None


def test_provider_failure_records_and_raises(store, seeded, clock, sleep, setup) -> None:
    pr, assignment = setup
    with pytest.raises(NotificationError) as exc_info:
        _dispatcher(store, FakeMessaging(failures=1), clock, sleep).send("reminder", assignment, pr, seeded.alice)
    assert not isinstance(exc_info.value, NotificationTargetError)
    record = exc_info.value.record
    assert record.status == "failed"
    assert record.error == "channel_not_found"
    assert store.get_assignment(assignment.id).reminded_at is None


def test_already_sent_is_not_resent(store, seeded, clock, sleep, setup) -> None:
    """A prior successful send in the ledger short-circuits and still stamps the guard field."""
    pr, assignment = setup
    messaging = FakeMessaging()
    dispatcher = _dispatcher(store, messaging, clock, sleep)
    first = dispatcher.send("reminder", assignment, pr, seeded.alice)
    store.update_assignment_status(assignment.id, "pending", None)

    second = dispatcher.send("reminder", assignment, pr, seeded.alice)
    assert second.id == first.id
    assert len(messaging.sent) == 1


def test_deliver_retries_with_backoff(store, seeded, clock, sleep, setup) -> None:
    pr, assignment = setup
    messaging = FakeMessaging(failures=2)
    record = _dispatcher(store, messaging, clock, sleep).deliver("reminder", assignment, pr, seeded.alice)

    assert record.status == "sent"
    assert record.attempt == 3
    assert sleep.delays == [1.0, 2.0]
    attempts = store.list_notifications(assignment_id=assignment.id)
    assert [(n.status, n.attempt) for n in attempts] == [("failed", 1), ("failed", 2), ("sent", 3)]


def test_deliver_gives_up_after_max_attempts(store, seeded, clock, sleep, setup, caplog) -> None:
    pr, assignment = setup
    messaging = FakeMessaging(failures=10)
    with caplog.at_level(logging.WARNING, logger="gitrouter.notifications.dispatcher"):
        record = _dispatcher(store, messaging, clock, sleep).deliver("reminder", assignment, pr, seeded.alice)

    assert record.status == "failed"
    assert messaging.calls == 3
    assert store.get_assignment(assignment.id).reminded_at is None
    assert "Giving up" in caplog.text


def test_deliver_does_not_retry_target_errors(store, seeded, clock, sleep, setup) -> None:
    pr, assignment = setup
    store.update_organization(seeded.org.id, escalation_channel_id=None)
    lead_without_slack = store.create_reviewer(seeded.org.id, "lee", is_team_lead=True)
    record = _dispatcher(store, FakeMessaging(), clock, sleep).deliver(
        "escalation", assignment, pr, seeded.alice, lead_without_slack
    )
    assert record.status == "failed"
    assert sleep.delays == []
    assert len(store.list_notifications(assignment_id=assignment.id)) == 1


def test_no_messaging_provider_is_target_error(store, seeded, clock, sleep, setup) -> None:
    pr, assignment = setup
    dispatcher = NotificationDispatcher(store, None, retry=RetryPolicy(sleep=sleep), clock=clock)
    record = dispatcher.deliver("new_pr", assignment, pr, seeded.alice)
    assert record.status == "failed"
    assert record.error == "no messaging provider configured"


def _section_texts(message) -> list:
    return [b["text"]["text"] for b in message["blocks"] if b.get("type") == "section" and "text" in b]


def test_new_pr_posts_to_team_channel_with_mention(store, seeded, clock, sleep, setup) -> None:
    pr, assignment = setup
    store.update_organization(seeded.org.id, team_channel_id="C_TEAM")
    messaging = FakeMessaging()
    record = _dispatcher(store, messaging, clock, sleep).send("new_pr", assignment, pr, seeded.alice)

    assert record.recipient == "C_TEAM"
    assert (messaging.sent[0]["kind"], messaging.sent[0]["target"]) == ("channel", "C_TEAM")
    assert "Review requested from <@U_ALICE>" in _section_texts(messaging.sent[0])


def test_dm_destination_skips_channels(store, seeded, clock, sleep, setup) -> None:
    pr, assignment = setup
    store.update_organization(seeded.org.id, team_channel_id="C_TEAM", notification_destination="dm")
    messaging = FakeMessaging()
    dispatcher = _dispatcher(store, messaging, clock, sleep)

    dispatcher.send("new_pr", assignment, pr, seeded.alice)
    dispatcher.send("escalation", assignment, pr, seeded.alice, seeded.carol)

    assert [(m["kind"], m["target"]) for m in messaging.sent] == [("direct", "U_ALICE"), ("direct", "U_CAROL")]
    assert not any("Review requested" in t for t in _section_texts(messaging.sent[0]))


def test_dm_destination_without_lead_slack_id_is_target_error(store, seeded, clock, sleep, setup) -> None:
    pr, assignment = setup
    store.update_organization(seeded.org.id, notification_destination="dm")
    lead = store.create_reviewer(seeded.org.id, "lee", is_team_lead=True)
    with pytest.raises(NotificationTargetError):
        _dispatcher(store, FakeMessaging(), clock, sleep).send("escalation", assignment, pr, seeded.alice, lead)


def test_reminders_always_go_to_reviewer(store, seeded, clock, sleep, setup) -> None:
    pr, assignment = setup
    store.update_organization(seeded.org.id, team_channel_id="C_TEAM")
    messaging = FakeMessaging()
    _dispatcher(store, messaging, clock, sleep).send("reminder", assignment, pr, seeded.alice)
    assert messaging.sent[0]["target"] == "U_ALICE"


def test_disabled_notifications_skip_and_stamp(store, seeded, clock, sleep, setup) -> None:
    pr, assignment = setup
    store.update_organization(seeded.org.id, slack_notifications=False)
    messaging = FakeMessaging()
    dispatcher = _dispatcher(store, messaging, clock, sleep)
    record = dispatcher.deliver("escalation", assignment, pr, seeded.alice, seeded.carol)

    assert record.status == "skipped"
    assert record.error == "notifications disabled"
    assert messaging.calls == 0
    assert store.get_assignment(assignment.id).escalated_at == clock.now


def test_announce_merged_and_closed(store, seeded, clock, sleep) -> None:
    store.update_organization(seeded.org.id, team_channel_id="C_TEAM")
    messaging = FakeMessaging()
    dispatcher = _dispatcher(store, messaging, clock, sleep)
    merged = store.upsert_pull_request(seeded.org.id, make_pr_event(action="closed", merged=True))
    closed = store.upsert_pull_request(seeded.org.id, make_pr_event(number=8, provider_id=1008, action="closed"))

    first = dispatcher.announce_status(merged)
    second = dispatcher.announce_status(closed)

    assert (first.message_type, first.assignment_id, first.recipient) == ("pr_merged", None, "C_TEAM")
    assert second.message_type == "pr_closed"
    assert [m["text"].split(":")[0] for m in messaging.sent] == ["PR merged", "PR closed"]
    assert all(m["target"] == "C_TEAM" for m in messaging.sent)


@pytest.mark.parametrize(
    "org_fields,action",
    [
        ({"team_channel_id": None}, "closed"),
        ({"team_channel_id": "C_TEAM", "slack_notifications": False}, "closed"),
        ({"team_channel_id": "C_TEAM"}, "synchronize"),
    ],
)
def test_announce_skipped(store, seeded, clock, sleep, org_fields, action) -> None:
    store.update_organization(seeded.org.id, **org_fields)
    messaging = FakeMessaging()
    pr = store.upsert_pull_request(seeded.org.id, make_pr_event(action=action))
    assert _dispatcher(store, messaging, clock, sleep).announce_status(pr) is None
    assert messaging.calls == 0


def test_announce_retries_then_gives_up(store, seeded, clock, sleep) -> None:
    store.update_organization(seeded.org.id, team_channel_id="C_TEAM")
    pr = store.upsert_pull_request(seeded.org.id, make_pr_event(action="closed"))
    record = _dispatcher(store, FakeMessaging(failures=5), clock, sleep, attempts=2).announce_status(pr)
    assert record.status == "failed"
    assert sleep.delays == [1.0]
    assert len(store.list_notifications(message_type="pr_closed")) == 2


def test_escape_mrkdwn() -> None:
    assert escape_mrkdwn("a < b & c > d") == "a &lt; b &amp; c &gt; d"


def test_format_files_truncates() -> None:
    assert format_files(["a", "b"]) == "• `a`\n• `b`"
    assert format_files(["a", "b", "c"], limit=1).endswith("_...and 2 more files_")
