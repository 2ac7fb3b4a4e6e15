"""Tests for the webhook HTTP server (real socket on a free port)."""

import json
import threading
from contextlib import contextmanager
from unittest.mock import Mock

import pytest
import requests

from gitrouter.config import AppConfig, EscalationConfig, NotificationConfig, WebhookConfig
from gitrouter.notifications.dispatcher import RetryPolicy
from gitrouter.service import GitRouterService
from gitrouter.webhook.server import make_server
from gitrouter.webhook.signature import compute_signature

SECRET = "hook-secret"
CRON_SECRET = "cron-token"


@contextmanager
def _serve(config: AppConfig, service: GitRouterService):
    server = make_server(config, service)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


def _config(cron_secret: str = CRON_SECRET) -> AppConfig:
    return AppConfig(
        webhook=WebhookConfig(host="127.0.0.1", port=0),
        escalation=EscalationConfig(cron_secret=cron_secret),
    )


@pytest.fixture(autouse=True)
def _no_env_secrets(monkeypatch) -> None:
    monkeypatch.setattr("gitrouter.config._current_env", {})


@pytest.fixture
def service(store, messaging, clock, seeded) -> GitRouterService:
    return GitRouterService(
        store,
        messaging=messaging,
        webhook_secret=SECRET,
        notifications=NotificationConfig(async_new_pr=False),
        retry=RetryPolicy(sleep=lambda s: None),
        clock=clock,
    )


@pytest.fixture
def base_url(service):
    with _serve(_config(), service) as url:
        yield url


def _post_webhook(base_url: str, payload: dict, delivery: str = "d-1", secret: str = SECRET, event="pull_request"):
    body = json.dumps(payload).encode()
    headers = {
        "Content-Type": "application/json",
        "X-GitHub-Delivery": delivery,
        "X-GitHub-Event": event,
        "X-Hub-Signature-256": compute_signature(secret, body),
    }
    return requests.post(f"{base_url}/webhook/github", data=body, headers=headers, timeout=5)


def _payload(action: str = "opened") -> dict:
    return {
        "action": action,
        "number": 3,
        "pull_request": {"id": 303, "number": 3, "user": {"login": "dave"}, "draft": False},
        "repository": {"full_name": "acme/api"},
    }


def test_health(base_url: str) -> None:
    resp = requests.get(f"{base_url}/health", timeout=5)
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_unknown_path_is_404(base_url: str) -> None:
    assert requests.get(f"{base_url}/nope", timeout=5).status_code == 404
    assert requests.post(f"{base_url}/nope", data=b"{}", timeout=5).status_code == 404


def test_accepted_delivery(base_url: str, store, seeded) -> None:
    resp = _post_webhook(base_url, _payload())

    assert resp.status_code == 200
    assert resp.json() == {"status": "accepted", "delivery_id": "d-1"}
    assert store.find_pull_request(seeded.org.id, "acme/api", 3) is not None


def test_duplicate_delivery_reported_as_ignored(base_url: str) -> None:
    _post_webhook(base_url, _payload())
    resp = _post_webhook(base_url, _payload())

    assert resp.status_code == 200
    assert resp.json()["status"] == "ignored"


def test_ignored_event_is_200(base_url: str) -> None:
    resp = _post_webhook(base_url, {"zen": "Keep it simple."}, event="ping")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ignored"
    assert resp.json()["reason"] == "unsupported_event"


def test_bad_signature_is_401(base_url: str) -> None:
    resp = _post_webhook(base_url, _payload(), secret="wrong")

    assert resp.status_code == 401
    assert resp.json()["reason"] == "bad_signature"


def test_missing_headers_is_400(base_url: str) -> None:
    resp = requests.post(f"{base_url}/webhook/github", data=b"{}", timeout=5)

    assert resp.status_code == 400
    assert resp.json()["status"] == "rejected"


def test_pipeline_failure_is_500(base_url: str, service, monkeypatch) -> None:
    monkeypatch.setattr(service.pipeline, "handle", Mock(side_effect=RuntimeError("db down")))

    resp = _post_webhook(base_url, _payload())

    assert resp.status_code == 500
    assert resp.json()["reason"] == "processing_failed"


def test_cron_requires_bearer_secret(base_url: str) -> None:
    assert requests.post(f"{base_url}/cron/escalations", timeout=5).status_code == 401
    resp = requests.post(f"{base_url}/cron/escalations", headers={"Authorization": "Bearer nope"}, timeout=5)
    assert resp.status_code == 401


def test_cron_runs_sweep(base_url: str) -> None:
    resp = requests.post(
        f"{base_url}/cron/escalations",
        headers={"Authorization": f"Bearer {CRON_SECRET}"},
        timeout=5,
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["processed"] == 0
    assert body["skipped"] is False


def test_cron_disabled_without_secret(service) -> None:
    with _serve(_config(cron_secret=""), service) as url:
        resp = requests.post(f"{url}/cron/escalations", headers={"Authorization": "Bearer x"}, timeout=5)
    assert resp.status_code == 404
