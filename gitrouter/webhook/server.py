"""Webhook HTTP server.

Routes:
- GET /health: liveness
- POST <github.webhook_path>: GitHub deliveries through the ingestion gate
- POST /cron/escalations: run one escalation sweep (Bearer cron secret)
"""

import hmac
import json
import logging
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from gitrouter.config import AppConfig
from gitrouter.service import GitRouterService

LOG = logging.getLogger("gitrouter.webhook.server")

CRON_PATH = "/cron/escalations"

# HTTP status per rejection reason; anything else rejected is a client error
REJECTION_STATUS = {"bad_signature": 401}


class WebhookHandler(BaseHTTPRequestHandler):
    """Handle GET /health, POST webhook path and POST /cron/escalations."""

    config: AppConfig
    service: GitRouterService

    def _path(self) -> str:
        return self.path.split("?", 1)[0]

    def _send_json(self, status: int, body: dict) -> None:
        data = json.dumps(body).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def _read_body(self) -> bytes:
        length = int(self.headers.get("Content-Length", 0) or 0)
        return self.rfile.read(length) if length else b""

    def do_GET(self) -> None:
        if self._path() in ("/health", "/"):
            self._send_json(200, {"status": "ok", "service": "gitrouter"})
            return
        self._send_json(404, {"error": "not_found"})

    def do_POST(self) -> None:
        path = self._path()
        if path == self.config.github.webhook_path:
            self._handle_github_webhook()
            return
        if path == CRON_PATH:
            self._handle_cron()
            return
        self._send_json(404, {"error": "not_found"})

    def _handle_github_webhook(self) -> None:
        body = self._read_body()
        try:
            result = self.service.ingest(body, self.headers)
        except Exception as e:
            LOG.exception("Webhook processing failed (delivery %s): %s", self.headers.get("X-GitHub-Delivery"), e)
            self._send_json(500, {"status": "error", "reason": "processing_failed"})
            return
        status = 200
        if result.status == "rejected":
            status = REJECTION_STATUS.get(result.reason, 400)
        self._send_json(status, result.to_response())

    def _handle_cron(self) -> None:
        self._read_body()
        secret = self.config.cron_secret_resolved
        if not secret:
            self._send_json(404, {"error": "not_found"})
            return
        auth = self.headers.get("Authorization", "") or ""
        token = auth[len("Bearer ") :] if auth.startswith("Bearer ") else ""
        if not token or not hmac.compare_digest(token.encode(), secret.encode()):
            LOG.warning("Rejected escalation trigger: bad credentials")
            self._send_json(401, {"error": "unauthorized"})
            return
        try:
            stats = self.service.run_escalation_sweep()
        except Exception as e:
            LOG.exception("Manual escalation sweep failed: %s", e)
            self._send_json(500, {"error": "sweep_failed"})
            return
        self._send_json(200, stats.model_dump())

    def log_message(self, format: str, *args: Any) -> None:
        LOG.debug(format, *args)


def make_server(config: AppConfig, service: GitRouterService) -> ThreadingHTTPServer:
    """Bind the server (port 0 picks a free port) without starting it."""
    handler = type("BoundWebhookHandler", (WebhookHandler,), {"config": config, "service": service})
    return ThreadingHTTPServer((config.webhook.host, config.webhook.port), handler)


def run_webhook_server(config: AppConfig, service: GitRouterService) -> None:
    """Run HTTP server for webhooks, health check and manual sweeps."""
    server = make_server(config, service)
    LOG.info("Webhook server listening on %s:%s", config.webhook.host, config.webhook.port)
    try:
        server.serve_forever()
    finally:
        server.server_close()
