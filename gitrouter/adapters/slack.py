"""Slack Web API adapter.

Slack answers 200 with {"ok": false, "error": ...} on API-level failures;
both HTTP and API errors raise MessagingError.
"""

import logging
from typing import Any, Dict, List

import requests

from gitrouter.adapters.base import MessagingError, MessagingProvider, SentMessage

LOG = logging.getLogger("gitrouter.adapters.slack")


class SlackAdapter(MessagingProvider):
    """Slack bot implementation (conversations.open + chat.postMessage)."""

    def __init__(self, token: str, api_url: str = "https://slack.com/api") -> None:
        self._api_url = api_url.rstrip("/")
        self._session = requests.Session()
        self._session.headers["Authorization"] = f"Bearer {token}"
        self._session.headers["Content-Type"] = "application/json; charset=utf-8"

    def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self._api_url}/{method}"
        try:
            resp = self._session.request("POST", url, json=payload, timeout=30)
        except requests.RequestException as e:
            raise MessagingError(f"{method} failed: {e}") from e
        if resp.status_code >= 400:
            raise MessagingError(f"{resp.status_code}: {resp.text or resp.reason}")
        try:
            data = resp.json()
        except ValueError as e:
            raise MessagingError(f"{method} returned invalid JSON") from e
        if not data.get("ok"):
            raise MessagingError(f"{method}: {data.get('error', 'unknown_error')}")
        return data

    def open_conversation(self, user_id: str) -> str:
        """Open (or reuse) the DM channel with a user and return its id."""
        data = self._call("conversations.open", {"users": user_id})
        channel = (data.get("channel") or {}).get("id")
        if not channel:
            raise MessagingError(f"conversations.open returned no channel for {user_id}")
        return channel

    def send_direct(self, user_id: str, text: str, blocks: List[Dict[str, Any]] | None = None) -> SentMessage:
        channel = self.open_conversation(user_id)
        return self.send_to_channel(channel, text, blocks)

    def send_to_channel(
        self,
        channel_id: str,
        text: str,
        blocks: List[Dict[str, Any]] | None = None,
    ) -> SentMessage:
        payload: Dict[str, Any] = {"channel": channel_id, "text": text}
        if blocks:
            payload["blocks"] = blocks
        data = self._call("chat.postMessage", payload)
        LOG.debug("Posted message to %s", channel_id)
        return SentMessage(channel=data.get("channel") or channel_id, ts=str(data.get("ts", "")))
