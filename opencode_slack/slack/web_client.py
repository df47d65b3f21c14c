"""
Slack Web API client - the outbound side of the bridge.

Implements the ChatChannel protocol (post a message, update a message) on top
of chat.postMessage / chat.update, plus the few other methods the bridge
needs (auth.test, apps.connections.open).

API Reference: https://api.slack.com/methods
"""

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

SLACK_API_BASE = "https://slack.com/api"


class SlackApiError(Exception):
    """A Slack Web API call returned ``ok: false`` (or was rate limited)."""

    def __init__(self, method: str, error: str, retry_after: float | None = None):
        super().__init__(f"{method} failed: {error}")
        self.method = method
        self.error = error
        self.retry_after = retry_after


class SlackWebClient:
    """Async Slack Web API client.

    Bot-token calls go through ``api_call``; ``open_socket_url`` uses the
    app-level token that Socket Mode requires.
    """

    TIMEOUT = 10.0

    def __init__(
        self,
        bot_token: str,
        app_token: str | None = None,
        base_url: str = SLACK_API_BASE,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._bot_token = bot_token
        self._app_token = app_token
        self._client = http_client or httpx.AsyncClient(base_url=base_url, timeout=self.TIMEOUT)

    async def api_call(
        self,
        method: str,
        token: str | None = None,
        **payload: Any,
    ) -> dict[str, Any]:
        """POST ``payload`` as JSON to ``/method`` and return the response body.

        Raises:
            SlackApiError: On HTTP 429 or a response with ``ok: false``.
            httpx.HTTPError: On transport failures.
        """
        body = {k: v for k, v in payload.items() if v is not None}
        response = await self._client.post(
            f"/{method}",
            headers={
                "Authorization": f"Bearer {token or self._bot_token}",
                "Content-Type": "application/json; charset=utf-8",
            },
            json=body,
        )

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise SlackApiError(
                method,
                "ratelimited",
                retry_after=float(retry_after) if retry_after else None,
            )
        if response.status_code >= 400:
            raise SlackApiError(method, f"http_{response.status_code}")

        data = response.json()
        if not data.get("ok"):
            raise SlackApiError(method, data.get("error", "unknown_error"))
        return data

    # --- ChatChannel ---

    async def post_message(
        self,
        channel: str | None,
        thread_id: str,
        text: str,
        blocks: list[dict[str, Any]] | None = None,
    ) -> str:
        data = await self.api_call(
            "chat.postMessage",
            channel=channel,
            thread_ts=thread_id,
            text=text,
            blocks=blocks,
        )
        return data["ts"]

    async def update_message(
        self,
        channel: str | None,
        message_id: str,
        text: str,
        blocks: list[dict[str, Any]] | None = None,
    ) -> None:
        await self.api_call(
            "chat.update",
            channel=channel,
            ts=message_id,
            text=text,
            blocks=blocks,
        )

    # --- Other methods ---

    async def auth_test(self) -> dict[str, Any]:
        """Identity of the bot token (``user_id``, ``team``, ``bot_id``)."""
        return await self.api_call("auth.test")

    async def open_socket_url(self) -> str:
        """Get a fresh Socket Mode websocket URL."""
        if not self._app_token:
            raise ValueError("An app-level token is required for Socket Mode")
        data = await self.api_call("apps.connections.open", token=self._app_token)
        return data["url"]

    async def aclose(self) -> None:
        await self._client.aclose()
