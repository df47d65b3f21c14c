"""
Slack Socket Mode client - the inbound side of the bridge.

Slack pushes events over a websocket opened with apps.connections.open.
Every envelope must be acknowledged within 3 seconds, so handlers are run
as background tasks after the ack is sent.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp

from opencode_slack.slack.web_client import SlackWebClient

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any]], Awaitable[None]]

HEARTBEAT_INTERVAL = 30.0
MAX_BACKOFF = 60.0


class SocketModeClient:
    """Receives Events API payloads over Socket Mode and dispatches them.

    Example:
        client = SocketModeClient(web_client, handler.handle_event)
        await client.run()  # until stop() is called
    """

    def __init__(
        self,
        web_client: SlackWebClient,
        handler: EventHandler,
        session: aiohttp.ClientSession | None = None,
    ):
        self._web = web_client
        self._handler = handler
        self._session = session
        self._owns_session = session is None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._handler_tasks: set[asyncio.Task] = set()
        self._stopping = False
        self.connected = asyncio.Event()

    async def run(self) -> None:
        """Connect and reconnect until ``stop()``."""
        if self._session is None:
            self._session = aiohttp.ClientSession()

        backoff = 1.0
        try:
            while not self._stopping:
                try:
                    url = await self._web.open_socket_url()
                    await self._consume(url)
                    backoff = 1.0
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    if self._stopping:
                        break
                    logger.warning(f"Socket Mode connection failed: {e}; retrying in {backoff:.0f}s")
                    await asyncio.sleep(backoff)
                    backoff = min(backoff * 2, MAX_BACKOFF)
        finally:
            self.connected.clear()
            if self._owns_session and self._session is not None:
                await self._session.close()
                self._session = None

    async def _consume(self, url: str) -> None:
        async with self._session.ws_connect(url, heartbeat=HEARTBEAT_INTERVAL) as ws:
            self._ws = ws
            try:
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        if not await self._on_envelope(ws, json.loads(msg.data)):
                            break
                    elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                        break
            finally:
                self._ws = None
                self.connected.clear()
        if not self._stopping:
            logger.info("Socket Mode connection closed, reconnecting")

    async def _on_envelope(self, ws: aiohttp.ClientWebSocketResponse, envelope: dict) -> bool:
        """Handle one envelope. Returns False when Slack asks us to reconnect."""
        kind = envelope.get("type")

        if kind == "hello":
            logger.info("Socket Mode connected")
            self.connected.set()
            return True

        if kind == "disconnect":
            logger.info(f"Slack requested reconnect ({envelope.get('reason', 'unknown')})")
            return False

        envelope_id = envelope.get("envelope_id")
        if envelope_id:
            await ws.send_json({"envelope_id": envelope_id})

        if kind == "events_api":
            event = (envelope.get("payload") or {}).get("event")
            if event:
                self._dispatch(event)
        else:
            logger.debug(f"Ignoring Socket Mode envelope type {kind!r}")
        return True

    def _dispatch(self, event: dict[str, Any]) -> None:
        task = asyncio.create_task(self._run_handler(event))
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_tasks.discard)

    async def _run_handler(self, event: dict[str, Any]) -> None:
        try:
            await self._handler(event)
        except Exception:
            logger.exception(f"Handler failed for {event.get('type')} event")

    async def stop(self) -> None:
        self._stopping = True
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        for task in list(self._handler_tasks):
            task.cancel()
