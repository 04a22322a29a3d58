"""
WebSocket notifier pushing daemon events to connected UI clients.

Every message has the shape ``{"type": channel, "data": payload,
"timestamp": iso8601}``. Notifications are fire-and-forget: callers on the
hook path never wait for slow or dead clients.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import uuid4

from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed

from hivetrack.config.app import WebSocketSettings

logger = logging.getLogger(__name__)


def _jsonable(data: Any) -> Any:
    to_dict = getattr(data, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return data


class Notifier(Protocol):
    def notify(self, channel: str, data: Any) -> None: ...


class NullNotifier:
    """Notifier used when no UI is attached."""

    def notify(self, channel: str, data: Any) -> None:
        logger.debug(f"Dropping UI notification '{channel}' (no notifier)")


class UINotifier:
    """
    WebSocket server broadcasting notifications to every connected client.

    Example:
        ```python
        notifier = UINotifier(WebSocketSettings(port=23848))
        await notifier.start()
        notifier.notify("agent:spawned", agent)
        ```
    """

    def __init__(self, config: WebSocketSettings | None = None) -> None:
        self.config = config or WebSocketSettings()

        # Connected clients: {websocket: client_metadata}
        self.clients: dict[Any, dict[str, Any]] = {}

        self._server: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: set[asyncio.Task[None]] = set()

    async def _handle_connection(self, websocket: Any) -> None:
        """Register the client and hold the connection until it closes."""
        client_id = str(uuid4())
        self.clients[websocket] = {
            "id": client_id,
            "connected_at": datetime.now(UTC),
            "remote_address": websocket.remote_address,
        }
        logger.debug(f"UI client {client_id} connected. Total clients: {len(self.clients)}")

        try:
            # Inbound messages are ignored; the channel is push-only
            async for _ in websocket:
                pass
        except ConnectionClosed:
            pass
        finally:
            self.clients.pop(websocket, None)
            logger.debug(f"UI client {client_id} disconnected. Total clients: {len(self.clients)}")

    async def broadcast(self, message: dict[str, Any]) -> None:
        """Send ``message`` to every connected client."""
        if not self.clients:
            return

        message_str = json.dumps(message, default=str)
        sent_count = 0
        failed_count = 0

        for websocket in list(self.clients.keys()):
            try:
                await websocket.send(message_str)
                sent_count += 1
            except ConnectionClosed:
                # Client disconnecting, cleaned up in handler
                failed_count += 1
            except Exception as e:
                logger.warning(f"Broadcast failed for client: {e}")
                failed_count += 1

        logger.debug(f"Broadcast complete: {sent_count} sent, {failed_count} failed")

    def notify(self, channel: str, data: Any) -> None:
        """Schedule a broadcast and return immediately."""
        message = {
            "type": channel,
            "data": _jsonable(data),
            "timestamp": datetime.now(UTC).isoformat(),
        }
        loop = self._loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug(f"No event loop for UI notification '{channel}', dropped")
                return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self._track(loop.create_task(self.broadcast(message)))
        elif loop.is_running():
            # Called from a worker thread
            asyncio.run_coroutine_threadsafe(self.broadcast(message), loop)
        else:
            logger.debug(f"Event loop not running, UI notification '{channel}' dropped")

    def _track(self, task: asyncio.Task[None]) -> None:
        self._pending.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"UI notification failed: {task.exception()}")

    async def start(self) -> None:
        """Start accepting connections. Does not block."""
        if self._server is not None:
            logger.warning("WebSocket server already started")
            return

        self._loop = asyncio.get_running_loop()
        self._server = await serve(
            self._handle_connection,
            host=self.config.host,
            port=self.config.port,
            ping_interval=self.config.ping_interval,
            ping_timeout=self.config.ping_timeout,
        )
        logger.info(f"WebSocket server started on ws://{self.config.host}:{self.config.port}")

    async def stop(self) -> None:
        """Close all connections and stop the server."""
        if self._server is None:
            return

        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

        self._server.close()
        await self._server.wait_closed()
        self._server = None
        self.clients.clear()
        logger.info("WebSocket server stopped")
