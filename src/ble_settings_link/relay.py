"""
WebSocket relay for link status.

Lets external UIs follow a running central session or peripheral without
polling. Every event is broadcast as one JSON object to all connected
clients; clients that have gone away are dropped on the next broadcast.
"""

import json
import logging
from typing import Any, Optional

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

logger = logging.getLogger(__name__)

# WebSocket server configuration
RELAY_HOST = "localhost"
RELAY_PORT = 8799


class StatusRelay:
    """Broadcasts JSON events to WebSocket clients."""

    def __init__(self, host: str = RELAY_HOST, port: int = RELAY_PORT):
        """
        Initialize the relay.

        Args:
            host: Host to bind the WebSocket server to
            port: Port to bind to (0 picks a free port)
        """
        self.host = host
        self.port = port
        self._clients: set[ServerConnection] = set()
        self._server: Optional[Server] = None

    async def start(self) -> None:
        """Start the WebSocket server."""
        self._server = await serve(self._handle_client, self.host, self.port)
        if self.port == 0:
            self.port = next(iter(self._server.sockets)).getsockname()[1]
        logger.info(f"[RELAY] Listening on ws://{self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the WebSocket server."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            self._clients.clear()
            logger.info("[RELAY] Stopped")

    async def _handle_client(self, websocket: ServerConnection) -> None:
        self._clients.add(websocket)
        client_info = f"{websocket.remote_address}"
        logger.info(f"[RELAY] Client connected: {client_info}")

        try:
            # Inbound messages are not part of the relay protocol
            async for message in websocket:
                logger.debug(f"[RELAY] Ignoring message from {client_info}: {message!r}")
        except ConnectionClosed:
            pass
        finally:
            self._clients.discard(websocket)
            logger.info(f"[RELAY] Client disconnected: {client_info}")

    async def broadcast(self, event: dict[str, Any]) -> None:
        """Send an event to all connected clients."""
        if not self._clients:
            return

        message = json.dumps(event)
        disconnected = set()
        for client in list(self._clients):
            try:
                await client.send(message)
            except ConnectionClosed:
                disconnected.add(client)

        self._clients -= disconnected

    async def publish_status(self, status) -> None:
        """Relay a central-side `SessionStatus`."""
        await self.broadcast(status.to_dict())

    async def publish_write(self, payload: str) -> None:
        """Relay a payload written to the peripheral."""
        await self.broadcast({"type": "write", "payload": payload})

    async def publish_client(self, address: str, connected: bool) -> None:
        """Relay a peripheral-side client connect or disconnect."""
        await self.broadcast({
            "type": "client",
            "address": address,
            "connected": connected,
        })

    @property
    def client_count(self) -> int:
        """Return the number of connected clients."""
        return len(self._clients)

    @property
    def is_running(self) -> bool:
        """Return whether the server is running."""
        return self._server is not None
