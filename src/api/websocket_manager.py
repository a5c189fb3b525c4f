"""WebSocket connection management for the storyreel API."""

import logging

from fastapi import WebSocket

from story_video.events import RunEvent

logger = logging.getLogger(__name__)


class WebSocketManager:
    """Manages WebSocket connections grouped by session id.

    Subscribed to the progress channel once; every run event is forwarded to
    all sockets of the event's session.
    """

    def __init__(self):
        """Initialize the WebSocket manager with empty connections dict."""
        self.connections: dict[str, list[WebSocket]] = {}

    async def connect(self, key: str, websocket: WebSocket) -> None:
        """Accept a WebSocket connection and add it to the connection pool.

        Args:
            key: The session id
            websocket: The WebSocket connection to add
        """
        await websocket.accept()
        self.connections.setdefault(key, []).append(websocket)
        logger.debug(f"WebSocket connected for session {key} ({len(self.connections[key])} open)")

    async def broadcast(self, key: str, message: dict) -> None:
        """Broadcast a message to all connected WebSockets for a given key.

        Note:
            Automatically cleans up disconnected WebSockets.
        """
        disconnected = []
        for ws in list(self.connections.get(key, [])):
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.debug(f"Dropping WebSocket for session {key}: {e}")
                disconnected.append(ws)

        for ws in disconnected:
            self.disconnect(key, ws)

    async def forward_event(self, event: RunEvent) -> None:
        """Progress channel subscriber: send the event to its session's sockets."""
        await self.broadcast(event.session_id, event.to_message())

    def disconnect(self, key: str, websocket: WebSocket) -> None:
        """Remove a WebSocket from the connection pool."""
        sockets = self.connections.get(key)
        if sockets and websocket in sockets:
            sockets.remove(websocket)
        if key in self.connections and not self.connections[key]:
            del self.connections[key]

    def connection_count(self, key: str) -> int:
        return len(self.connections.get(key, []))
