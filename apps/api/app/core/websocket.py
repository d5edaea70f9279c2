"""
WebSocket connection manager for realtime conversation events.

Connections are registered per org member public id. Each connection may
additionally subscribe to named channels (``private-space-<spacePublicId>``)
so that space-scoped events reach every member currently watching the space.
"""

from typing import Dict, Set
import asyncio
import json

from fastapi import WebSocket


def space_channel(space_public_id: str) -> str:
    """Channel name carrying events for one space."""
    return f"private-space-{space_public_id}"


class ConnectionManager:
    """Manages WebSocket connections per org member and channel."""

    def __init__(self):
        # org member public id -> set of active WebSocket connections
        self._connections: Dict[str, Set[WebSocket]] = {}
        # channel -> set of subscribed WebSocket connections
        self._channels: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(
        self, websocket: WebSocket, member_public_id: str, channels: list[str] | None = None
    ):
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self._connections.setdefault(member_public_id, set()).add(websocket)
            for channel in channels or []:
                self._channels.setdefault(channel, set()).add(websocket)

    async def disconnect(self, websocket: WebSocket, member_public_id: str):
        """Remove a WebSocket connection and all of its channel subscriptions."""
        async with self._lock:
            self._discard(websocket, member_public_id)

    def _discard(self, websocket: WebSocket, member_public_id: str | None = None):
        members = [member_public_id] if member_public_id is not None else list(self._connections)
        for member in members:
            if member not in self._connections:
                continue
            self._connections[member].discard(websocket)
            if not self._connections[member]:
                del self._connections[member]
        for channel in list(self._channels):
            self._channels[channel].discard(websocket)
            if not self._channels[channel]:
                del self._channels[channel]

    async def _send_all(self, connections: Set[WebSocket], message: dict) -> list[WebSocket]:
        data = json.dumps(message)
        closed = []
        for ws in connections:
            try:
                await ws.send_text(data)
            except Exception:
                # Connection closed or errored
                closed.append(ws)
        return closed

    async def send_to_member(self, member_public_id: str, message: dict):
        """Send a message to all connections for a specific org member."""
        async with self._lock:
            connections = self._connections.get(member_public_id, set()).copy()

        if not connections:
            return

        closed = await self._send_all(connections, message)
        if closed:
            async with self._lock:
                for ws in closed:
                    self._discard(ws, member_public_id)

    async def send_to_channel(self, channel: str, message: dict):
        """Send a message to every connection subscribed to a channel."""
        async with self._lock:
            connections = self._channels.get(channel, set()).copy()

        if not connections:
            return

        closed = await self._send_all(connections, message)
        if closed:
            async with self._lock:
                for ws in closed:
                    self._discard(ws)

    def get_connected_count(self, member_public_id: str) -> int:
        """Get the number of active connections for an org member."""
        return len(self._connections.get(member_public_id, set()))

    def get_channel_count(self, channel: str) -> int:
        """Get the number of connections subscribed to a channel."""
        return len(self._channels.get(channel, set()))


# Singleton instance
manager = ConnectionManager()
