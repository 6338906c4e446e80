"""
Real-time Portfolio Update Broadcaster.

This module provides the `UpdateBroadcaster`, the room-based publish/subscribe
channel that pushes saved portfolio documents to open editors and public
viewers.

Key Concepts:
- Connection: a live WebSocket, registered under a server-assigned connection
  ID together with an async `sender` callable that delivers one JSON message.
- Room: a subscription group named by a lowercase username. Rooms are not
  created or destroyed explicitly; a room exists while at least one
  (connection, room) membership pair names it.
- Membership: an explicit set of (connection ID, room) pairs. Joining the same
  room twice is a no-op, so a connection receives each publish at most once
  per room. A connection may be in any number of rooms.

Lifecycle per connection: `register` (Connected) → `join_room` (Joined, any
number of times) → `disconnect` (Disconnected; all pairs for the connection are
removed, no explicit leave exists).

Delivery Guarantees:
- `publish(username, message)` reaches every connection joined to the room,
  including the publisher's own connection when it has joined.
- Publishes to one room are serialized by that room's lock, so every
  subscriber sees messages in publish call order. Rooms never wait for each
  other and no ordering is promised across rooms.
- Each send is bounded by `send_timeout` seconds. A send that fails or times
  out is logged and the connection is dropped; delivery to the remaining
  subscribers continues.

The broadcaster is in-memory and single-instance; it is owned by the
application factory and shared by the save path and the WebSocket endpoint.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Set, Tuple

from core.exceptions import WebSocketConnectionError

logger = logging.getLogger(__name__)

Sender = Callable[[Dict[str, Any]], Awaitable[None]]

PORTFOLIO_UPDATED = "portfolioUpdated"


def room_name(username: str) -> str:
    """Rooms are keyed by lowercase username"""
    return username.strip().lower()


def portfolio_updated_message(username: str, portfolio: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "event": PORTFOLIO_UPDATED,
        "data": {"username": room_name(username), "portfolio": portfolio},
    }


class UpdateBroadcaster:
    """Room-based fan-out of portfolio updates to WebSocket connections"""

    def __init__(self, send_timeout: float = 5.0):
        # Maps connection_id to its sender, in registration order
        self.connections: Dict[str, Sender] = {}

        # (connection_id, room) membership pairs
        self.memberships: Set[Tuple[str, str]] = set()

        self.send_timeout = send_timeout
        self._room_locks: Dict[str, asyncio.Lock] = {}
        self.messages_published = 0
        self.messages_delivered = 0
        self.connections_dropped = 0

    def register(self, connection_id: str, sender: Sender) -> None:
        """
        Register a live connection.

        Args:
            connection_id: Server-assigned connection identifier
            sender: Coroutine function that delivers one JSON message
        """
        if connection_id in self.connections:
            logger.warning(f"Connection {connection_id} registered twice")
        self.connections[connection_id] = sender
        logger.info(f"Connection {connection_id} registered")

    def join_room(self, connection_id: str, username: str) -> str:
        """
        Add a connection to the room for `username`. Idempotent.

        Returns:
            str: The room name that was joined
        """
        if connection_id not in self.connections:
            raise WebSocketConnectionError(connection_id, "Connection is not registered")

        room = room_name(username)
        if not room:
            raise WebSocketConnectionError(connection_id, "Room name is empty")

        if (connection_id, room) in self.memberships:
            logger.debug(f"Connection {connection_id} already in room {room}")
        else:
            self.memberships.add((connection_id, room))
            logger.info(f"Connection {connection_id} joined room {room}")

        return room

    def rooms_for(self, connection_id: str) -> Set[str]:
        return {room for cid, room in self.memberships if cid == connection_id}

    def members(self, username: str) -> List[str]:
        """Connection IDs joined to a room, in registration order"""
        room = room_name(username)
        return [
            connection_id
            for connection_id in self.connections
            if (connection_id, room) in self.memberships
        ]

    async def publish(self, username: str, message: Dict[str, Any]) -> int:
        """
        Deliver `message` to every connection in the room for `username`.

        Returns:
            int: Number of connections the message was delivered to
        """
        room = room_name(username)
        lock = self._room_locks.setdefault(room, asyncio.Lock())

        async with lock:
            delivered = 0
            failed: List[str] = []

            for connection_id in self.members(room):
                sender = self.connections.get(connection_id)
                if sender is None:
                    continue
                try:
                    await asyncio.wait_for(sender(message), timeout=self.send_timeout)
                    delivered += 1
                except asyncio.TimeoutError:
                    logger.warning(
                        f"Send to connection {connection_id} in room {room} timed out "
                        f"after {self.send_timeout}s"
                    )
                    failed.append(connection_id)
                except Exception as e:
                    logger.error(
                        f"Error sending to connection {connection_id} in room {room}: {e}"
                    )
                    failed.append(connection_id)

            for connection_id in failed:
                self.disconnect(connection_id)
                self.connections_dropped += 1

            self.messages_published += 1
            self.messages_delivered += delivered

        logger.info(
            f"Published {message.get('event')} to room {room}",
            extra={"room": room, "delivered": delivered, "failed": len(failed)},
        )
        return delivered

    def disconnect(self, connection_id: str) -> int:
        """
        Forget a connection and every room membership it holds.

        Returns:
            int: Number of memberships removed
        """
        removed = {pair for pair in self.memberships if pair[0] == connection_id}
        self.memberships -= removed

        if self.connections.pop(connection_id, None) is not None:
            logger.info(
                f"Connection {connection_id} disconnected, left {len(removed)} rooms"
            )

        return len(removed)

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self.connections

    def stats(self) -> Dict[str, Any]:
        """
        Get broadcaster statistics.

        Returns:
            Dictionary with connection and room stats
        """
        rooms: Dict[str, int] = {}
        for _, room in self.memberships:
            rooms[room] = rooms.get(room, 0) + 1

        return {
            "total_connections": len(self.connections),
            "total_rooms": len(rooms),
            "memberships": len(self.memberships),
            "room_sizes": rooms,
            "messages_published": self.messages_published,
            "messages_delivered": self.messages_delivered,
            "connections_dropped": self.connections_dropped,
        }
