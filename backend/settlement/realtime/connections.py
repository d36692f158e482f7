"""
Room registry for realtime connections.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, Set

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Tracks which sockets joined which rooms.

    Rooms are ``user:<account id>`` and ``community:<community id>``.
    Delivery is best-effort: a socket that fails a send is dropped and the
    event is not retried or queued.
    """

    def __init__(self) -> None:
        self.rooms: Dict[str, Set[Any]] = defaultdict(set)
        self.memberships: Dict[Any, Set[str]] = defaultdict(set)

    def join(self, websocket: Any, room: str) -> None:
        self.rooms[room].add(websocket)
        self.memberships[websocket].add(room)
        logger.debug(f"Socket joined {room}")

    def disconnect(self, websocket: Any) -> None:
        for room in self.memberships.pop(websocket, set()):
            members = self.rooms.get(room)
            if members is None:
                continue
            members.discard(websocket)
            if not members:
                del self.rooms[room]

    def room_size(self, room: str) -> int:
        return len(self.rooms.get(room, ()))

    async def emit(self, room: str, event: str, data: Any) -> int:
        """
        Send ``{"event": event, "data": data}`` to every socket in ``room``.

        Returns:
            Number of sockets the event was delivered to
        """
        delivered = 0
        for websocket in list(self.rooms.get(room, ())):
            try:
                await websocket.send_json({"event": event, "data": data})
                delivered += 1
            except Exception as e:
                logger.error(f"Error sending {event} to {room}: {e}")
                self.disconnect(websocket)
        return delivered

    async def close_all(self) -> None:
        for websocket in list(self.memberships):
            try:
                await websocket.close()
            except Exception as e:
                logger.debug(f"Error closing socket: {e}")
            self.disconnect(websocket)
